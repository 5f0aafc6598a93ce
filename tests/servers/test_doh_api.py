"""
Brief: Tests for the FastAPI DoH endpoint in dohrelay.servers.doh_api.

Inputs:
  - None

Outputs:
  - None
"""

import base64
import logging

from dnslib import QTYPE, RR, A, DNSRecord
from fastapi.testclient import TestClient

from dohrelay.config.config_parser import load_settings
from dohrelay.servers.doh_api import (
    BAD_REQUEST_TEXT,
    SECURITY_HEADERS,
    _b64url_decode_nopad,
    _Suppress2xxAccessFilter,
    create_app_from_settings,
    create_doh_app,
    install_uvicorn_2xx_suppression,
)

JSON_BODY = b'{"Status":0,"Answer":[{"name":"example.com.","type":1,"TTL":60}]}'


def _query(qid=0x4242):
    q = DNSRecord.question("example.com", "A")
    q.header.id = qid
    return q


def _answer(query):
    reply = query.reply()
    reply.add_answer(RR("example.com", QTYPE.A, rdata=A("192.0.2.1"), ttl=60))
    return reply.pack()


def _b64(data):
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _client(upstream, make_proxy, providers=1):
    proxy = make_proxy(providers)
    return TestClient(create_doh_app(proxy)), proxy


def _assert_fixed_headers(resp):
    assert resp.headers["access-control-allow-origin"] == "*"
    for name, value in SECURITY_HEADERS.items():
        assert resp.headers[name.lower()] == value


def test_b64url_decode_handles_padding():
    """
    Brief: Decoder accepts padded and unpadded base64url.

    Inputs:
      - None

    Outputs:
      - None
    """
    assert _b64url_decode_nopad("AQI") == b"\x01\x02"
    assert _b64url_decode_nopad("AQI=") == b"\x01\x02"


def test_get_wireformat_query(upstream, make_proxy):
    """
    Brief: GET ?dns= returns the upstream answer as application/dns-message.

    Inputs:
      - upstream: UpstreamStub fixture
      - make_proxy: DoHProxy factory fixture

    Outputs:
      - None
    """
    q = _query()
    upstream.set("p1.test", content=_answer(q))
    client, _ = _client(upstream, make_proxy)

    resp = client.get("/dns-query", params={"dns": _b64(q.pack())})
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/dns-message"
    _assert_fixed_headers(resp)
    parsed = DNSRecord.parse(resp.content)
    assert parsed.header.id == 0x4242
    assert str(parsed.rr[0].rdata) == "192.0.2.1"
    assert upstream.calls[0].method == "GET"


def test_post_wireformat_query(upstream, make_proxy):
    """
    Brief: POST application/dns-message is answered in wireformat.

    Inputs:
      - upstream: UpstreamStub fixture
      - make_proxy: DoHProxy factory fixture

    Outputs:
      - None
    """
    q = _query(0x0102)
    upstream.set("p1.test", content=_answer(q))
    client, _ = _client(upstream, make_proxy)

    resp = client.post(
        "/dns-query",
        content=q.pack(),
        headers={"content-type": "application/dns-message"},
    )
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/dns-message"
    assert resp.content[:2] == b"\x01\x02"
    _assert_fixed_headers(resp)
    assert upstream.calls[0].method == "POST"
    assert upstream.calls[0].content == q.pack()


def test_json_query_via_accept_header(upstream, make_proxy):
    """
    Brief: GET with Accept: application/dns-json returns upstream JSON.

    Inputs:
      - upstream: UpstreamStub fixture
      - make_proxy: DoHProxy factory fixture

    Outputs:
      - None
    """
    upstream.set("p1.test", content=JSON_BODY, content_type="application/dns-json")
    client, _ = _client(upstream, make_proxy)

    resp = client.get(
        "/dns-query",
        params={"name": "example.com", "type": "A"},
        headers={"accept": "application/dns-json"},
    )
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/dns-json"
    assert resp.content == JSON_BODY
    _assert_fixed_headers(resp)


def test_json_query_via_name_param_only(upstream, make_proxy):
    """
    Brief: A GET carrying ``name`` is treated as a JSON query.

    Inputs:
      - upstream: UpstreamStub fixture
      - make_proxy: DoHProxy factory fixture

    Outputs:
      - None
    """
    upstream.set("p1.test", content=JSON_BODY, content_type="application/dns-json")
    client, _ = _client(upstream, make_proxy)

    resp = client.get("/dns-query", params={"name": "example.com"})
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/dns-json"
    assert upstream.calls[0].url.params["type"] == "A"


def test_json_accept_without_name_is_bad_request(upstream, make_proxy):
    """
    Brief: Accept: application/dns-json with no name yields 400.

    Inputs:
      - upstream: UpstreamStub fixture
      - make_proxy: DoHProxy factory fixture

    Outputs:
      - None
    """
    client, _ = _client(upstream, make_proxy)
    resp = client.get("/dns-query", headers={"accept": "application/dns-json"})
    assert resp.status_code == 400
    assert resp.text.startswith("Bad request")
    assert upstream.calls == []


def test_options_preflight(upstream, make_proxy):
    """
    Brief: OPTIONS returns 204 with CORS headers and no upstream traffic.

    Inputs:
      - upstream: UpstreamStub fixture
      - make_proxy: DoHProxy factory fixture

    Outputs:
      - None
    """
    client, _ = _client(upstream, make_proxy)
    resp = client.options("/dns-query")
    assert resp.status_code == 204
    assert resp.headers["access-control-allow-origin"] == "*"
    assert "POST" in resp.headers["access-control-allow-methods"]
    assert resp.headers["access-control-max-age"] == "86400"
    assert upstream.calls == []


def test_unsupported_shapes_are_bad_request(upstream, make_proxy):
    """
    Brief: Bare GET, POST with the wrong type and other methods get 400.

    Inputs:
      - upstream: UpstreamStub fixture
      - make_proxy: DoHProxy factory fixture

    Outputs:
      - None
    """
    client, _ = _client(upstream, make_proxy)

    resp = client.get("/dns-query")
    assert resp.status_code == 400
    assert resp.text == BAD_REQUEST_TEXT

    resp = client.post(
        "/dns-query", content=b"x", headers={"content-type": "text/plain"}
    )
    assert resp.status_code == 400

    resp = client.put("/dns-query", content=b"x")
    assert resp.status_code == 400
    assert upstream.calls == []


def test_invalid_base64_is_bad_request(upstream, make_proxy):
    """
    Brief: A dns parameter that is not base64url yields 400.

    Inputs:
      - upstream: UpstreamStub fixture
      - make_proxy: DoHProxy factory fixture

    Outputs:
      - None
    """
    client, _ = _client(upstream, make_proxy)
    resp = client.get("/dns-query", params={"dns": "A"})
    assert resp.status_code == 400
    assert upstream.calls == []


def test_empty_post_body_is_bad_request(upstream, make_proxy):
    """
    Brief: POST with an empty dns-message body yields 400.

    Inputs:
      - upstream: UpstreamStub fixture
      - make_proxy: DoHProxy factory fixture

    Outputs:
      - None
    """
    client, _ = _client(upstream, make_proxy)
    resp = client.post(
        "/dns-query", content=b"", headers={"content-type": "application/dns-message"}
    )
    assert resp.status_code == 400


def test_all_providers_failed_is_bad_gateway(upstream, make_proxy):
    """
    Brief: When no provider answers the client gets 502.

    Inputs:
      - upstream: UpstreamStub fixture
      - make_proxy: DoHProxy factory fixture

    Outputs:
      - None
    """
    for host in ("p1.test", "p2.test"):
        upstream.set(host, status=500)
    client, _ = _client(upstream, make_proxy, providers=2)

    resp = client.get("/dns-query", params={"dns": _b64(_query().pack())})
    assert resp.status_code == 502


def test_unexpected_error_is_internal_error(upstream, make_proxy):
    """
    Brief: An unexpected exception in the pipeline maps to 500.

    Inputs:
      - upstream: UpstreamStub fixture
      - make_proxy: DoHProxy factory fixture

    Outputs:
      - None
    """
    client, proxy = _client(upstream, make_proxy)

    async def boom(*args, **kwargs):
        raise RuntimeError("boom")

    proxy.resolve_wire = boom
    resp = client.get("/dns-query", params={"dns": _b64(_query().pack())})
    assert resp.status_code == 500


def test_health_endpoint_reports_snapshot(upstream, make_proxy):
    """
    Brief: /health returns status, provider order and cache stats.

    Inputs:
      - upstream: UpstreamStub fixture
      - make_proxy: DoHProxy factory fixture

    Outputs:
      - None
    """
    client, proxy = _client(upstream, make_proxy, providers=2)
    proxy.registry.record_failure("p1")

    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert [p["name"] for p in body["providers"]] == ["p2", "p1"]
    assert body["providers"][1]["failures"] == 1
    assert body["cache"]["entries"] == 0
    assert body["in_flight"] == 0


def test_app_from_settings_uses_configured_path(upstream):
    """
    Brief: create_app_from_settings serves on listen.path and runs its lifespan.

    Inputs:
      - upstream: UpstreamStub fixture

    Outputs:
      - None
    """
    q = _query()
    upstream.set("p1.test", content=_answer(q))
    settings = load_settings(
        {
            "listen": {"path": "/resolve"},
            "providers": ["https://p1.test/dns-query"],
        }
    )
    app = create_app_from_settings(settings, client=upstream.client())

    with TestClient(app) as client:
        resp = client.get("/resolve", params={"dns": _b64(q.pack())})
        assert resp.status_code == 200
        assert client.get("/dns-query").status_code == 404

    access = logging.getLogger("uvicorn.access")
    assert any(isinstance(f, _Suppress2xxAccessFilter) for f in access.filters)


def test_access_filter_drops_only_2xx():
    """
    Brief: The access-log filter hides 2xx records and keeps the rest.

    Inputs:
      - None

    Outputs:
      - None
    """
    f = _Suppress2xxAccessFilter()

    def rec(status):
        return logging.LogRecord(
            "uvicorn.access",
            logging.INFO,
            __file__,
            1,
            '%s - "%s %s HTTP/%s" %d',
            ("127.0.0.1", "GET", "/dns-query", "1.1", status),
            None,
        )

    assert f.filter(rec(200)) is False
    assert f.filter(rec(502)) is True

    install_uvicorn_2xx_suppression()
    install_uvicorn_2xx_suppression()
    access = logging.getLogger("uvicorn.access")
    assert sum(isinstance(x, _Suppress2xxAccessFilter) for x in access.filters) == 1
