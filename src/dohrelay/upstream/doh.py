from __future__ import annotations

import asyncio
import base64
import urllib.parse
from typing import Dict, Mapping, Optional

import httpx

from ..providers.registry import Provider
from .errors import ProviderConnectionError, ProviderHTTPError, ProviderTimeout
from .privacy import privacy_headers

DNS_MESSAGE = "application/dns-message"
DNS_JSON = "application/dns-json"


def _b64url_no_pad(data: bytes) -> str:
    """
    Brief: Base64url-encode without padding per RFC 8484.

    Inputs:
    - data: raw bytes to encode

    Outputs:
    - str: base64url string without '=' padding

    Example:
        >>> _b64url_no_pad(b"\\x01\\x02")
        'AQI'
    """
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _with_query(url: str, params: Mapping[str, str]) -> str:
    """Brief: Merge params into url's query string (params win on conflicts)."""

    parsed = urllib.parse.urlparse(url)
    qs = dict(urllib.parse.parse_qsl(parsed.query, keep_blank_values=True))
    qs.update({str(k): str(v) for k, v in params.items()})
    return urllib.parse.urlunparse(parsed._replace(query=urllib.parse.urlencode(qs)))


def _headers(accept: str, extra: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    hdrs = {"Accept": accept, **privacy_headers()}
    if extra:
        hdrs.update(extra)
    return hdrs


def build_wire_request(
    provider: Provider,
    query: bytes,
    *,
    method: str = "POST",
    dns_param: Optional[str] = None,
) -> httpx.Request:
    """
    Brief: Build an outbound RFC 8484 request for one provider.

    Inputs:
    - provider: target Provider
    - query: wire-format DNS query bytes
    - method: 'POST' or 'GET'
    - dns_param: for GET, the client's original ``dns`` value to forward
      verbatim; re-encoded from ``query`` when omitted

    Outputs:
    - httpx.Request carrying Accept/Content-Type and privacy headers

    Notes:
    - For POST: sends body as application/dns-message.
    - For GET: appends ?dns=<base64url>.
    """
    if method.upper() == "GET":
        dns_value = dns_param or _b64url_no_pad(query)
        return httpx.Request(
            "GET",
            _with_query(provider.url, {"dns": dns_value}),
            headers=_headers(DNS_MESSAGE),
        )
    return httpx.Request(
        "POST",
        provider.url,
        content=query,
        headers=_headers(DNS_MESSAGE, {"Content-Type": DNS_MESSAGE}),
    )


def build_json_request(provider: Provider, params: Mapping[str, str]) -> httpx.Request:
    """Brief: Build an outbound application/dns-json GET forwarding ``params``."""

    return httpx.Request(
        "GET",
        _with_query(provider.url, params),
        headers=_headers(DNS_JSON),
    )


async def send_to_provider(
    client: httpx.AsyncClient,
    provider: Provider,
    request: httpx.Request,
    timeout_ms: int,
) -> httpx.Response:
    """
    Brief: Send one request to one provider and classify the outcome.

    Inputs:
    - client: shared httpx.AsyncClient
    - provider: Provider the request targets (for error attribution)
    - request: prepared httpx.Request
    - timeout_ms: total time allowed for the attempt

    Outputs:
    - httpx.Response with a 2xx status and its body read

    Raises:
    - ProviderTimeout when the attempt exceeds timeout_ms
    - ProviderHTTPError for non-2xx statuses
    - ProviderConnectionError for network/TLS/protocol errors
    """
    try:
        resp = await asyncio.wait_for(client.send(request), timeout_ms / 1000.0)
    except asyncio.TimeoutError:
        raise ProviderTimeout(provider.name, timeout_ms)
    except httpx.TimeoutException:
        raise ProviderTimeout(provider.name, timeout_ms)
    except httpx.HTTPError as e:
        raise ProviderConnectionError(provider.name, f"Network error: {e}")

    if not resp.is_success:
        raise ProviderHTTPError(provider.name, resp.status_code, resp.reason_phrase)
    return resp
