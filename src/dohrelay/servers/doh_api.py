"""FastAPI application exposing the DoH proxy endpoint.

Routes (on the configured path, ``/dns-query`` by default):

- GET ``?dns=<base64url>``                 -> wireformat answer
- GET ``Accept: application/dns-json`` or ``?name=`` -> JSON answer
- POST ``Content-Type: application/dns-message``   -> wireformat answer
- OPTIONS                                   -> 204 CORS preflight
- anything else                             -> 400

plus ``GET /health`` with provider health and cache statistics.
"""

from __future__ import annotations

import base64
import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, Optional

import httpx
from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse, PlainTextResponse

from ..config.config_parser import Settings
from ..upstream.doh import DNS_JSON, DNS_MESSAGE
from ..upstream.errors import AllProvidersFailed, MalformedRequest
from .proxy import DoHProxy, build_proxy

logger = logging.getLogger("dohrelay.doh_api")

CORS_HEADERS: Dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Accept",
}

SECURITY_HEADERS: Dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Cache-Control": "public, max-age=300, stale-while-revalidate=600",
    "X-DNS-Prefetch-Control": "off",
    "Referrer-Policy": "no-referrer",
}

PREFLIGHT_HEADERS: Dict[str, str] = {**CORS_HEADERS, "Access-Control-Max-Age": "86400"}

BAD_REQUEST_TEXT = (
    "Bad request: use GET ?dns=<base64url>, POST application/dns-message, "
    "or GET with Accept: application/dns-json"
)

_ALL_METHODS = ["GET", "POST", "OPTIONS", "PUT", "PATCH", "DELETE", "HEAD"]


def _b64url_decode_nopad(s: str) -> bytes:
    """
    Brief: Decode base64url with or without '=' padding.

    Inputs:
    - s: base64url string

    Outputs:
    - bytes: decoded binary

    Example:
        >>> _b64url_decode_nopad('AQI')
        b'\\x01\\x02'
    """
    if not isinstance(s, str):
        raise ValueError("input must be str")
    s = s.rstrip("=")
    pad = "=" * ((4 - len(s) % 4) % 4)
    return base64.urlsafe_b64decode(s + pad)


def _media_type(value: Optional[str]) -> str:
    return (value or "").split(";", 1)[0].strip().lower()


def _accepts_json(request: Request) -> bool:
    accept = request.headers.get("accept", "")
    return any(_media_type(part) == DNS_JSON for part in accept.split(","))


def dns_response(body: bytes, media_type: str) -> Response:
    """Brief: Success response carrying the fixed CORS and security headers."""

    return Response(
        content=body,
        media_type=media_type,
        headers={**CORS_HEADERS, **SECURITY_HEADERS},
    )


def _bad_request(text: str = BAD_REQUEST_TEXT) -> Response:
    return PlainTextResponse(text, status_code=status.HTTP_400_BAD_REQUEST)


class _Suppress2xxAccessFilter(logging.Filter):
    """Logging filter that drops uvicorn access records for HTTP 2xx responses.

    Every answered query is a 2xx, so access logs would otherwise grow with
    traffic; errors and non-2xx statuses are still logged.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        status_code = getattr(record, "status_code", None)
        if status_code is None:
            args = getattr(record, "args", None)
            if isinstance(args, (tuple, list)) and args:
                status_code = args[-1]
        try:
            code = int(status_code)
        except (TypeError, ValueError):
            return True
        return not (200 <= code <= 299)


def install_uvicorn_2xx_suppression() -> None:
    """Attach _Suppress2xxAccessFilter to the uvicorn.access logger once."""

    access_logger = logging.getLogger("uvicorn.access")
    for f in access_logger.filters:
        if isinstance(f, _Suppress2xxAccessFilter):
            return
    access_logger.addFilter(_Suppress2xxAccessFilter())


def create_doh_app(
    proxy: DoHProxy,
    *,
    path: str = "/dns-query",
    lifespan: Optional[Callable[[FastAPI], Any]] = None,
) -> FastAPI:
    """
    Brief: Create the FastAPI app serving the DoH endpoint.

    Inputs:
    - proxy: DoHProxy holding the shared cache, in-flight map and providers
    - path: endpoint path
    - lifespan: optional FastAPI lifespan context

    Outputs:
    - FastAPI application; ``app.state.proxy`` references ``proxy``.

    Example:
      >>> # app = create_doh_app(build_proxy(Settings(), httpx.AsyncClient()))
    """
    app = FastAPI(
        title="dohrelay",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    app.state.proxy = proxy

    @app.api_route(path, methods=_ALL_METHODS)
    async def dns_query(request: Request) -> Response:
        """
        Brief: Route one DoH request by method, parameters and headers.

        Inputs:
        - request: FastAPI Request

        Outputs:
        - Response: DNS answer, 204 preflight, 400 or 502.
        """
        method = request.method.upper()
        if method == "OPTIONS":
            return Response(status_code=status.HTTP_204_NO_CONTENT, headers=PREFLIGHT_HEADERS)

        params = request.query_params
        try:
            if method == "GET" and "dns" in params:
                dns_param = params["dns"]
                try:
                    qbytes = _b64url_decode_nopad(dns_param)
                except ValueError:
                    raise MalformedRequest("dns parameter is not valid base64url")
                answer = await proxy.resolve_wire(
                    qbytes, method="GET", dns_param=dns_param
                )
                return dns_response(answer, DNS_MESSAGE)

            if method == "GET" and ("name" in params or _accepts_json(request)):
                answer = await proxy.resolve_json(dict(params))
                return dns_response(answer, DNS_JSON)

            if (
                method == "POST"
                and _media_type(request.headers.get("content-type")) == DNS_MESSAGE
            ):
                body = await request.body()
                answer = await proxy.resolve_wire(body, method="POST")
                return dns_response(answer, DNS_MESSAGE)
        except MalformedRequest as exc:
            logger.debug("Malformed request: %s", exc)
            return _bad_request(f"Bad request: {exc}")
        except AllProvidersFailed as exc:
            logger.warning("Upstream resolution failed: %s", exc)
            return PlainTextResponse(
                "All upstream providers failed",
                status_code=status.HTTP_502_BAD_GATEWAY,
            )
        except Exception:
            logger.exception("DoH handler raised")
            return PlainTextResponse(
                "Internal error",
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        return _bad_request()

    @app.get("/health")
    async def health() -> JSONResponse:
        """Return liveness plus provider order, cache stats and in-flight count."""

        return JSONResponse({"status": "ok", **proxy.snapshot()})

    return app


def create_app_from_settings(
    settings: Settings,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Brief: Build the full application (proxy, shared state, HTTP client).

    Inputs:
    - settings: validated Settings
    - client: optional httpx.AsyncClient; when omitted one is created and
      closed on application shutdown

    Outputs:
    - FastAPI application
    """
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.race.timeout_ms / 1000.0),
            limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
            follow_redirects=False,
        )
    proxy = build_proxy(settings, client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """FastAPI lifespan: install access-log filter, close owned client on exit."""

        install_uvicorn_2xx_suppression()
        try:
            yield
        finally:
            if owns_client:
                await client.aclose()

    return create_doh_app(proxy, path=settings.listen.path, lifespan=lifespan)
