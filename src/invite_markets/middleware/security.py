from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

# JSON-only API: nothing may be framed, scripted or embedded
_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Cache-Control": "no-store",
}

# Interactive API docs need their bundled assets
_DOCS_PATHS = {"/docs", "/redoc", "/openapi.json"}

_HSTS_VALUE = "max-age=31536000; includeSubDomains"


def _apply_security_headers(response: Response, is_https: bool, is_docs: bool) -> None:
    for name, value in _SECURITY_HEADERS.items():
        if is_docs and name == "Content-Security-Policy":
            continue
        response.headers[name] = value
    if is_https:
        response.headers["Strict-Transport-Security"] = _HSTS_VALUE


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds security headers to every response.

    ``Cache-Control: no-store`` keeps purchased secrets and seller views out
    of shared caches.
    """

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        _apply_security_headers(
            response,
            is_https=request.url.scheme == "https",
            is_docs=request.url.path in _DOCS_PATHS,
        )
        return response
