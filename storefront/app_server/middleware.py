# storefront/app_server/middleware.py
from __future__ import annotations

from typing import Callable

from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import RedirectResponse
from starlette.types import ASGIApp

from storefront.redirects.lookup import resolve_redirect, should_check


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp):
        super().__init__(app)

    async def dispatch(self, request, call_next: Callable):
        resp = await call_next(request)
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Cross-Origin-Opener-Policy"] = "same-origin"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=()"
        return resp


class RedirectMiddleware(BaseHTTPMiddleware):
    """Serve stored legacy-URL redirects for GET/HEAD on the prefixes that can have them."""

    async def dispatch(self, request: Request, call_next: Callable):
        path = request.url.path
        if request.method in ("GET", "HEAD") and should_check(path):
            target = await run_in_threadpool(resolve_redirect, request.app.state.session_factory, path)
            if target is not None:
                return RedirectResponse(url=target.to_path, status_code=target.status_code)
        return await call_next(request)
