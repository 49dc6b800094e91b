# storefront/app_server/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Callable, Optional

from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse

from storefront.app_server.auth import AdminPolicy
from storefront.app_server.dependencies.admin import require_admin
from storefront.app_server.logging_config import configure_logging
from storefront.app_server.middleware import RedirectMiddleware, SecurityHeadersMiddleware
from storefront.app_server.routes import admin_catalog, admin_discounts, admin_inventory, admin_orders
from storefront.app_server.routes import admin_redirects, admin_settings
from storefront.app_server.routes import catalog, checkout, cron, discounts, site, webhooks
from storefront.config import Settings, load_settings
from storefront.contracts.errors import StorefrontError, error
from storefront.db.models import Base
from storefront.db.session import make_engine, make_session_factory
from storefront.notifications.dispatch import NotificationDispatcher, OrderNotifier
from storefront.notifications.email import EmailClient
from storefront.payments.gateway import PaymentGateway

logger = logging.getLogger(__name__)

ADMIN_ROUTERS = (
    admin_inventory.router,
    admin_orders.router,
    admin_discounts.router,
    admin_settings.router,
    admin_catalog.router,
    admin_redirects.router,
)
PUBLIC_ROUTERS = (catalog.router, discounts.router, checkout.router, cron.router, webhooks.router, site.router)


def _cors_origins(settings: Settings) -> list[str]:
    if settings.cors_origins:
        return list(settings.cors_origins)
    if settings.is_local:
        return ["*"]
    return [settings.public_url]


def _fail(status_code: int, code: str, message: str, details=None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": error(code, message, details)})


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StorefrontError)
    async def storefront_error(request: Request, exc: StorefrontError):
        if exc.status_code >= 500:
            logger.error("%s: %s", exc.code, exc.message, extra={"context": "api.error", "path": request.url.path})
        return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": exc.envelope()})

    @app.exception_handler(RequestValidationError)
    async def request_invalid(request: Request, exc: RequestValidationError):
        fields = {}
        for e in exc.errors():
            loc = ".".join(str(p) for p in e.get("loc", ()) if p != "body")
            fields[loc or "body"] = e.get("msg", "invalid")
        return _fail(400, "validation_failed", "Invalid request", fields)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        code = "not_found" if exc.status_code == 404 else "http_error"
        return _fail(exc.status_code, code, str(exc.detail))

    @app.exception_handler(Exception)
    async def unhandled(request: Request, exc: Exception):
        logger.exception("unhandled error", extra={"context": "api.error", "path": request.url.path})
        return _fail(500, "internal_error", "Internal server error")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    engine = make_engine(settings.database_url)
    if settings.create_schema:
        Base.metadata.create_all(engine)
    session_factory = make_session_factory(engine)

    dispatcher = NotificationDispatcher(workers=settings.notify_workers)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        dispatcher.shutdown(wait=True)
        engine.dispose()

    app = FastAPI(title="Storefront API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.admin_policy = AdminPolicy.from_settings(settings)
    app.state.payment_gateway = PaymentGateway(
        settings.stripe_secret_key, settings.stripe_webhook_secret, settings.currency
    )
    app.state.notification_dispatcher = dispatcher
    app.state.order_notifier = OrderNotifier(
        dispatcher,
        EmailClient(settings.resend_api_key, settings.email_from),
        session_factory,
        public_url=settings.public_url,
    )

    _install_error_handlers(app)

    origins = _cors_origins(settings)
    allow_all = "*" in origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=False if allow_all else True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # last added runs first, so redirect responses still get security headers
    app.add_middleware(RedirectMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    for router in PUBLIC_ROUTERS:
        app.include_router(router)
    for router in ADMIN_ROUTERS:
        app.include_router(router, dependencies=[Depends(require_admin)])

    @app.get("/metrics")
    def metrics() -> Response:
        return Response(generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)

    @app.get("/health")
    def health():
        return JSONResponse({"ok": True, "app": "storefront"}, headers={"server": "storefront"})

    @app.get("/ready")
    def ready():
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error("database not reachable: %s", e, extra={"context": "api.ready"})
            return _fail(503, "not_ready", "Database not reachable")
        return {"ok": True, "db": {"reachable": True}}

    return app


class _LazyASGIApp:
    def __init__(self, factory: Callable[[], FastAPI]):
        self._factory = factory
        self._app: FastAPI | None = None

    def _get(self) -> FastAPI:
        if self._app is None:
            self._app = self._factory()
        return self._app

    async def __call__(self, scope, receive, send):
        return await self._get()(scope, receive, send)

    def __getattr__(self, name: str):
        return getattr(self._get(), name)


@lru_cache(maxsize=1)
def get_app() -> FastAPI:
    return create_app()


app = _LazyASGIApp(get_app)
