# microauth/main.py
from __future__ import annotations
import time
import uuid
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from microauth.core.config import Settings, settings as default_settings
from microauth.core.db import engine
from microauth.core.errors import register_exception_handlers
from microauth.core.jwt_codec import TokenCodec
from microauth.core.logger import configure_logging, get_logger, request_id_var
from microauth.domain.sqlalchemy_models import Base
from microauth.services.grant_service import GrantHandler
from microauth.api.v1.auth import router as auth_router
from microauth.api.v1.tenants import router as tenants_router
from microauth.api.v1.oauth import router as oauth_router
from microauth.api.v1.products import router as products_router

log = get_logger("microauth.access")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(title=settings.APP_NAME, version="1.0")

    # Signing key and token lifetimes are bound here, once, and reached through app.state
    app.state.token_codec = TokenCodec(
        settings.JWT_SECRET,
        ttl_seconds=settings.JWT_EXP_MIN * 60,
        algorithm=settings.JWT_ALGORITHM,
    )
    app.state.grant_handler = GrantHandler(
        access_ttl=settings.OAUTH_ACCESS_TOKEN_TTL_SEC,
        refresh_ttl=settings.OAUTH_REFRESH_TOKEN_TTL_SEC,
    )

    if settings.AUTO_CREATE_TABLES:
        Base.metadata.create_all(bind=engine)

    origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials="*" not in origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        token = request_id_var.set(request_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers["X-Request-ID"] = request_id
        log.info(
            "request",
            extra={
                "meta": {
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status": response.status_code,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                }
            },
        )
        return response

    register_exception_handlers(app)

    @app.get("/health")
    def health():
        return {"ok": True}

    app.include_router(auth_router)
    app.include_router(tenants_router)
    app.include_router(oauth_router)
    app.include_router(products_router)
    log.info("Application configured", extra={"meta": {"app": settings.APP_NAME, "env": settings.APP_ENV}})
    return app


app = create_app()
