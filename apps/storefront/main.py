import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from apps.storefront.config import settings
from apps.storefront.routes.admin import router as admin_router
from apps.storefront.routes.health import router as health_router
from apps.storefront.routes.loyalty import router as loyalty_router
from apps.storefront.services.admin.logger import log_request_response
from apps.storefront.utils.errors import install_error_handlers

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger("storefront.main")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Storefront Loyalty",
        version=settings.STOREFRONT_VERSION,
        description="Grocery storefront loyalty points: redemption, history and reconciliation",
    )

    # -------------------------------------------------------------------
    # Error handling (stable envelopes, no stack leaks)
    # -------------------------------------------------------------------
    install_error_handlers(app)

    # -------------------------------------------------------------------
    # CORS (storefront origins only)
    # -------------------------------------------------------------------
    if settings.CORS_ALLOW_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.CORS_ALLOW_ORIGINS,
            allow_credentials=False,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    # -------------------------------------------------------------------
    # Access log (sensitive headers masked)
    # -------------------------------------------------------------------
    if settings.REQUEST_LOGGING:
        @app.middleware("http")
        async def access_log(request: Request, call_next):
            start = time.perf_counter()
            response = await call_next(request)
            await log_request_response(request, response, start)
            return response

    # -------------------------------------------------------------------
    # Routers
    # -------------------------------------------------------------------
    app.include_router(health_router)
    app.include_router(loyalty_router)
    app.include_router(admin_router)

    @app.get("/")
    async def root():
        return {
            "status": "Storefront loyalty online",
            "routes": ["/health", "/loyalty", "/admin/loyalty"],
        }

    log.info("Storefront loyalty API ready (loyalty_enabled=%s)", settings.LOYALTY_ENABLED)
    return app


app = create_app()
