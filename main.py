#main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.payouts.errors import PayoutError
from deps.services import close_database
from middleware import RequestContextMiddleware
from routes.admin_payouts import router as admin_payouts_router
from routes.doctor_payouts import router as doctor_payouts_router
from routes.health import router as health_router
from routes.metrics import router as metrics_router
from routes.webhooks import router as webhooks_router
from services.observability import get_request_id
from settings import validate_env_settings

logger = logging.getLogger("remodoc.http")


@asynccontextmanager
async def lifespan(_app: FastAPI):
    validate_env_settings()
    yield
    close_database()


async def payout_error_handler(request: Request, exc: PayoutError):
    if exc.status_code >= 500:
        logger.error("payout_error path=%s reason=%s message=%s", request.url.path, exc.reason, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.to_detail()},
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error path=%s request_id=%s", request.url.path, get_request_id())
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


def create_app() -> FastAPI:
    application = FastAPI(title="Remodoc Payouts API", version="1.0.0", lifespan=lifespan)

    application.add_middleware(RequestContextMiddleware)

    # -----------------------------
    # ROUTERS
    # -----------------------------

    application.include_router(health_router)
    application.include_router(metrics_router)
    application.include_router(admin_payouts_router)
    application.include_router(doctor_payouts_router)
    application.include_router(webhooks_router)

    application.add_exception_handler(PayoutError, payout_error_handler)
    application.add_exception_handler(Exception, unhandled_error_handler)
    return application


app = create_app()
