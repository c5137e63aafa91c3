#main.py
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.payouts.errors import PayoutError
from app.payouts.state_machine import InvalidTransition
from middleware import RequestContextMiddleware
from routes.health import router as health_router
from routes.metrics import router as metrics_router
from routes.payouts import router as payouts_router
from routes.webhooks import router as webhooks_router
from services.http_errors import payout_error_response
from services.observability import configure_logging
from settings import settings

logger = logging.getLogger("payouts.api")


def create_app() -> FastAPI:
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(title="Creator Payout Engine", version="1.0.0")

    app.add_middleware(RequestContextMiddleware)

    # -----------------------------
    # ROUTERS
    # -----------------------------

    app.include_router(health_router)
    app.include_router(metrics_router)
    app.include_router(payouts_router)
    app.include_router(webhooks_router)

    @app.exception_handler(PayoutError)
    async def payout_error_handler(request: Request, exc: PayoutError):
        return payout_error_response(exc)

    @app.exception_handler(InvalidTransition)
    async def invalid_transition_handler(request: Request, exc: InvalidTransition):
        logger.error("invalid_transition path=%s error=%s", request.url.path, exc)
        return JSONResponse(status_code=409, content={"detail": "INVALID_TRANSITION", "message": str(exc)})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled_error path=%s", request.url.path)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app


app = create_app()
