"""FastAPI application factory."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from charger.config import get_settings
from charger.errors import ChargerError
from charger.services import Services, build_services

logger = logging.getLogger(__name__)


async def sweep_sessions(services: Services) -> None:
    """Periodically drop idle sessions."""
    settings = services.settings
    while True:
        await asyncio.sleep(settings.session_sweep_interval)
        services.sessions.sweep(settings.session_ttl)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    services: Services = app.state.services
    settings = services.settings

    # Startup
    sweeper: Optional[asyncio.Task] = None
    if settings.session_ttl > 0:
        sweeper = asyncio.create_task(sweep_sessions(services))
    if not await services.provider.validate_config():
        logger.warning(f"Deposit provider {services.provider.name} is not configured")
    logger.info(
        f"Using gateway {services.gateway.name} and deposit provider {services.provider.name}"
    )

    yield

    # Shutdown
    if sweeper is not None:
        sweeper.cancel()
        await asyncio.gather(sweeper, return_exceptions=True)
    await services.withdrawals.drain(timeout=settings.spark_call_timeout)
    await services.gateway.close()


async def charger_error_handler(request: Request, exc: ChargerError) -> JSONResponse:
    """LNURL wallets expect errors as a 200 response with status ERROR."""
    logger.info(f"{request.url.path} failed: {exc.reason}")
    return JSONResponse(exc.to_response())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = ", ".join(".".join(str(p) for p in err["loc"][1:]) for err in exc.errors())
    return JSONResponse(
        {"status": "ERROR", "reason": f"Missing or invalid parameters: {fields}"},
        status_code=400,
    )


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        services: Prebuilt services (tests); built from settings when omitted
    """
    settings = services.settings if services else get_settings()

    app = FastAPI(
        title="Charger API",
        description="Lightning login, deposit and withdraw bridge",
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.state.services = services or build_services(settings)

    # Wallets and the web client call us from other origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ChargerError, charger_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # Register routes
    from charger.api.routes import auth, deposit, events, health, withdraw

    app.include_router(health.router, tags=["Health"])
    app.include_router(auth.router, tags=["Login"])
    app.include_router(withdraw.router, tags=["Withdraw"])
    app.include_router(deposit.router, tags=["Deposit"])
    app.include_router(events.router, tags=["Events"])

    return app
