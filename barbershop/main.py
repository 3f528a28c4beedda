# barbershop/main.py

import asyncio
import logging
from contextlib import asynccontextmanager
from logging.config import dictConfig
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from barbershop.config import Settings, get_settings
from barbershop.errors import BarbershopError
from barbershop.routers import events_routes, staff_routes
from barbershop.service import BarbershopService, create_service

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "json": {
                    "()": "pythonjsonlogger.json.JsonFormatter",
                    "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "json",
                    "level": level,
                }
            },
            "root": {"handlers": ["console"], "level": level},
        }
    )


async def run_sweeps(service: BarbershopService, interval_seconds: float) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await service.sweep_expired_appointments()
        except BarbershopError:
            # already logged by the store; try again next round
            continue


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        service, engine = await create_service(settings)
        app.state.service = service
        await service.sweep_expired_appointments()
        sweeper = asyncio.create_task(run_sweeps(service, settings.sweep_interval_minutes * 60))
        try:
            yield
        finally:
            sweeper.cancel()
            await asyncio.gather(sweeper, return_exceptions=True)
            await service.close()
            await engine.dispose()

    app = FastAPI(title="Barbershop Chat Booking", lifespan=lifespan)

    @app.exception_handler(BarbershopError)
    async def barbershop_error_handler(request: Request, exc: BarbershopError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    @app.get("/health")
    async def health_check():
        return {"status": "ok"}

    app.include_router(events_routes.router)
    app.include_router(staff_routes.router)
    return app


configure_logging(get_settings().log_level.upper())
app = create_app()


def run() -> None:
    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    run()
