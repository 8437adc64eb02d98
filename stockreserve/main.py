from contextlib import asynccontextmanager
from fastapi import FastAPI
from sqlmodel import SQLModel
from stockreserve import logger
from stockreserve.api.routers import public_routers,admin_routers
from stockreserve.api.__init__ import cur_version
from stockreserve.background_workers.expiry_sweeper import ExpirySweeper
from stockreserve.common.custom_exceptions import register_all_exceptions
from stockreserve.common.logging_setup import setup_logging, shutdown_logging
from stockreserve.config.admin_config import admin_config
from stockreserve.config.settings import config_settings
from stockreserve.db.connection import async_engine,async_session
from stockreserve.metrics.custom_instrumentator import instrumentator
from stockreserve.middlewares.request_id_middleware import RequestIdMiddleware
from stockreserve.orders.webhooks import netopia_webhook
import stockreserve.schema.full_schema  # noqa: F401  registers tables on SQLModel.metadata


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    setup_logging()
    if config_settings.AUTO_CREATE_TABLES:
        async with async_engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    sweeper = None
    if config_settings.ENABLE_EXPIRY_SWEEPER:
        sweeper = ExpirySweeper(async_session)
        sweeper.start()
    app.state.expiry_sweeper = sweeper
    logger.info("app.started", extra={"env": admin_config.ENV, "sweeper": sweeper is not None})

    try:
        yield
    finally:
        # stop background work before the engine goes away
        if sweeper is not None:
            await sweeper.shutdown()
        await async_engine.dispose()
        logger.info("app.stopped")
        shutdown_logging()


def create_app():
    app=FastAPI(
        title="Stock Reservation Engine",
        version=cur_version,
        lifespan=app_lifespan)

    app.include_router(public_routers)

    app.add_api_route(config_settings.NETOPIA_WEBHOOK_PATH,netopia_webhook,methods=["POST"],
                      name="netopia_webhook",tags=["webhooks"])

    if admin_config.ENABLE_ADMIN:
        app.include_router(admin_routers)      # mounts /api/v1/admin

    app.add_middleware(RequestIdMiddleware)
    register_all_exceptions(app)
    instrumentator.instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    return app

app=create_app()
