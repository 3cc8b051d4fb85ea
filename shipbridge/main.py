"""
ShipBridge
FastAPI application entry point

- Schema is migrated to the latest revision on startup (AUTO_MIGRATE)
- Courier and warehouse HTTP clients live for the app's lifetime
- ShipBridgeError is mapped to its HTTP status with a JSON body
- Unhandled errors are sanitized before reaching the client
- Health endpoint pings the database
"""
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from sqlalchemy import text

from shipbridge import __version__
from shipbridge.api.routes import courier, orders, shipments
from shipbridge.core.config import settings
from shipbridge.core.database import AsyncSessionLocal
from shipbridge.core.error_handler import ErrorSanitizationMiddleware, shipbridge_error_handler
from shipbridge.core.exceptions import ShipBridgeError
from shipbridge.core.migrations import run_migrations
from shipbridge.services.courier_client import CourierClient
from shipbridge.services.warehouse_client import WarehouseClient

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Migrate the schema, open shared HTTP clients, and close them on shutdown."""
    if settings.AUTO_MIGRATE:
        await run_migrations()

    app.state.courier = CourierClient()
    app.state.warehouse = WarehouseClient() if settings.is_warehouse_configured else None

    if app.state.warehouse is None:
        logger.info("Warehouse source not configured, serving local orders only")

    yield

    await app.state.courier.close()
    if app.state.warehouse is not None:
        await app.state.warehouse.close()
    logger.info("HTTP clients closed")


def create_app() -> FastAPI:
    app = FastAPI(
        lifespan=lifespan,
        title=settings.APP_NAME,
        description="Warehouse order quoting and courier shipment booking",
        version=__version__,
    )

    app.add_exception_handler(ShipBridgeError, shipbridge_error_handler)
    app.add_middleware(ErrorSanitizationMiddleware)

    app.include_router(orders.router, prefix="/api/orders", tags=["Orders"])
    app.include_router(courier.router, prefix="/api/courier", tags=["Courier"])
    app.include_router(shipments.router, prefix="/api/shipments", tags=["Shipments"])

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Returns 503 if the database is unreachable."""
        health_status = {
            "status": "healthy",
            "database": "unknown",
            "warehouse_configured": settings.is_warehouse_configured,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        try:
            async with AsyncSessionLocal() as db:
                await db.execute(text("SELECT 1"))
            health_status["database"] = "connected"
        except Exception as e:
            logger.error(f"Health check database ping failed: {type(e).__name__}")
            health_status["database"] = "error"
            health_status["status"] = "unhealthy"
            return JSONResponse(status_code=503, content=health_status)

        return health_status

    return app


app = create_app()


def run():
    """Console entry point: serve the app with uvicorn."""
    uvicorn.run(
        "shipbridge.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_level="debug" if settings.DEBUG else "info",
    )
