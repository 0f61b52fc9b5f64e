"""
HTTP entry point of the irrigation controller.
Sets up the FastAPI application and runs the ControllerService for its lifetime.

Runs with:
uvicorn smart_irrigation_controller.server.main:app
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from smart_irrigation_controller.__version__ import __version__
from smart_irrigation_controller.controller.controller_service import ControllerService
from smart_irrigation_controller.controller.utils.logger import get_logger
from smart_irrigation_controller.server.api.routes import router as api_router


logger = get_logger("smart_irrigation_controller.server")


def create_app(service: Optional[ControllerService] = None) -> FastAPI:
    """
    Builds the FastAPI app. Without an explicit service, one is created from the environment at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.service = service or ControllerService()
        logger.info("Launching ControllerService...")
        app.state.service.start()
        try:
            yield
        finally:
            logger.info("Stopping ControllerService...")
            app.state.service.stop()

    app = FastAPI(
        title="Smart Irrigation Controller API",
        version=__version__,
        description=(
            "REST API of the irrigation controller. "
            "Provides threshold queries and operator/debug access to device state."
        ),
        lifespan=lifespan,
    )
    app.include_router(api_router, prefix="/api")  # Prefix all routes with /api
    return app


app = create_app()


# ------------------- Dev Entry Point ------------------- #
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "smart_irrigation_controller.server.main:app",
        host="0.0.0.0",
        port=8000,
    )
