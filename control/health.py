"""Liveness endpoint for hosting platforms that probe an HTTP port"""
import logging

import uvicorn
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from control.reconcile import Reconciler

logger = logging.getLogger(__name__)


def create_app(reconciler: Reconciler) -> FastAPI:
    app = FastAPI(title="Tuya Relay Bridge")

    @app.get("/", response_class=PlainTextResponse)
    def root():
        return "Power Monitor Running"

    @app.get("/status")
    def status():
        """Process-local view of the reconciler"""
        return {
            "state": reconciler.state.value,
            "relayOn": reconciler.last_known_on,
            "commandPending": reconciler.pending_command is not None,
        }

    return app


async def serve_health(reconciler: Reconciler, port: int, host: str = "0.0.0.0") -> None:
    """Run the liveness server until cancelled"""
    config = uvicorn.Config(
        create_app(reconciler),
        host=host,
        port=port,
        log_level="warning"
    )
    server = uvicorn.Server(config)
    logger.info(f"Health: Listening on http://{host}:{port}")
    await server.serve()
