"""Liveness endpoint for external health checks."""

import uvicorn
from fastapi import FastAPI
from pydantic import BaseModel

from . import __version__


class HealthStatus(BaseModel):
    """Liveness response."""

    status: str
    version: str


app = FastAPI(
    title="Lighthouse",
    version=__version__,
    docs_url=None,
    redoc_url=None,
)


@app.get("/usage", response_model=HealthStatus, tags=["Info"])
async def usage():
    """Report that the service is up."""
    return HealthStatus(status="ok", version=__version__)


def create_server(port: int, host: str = "::") -> uvicorn.Server:
    """Build a uvicorn server for ``app``, to be awaited in the running loop."""
    config = uvicorn.Config(app, host=host, port=port, log_level="warning")
    return uvicorn.Server(config)
