"""
Liveness endpoint.
"""

from typing import Any

from fastapi import APIRouter, Request

from .. import __version__
from ..realtime.envelope import utc_now_z

health_router = APIRouter(tags=["health"])


@health_router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    container = getattr(request.app.state, "container", None)
    supervisor = getattr(container, "supervisor", None)
    body: dict[str, Any] = {"status": "ok", "version": __version__, "timestamp": utc_now_z()}
    if supervisor is not None:
        body["stats"] = supervisor.get_stats()
    return body
