"""REST API routes for the rendezvous server."""

import logging

from fastapi import APIRouter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# Injected by main.py at startup
_server = None


def init_routes(server) -> None:
    """Inject the rendezvous server into the routes module."""
    global _server
    _server = server


@router.get("/health")
async def health():
    return {
        "status": "ok",
        "channels": len(_server.connections),
        "advertising": len(_server.registry.snapshot()),
    }


@router.get("/clients")
async def list_clients():
    """Return the current directory of advertising peers."""
    return {"clients": _server.directory()}


@router.post("/clear-rooms")
async def clear_rooms():
    """Administrative reset: empty the registry and broadcast it."""
    logger.info("Clearing rooms via API")
    await _server.clear_rooms()
    return {"status": "cleared"}
