"""
Rendezvous server — FastAPI application entry point.

Serves the signalling WebSocket at ``/ws`` and a small REST API for
inspecting and resetting the directory.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from api.routes import init_routes, router
from config import API_HOST, API_PORT, CORS_ORIGINS, LOG_LEVEL
from rendezvous.server import RendezvousServer

# --- Logging ---
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# --- Service singletons ---
rendezvous_server = RendezvousServer()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Rendezvous server ready — ws://{API_HOST}:{API_PORT}/ws")
    yield
    logger.info(
        f"Shutting down rendezvous server "
        f"({len(rendezvous_server.connections)} channel(s) open)"
    )


# --- FastAPI app ---
app = FastAPI(
    title="Peer Rendezvous",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

init_routes(rendezvous_server)
app.include_router(router)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await rendezvous_server.serve(websocket)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=API_HOST,
        port=API_PORT,
        log_level=LOG_LEVEL.lower(),
    )
