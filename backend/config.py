"""Application-wide configuration constants."""

import os

# --- Server ---
API_HOST = os.environ.get("RENDEZVOUS_HOST", "0.0.0.0")
API_PORT = int(os.environ.get("RENDEZVOUS_PORT", "3001"))
CORS_ORIGINS = [
    origin.strip()
    for origin in os.environ.get(
        "RENDEZVOUS_CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000"
    ).split(",")
    if origin.strip()
]
LOG_LEVEL = os.environ.get("RENDEZVOUS_LOG_LEVEL", "INFO").upper()

# --- Client ---
SIGNALLING_URL = os.environ.get(
    "RENDEZVOUS_URL", f"ws://localhost:{API_PORT}/ws"
)
DEFAULT_ALIAS = os.environ.get("RENDEZVOUS_ALIAS", "tester1")
HANDSHAKE_TIMEOUT = float(os.environ.get("RENDEZVOUS_HANDSHAKE_TIMEOUT", "30"))  # seconds

# --- Peer connection ---
ICE_SERVERS = [
    url.strip()
    for url in os.environ.get(
        "RENDEZVOUS_ICE_SERVERS", "stun:stun.l.google.com:19302"
    ).split(",")
    if url.strip()
]
