"""
In-memory session registry for the rendezvous server.

Sessions are keyed by the server-assigned channel id. The registry is owned by
the server's event loop; none of its methods await, so every call is atomic
with respect to other coroutines.
"""

import itertools
import logging
from typing import Any

from rendezvous.models import DirectoryEntry, PeerSession

logger = logging.getLogger(__name__)


class Registry:
    """Table of live peer sessions and the directory derived from it."""

    def __init__(self) -> None:
        self._sessions: dict[str, PeerSession] = {}
        self._seq = itertools.count(1)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, channel_id: str) -> bool:
        return channel_id in self._sessions

    def get(self, channel_id: str) -> PeerSession | None:
        return self._sessions.get(channel_id)

    def open(self, channel_id: str) -> PeerSession:
        """Create an empty session for a freshly opened channel."""
        session = self._sessions.get(channel_id)
        if session is None:
            session = PeerSession(channel_id=channel_id)
            self._sessions[channel_id] = session
        return session

    def upsert_offer(
        self, channel_id: str, peer_id: str, alias: str, offer: Any
    ) -> PeerSession:
        """Create or update a session's identity and offer in one step."""
        existing = self._sessions.get(channel_id)
        # Replace rather than mutate so readers never see a half-written session
        session = PeerSession(
            channel_id=channel_id,
            id=peer_id,
            alias=alias,
            offer=offer,
            seq=next(self._seq),
        )
        self._sessions[channel_id] = session
        if existing is None or existing.id != peer_id:
            logger.info(f"Peer {alias!r} ({peer_id}) advertising on channel {channel_id}")
        else:
            logger.debug(f"Peer {peer_id} replaced its offer")
        return session

    def remove(self, channel_id: str) -> PeerSession | None:
        """Drop a session. Unknown channel ids are ignored."""
        session = self._sessions.pop(channel_id, None)
        if session is not None and session.id:
            logger.info(f"Peer {session.alias!r} ({session.id}) removed")
        return session

    def clear(self) -> int:
        """Empty the whole registry. Returns how many sessions were dropped."""
        count = len(self._sessions)
        self._sessions.clear()
        logger.info(f"Registry cleared ({count} session(s) dropped)")
        return count

    def _advertising(self) -> dict[str, PeerSession]:
        # Latest registration wins when several channels claim the same id
        latest: dict[str, PeerSession] = {}
        for session in self._sessions.values():
            if not session.advertising:
                continue
            current = latest.get(session.id)
            if current is None or session.seq > current.seq:
                latest[session.id] = session
        return latest

    def channel_for(self, peer_id: str) -> str | None:
        """Channel id currently advertising ``peer_id``, if any."""
        session = self._advertising().get(peer_id)
        return session.channel_id if session else None

    def snapshot(self) -> list[DirectoryEntry]:
        """The directory: advertising sessions in registration order."""
        sessions = sorted(self._advertising().values(), key=lambda s: s.seq)
        return [
            DirectoryEntry(id=s.id, alias=s.alias, offer=s.offer)
            for s in sessions
        ]
