"""Pydantic models for the signalling protocol."""

from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class ChannelState(str, Enum):
    """Lifecycle of one server-side signalling channel."""
    CONNECTED = "connected"
    ADVERTISING = "advertising"
    CLOSED = "closed"


class PeerSession(BaseModel):
    """One client's registration, scoped to a single open channel."""
    channel_id: str
    id: str | None = None
    alias: str = ""
    offer: Any = None
    seq: int = 0  # registration order, used to order the directory

    @property
    def advertising(self) -> bool:
        return self.offer is not None


class DirectoryEntry(BaseModel):
    """A single advertising peer as seen by every client."""
    id: str
    alias: str = ""
    offer: Any = Field(
        validation_alias=AliasChoices("peerOffer", "offer"),
        serialization_alias="peerOffer",
    )


class PeerRef(BaseModel):
    """Reference to a directory entry; only ``id`` is required."""
    model_config = ConfigDict(extra="allow")

    id: str


# --- Wire protocol ---

class Event:
    REGISTER = "register"
    SIGNALLING = "signalling"
    CLIENTS = "clients"
    CLEAR_ROOMS = "clearRooms"
    ERROR = "error"


class Envelope(BaseModel):
    """The JSON frame exchanged over the WebSocket."""
    event: str
    data: Any = None


class RegisterMessage(BaseModel):
    """Client advertises (or replaces) its offer."""
    id: str = Field(min_length=1)
    alias: str = ""
    offer: Any = Field(
        validation_alias=AliasChoices("peerOffer", "offer"),
        serialization_alias="peerOffer",
    )

    @field_validator("offer")
    @classmethod
    def _offer_present(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("offer must not be null")
        return value


class SignallingMessage(BaseModel):
    """An answer routed to the peer named by ``client.id``."""
    client: PeerRef
    answer: Any = Field(
        validation_alias=AliasChoices("peerAnswer", "answer"),
        serialization_alias="peerAnswer",
    )

    @field_validator("answer")
    @classmethod
    def _answer_present(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("answer must not be null")
        return value

    @property
    def target_id(self) -> str:
        return self.client.id
