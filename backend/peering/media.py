"""Local media capture, backed by aiortc's MediaPlayer."""

import logging

from aiortc.contrib.media import MediaPlayer

logger = logging.getLogger(__name__)


class MediaCaptureError(RuntimeError):
    """The local audio/video source could not be opened."""


class LocalStream:
    """Handle to the local audio/video tracks."""

    def __init__(self, player: MediaPlayer) -> None:
        self._player = player

    @property
    def tracks(self) -> list:
        return [t for t in (self._player.audio, self._player.video) if t is not None]

    def stop(self) -> None:
        for track in self.tracks:
            track.stop()


def open_local_stream(
    source: str, fmt: str | None = None, options: dict | None = None
) -> LocalStream:
    """
    Open a capture device or media file.

    ``source``/``fmt`` are passed to FFmpeg, e.g. ``("/dev/video0", "v4l2")``
    or a plain file path with no format.
    """
    try:
        player = MediaPlayer(source, format=fmt, options=options or {})
    except Exception as e:
        raise MediaCaptureError(f"Could not open media source {source!r}: {e}") from e

    stream = LocalStream(player)
    if not stream.tracks:
        raise MediaCaptureError(f"Media source {source!r} has no audio or video")
    logger.info(f"Opened local media {source!r} ({len(stream.tracks)} track(s))")
    return stream
