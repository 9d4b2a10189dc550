from __future__ import annotations


class OrbError(Exception):
    """Base class for conversation engine failures."""


class CapturePermissionDenied(OrbError):
    """The capture device could not be opened (missing device or denied access)."""


class SignalRejected(OrbError):
    """The captured buffer fell below the loudness or duration floor."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class EmptyTranscript(OrbError):
    """Transcription succeeded but produced no text."""


class ServiceFailure(OrbError):
    """A transcription, response or synthesis call failed in transport."""

    def __init__(self, service: str, detail: str) -> None:
        super().__init__(f"{service} failed: {detail}")
        self.service = service
        self.detail = detail


class ToolParseFailure(OrbError):
    """A reply looked like a tool call but did not parse."""


class ToolExecutionFailure(OrbError):
    """The command executor raised while running a tool call."""


class ExtractionFailure(OrbError):
    """Background fact mining could not complete."""


class PlaybackError(OrbError):
    """Synthesized audio could not be decoded or played."""


__all__ = [
    "OrbError",
    "CapturePermissionDenied",
    "SignalRejected",
    "EmptyTranscript",
    "ServiceFailure",
    "ToolParseFailure",
    "ToolExecutionFailure",
    "ExtractionFailure",
    "PlaybackError",
]
