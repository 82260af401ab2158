"""
tivly-asr exception hierarchy.

All library-specific exceptions inherit from TivlyASRError so callers can
catch one type at the boundary and surface ``detail`` as a plain message.
"""

from datetime import UTC, datetime


class TivlyASRError(Exception):
    """Base exception for all tivly-asr errors."""

    def __init__(
        self,
        detail: str = "An unexpected error occurred",
        code: str = "TIVLY_ASR_ERROR",
    ) -> None:
        self.detail = detail
        self.code = code
        self.timestamp = datetime.now(UTC).isoformat()
        super().__init__(detail)


class AuthTokenMissingError(TivlyASRError):
    """Raised when no bearer token is available for a connection."""

    def __init__(self) -> None:
        super().__init__(
            detail="No auth token available",
            code="AUTH_TOKEN_MISSING",
        )


class StatusRequestError(TivlyASRError):
    """Raised when a single job-status request fails.

    Categories: "connection", "timeout", "http", "network", "decode".
    The poller treats every category as transient.
    """

    def __init__(self, detail: str = "Status request failed", category: str = "unknown") -> None:
        self.category = category
        super().__init__(detail=detail, code="STATUS_REQUEST_ERROR")


class RealtimeConnectionError(TivlyASRError):
    """Raised when the realtime transcription socket cannot be opened."""

    def __init__(self, detail: str = "WebSocket connection error") -> None:
        super().__init__(detail=detail, code="REALTIME_CONNECTION_ERROR")
