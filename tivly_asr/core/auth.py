"""Locally persisted bearer token.

The token is read fresh at every connection attempt so a login or logout
in another process is picked up without restarting long-lived clients.
"""

import logging
from pathlib import Path

from tivly_asr.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


class TokenStore:
    """Reads and writes the bearer token used by all three transports.

    Resolution order: ``settings.auth_token`` (usually from the
    ``TIVLY_AUTH_TOKEN`` env var), then the contents of
    ``settings.auth_token_file``.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    @property
    def path(self) -> Path:
        return Path(self._settings.auth_token_file).expanduser()

    def get_token(self) -> str | None:
        """Return the current token, or None when none is stored."""
        if self._settings.auth_token:
            return self._settings.auth_token
        try:
            token = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("Could not read auth token file %s: %s", self.path, exc)
            return None
        return token or None

    def save_token(self, token: str) -> None:
        path = self.path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(token.strip(), encoding="utf-8")
        path.chmod(0o600)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
