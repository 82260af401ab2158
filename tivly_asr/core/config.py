"""
Client configuration via pydantic-settings.

Loads values from environment variables (``TIVLY_`` prefix) or a .env file
with defaults that point at the production backend.
Use ``get_settings()`` to obtain the cached singleton instance.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """tivly-asr client settings loaded from environment / .env file.

    Field names map to env var names with the ``TIVLY_`` prefix
    (case-insensitive), e.g. ``TIVLY_POLL_INTERVAL_SECONDS=5``.

    Attributes:
        api_base_url: HTTPS base URL for the status and stream endpoints.
        realtime_host: Host name used to build the ``wss://`` realtime URL.
        auth_token: Bearer token; when empty the token file is read instead.
        auth_token_file: Path of the locally persisted bearer token.
    """

    model_config = SettingsConfigDict(
        env_prefix="TIVLY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Silently ignore unrecognized env vars
    )

    # --- Backend ---
    api_base_url: str = "https://api.tivly.se"
    realtime_host: str = "api.tivly.se"
    http_timeout_seconds: float = 30.0

    # --- Auth ---
    # Token is read fresh on every connection attempt, never cached
    auth_token: str = ""
    auth_token_file: str = "~/.tivly/auth_token"

    # --- Polling ---
    poll_interval_seconds: float = 3.0

    # --- Server-push stream ---
    stream_flush_interval_seconds: float = 0.1  # Minimum gap between UI flushes
    stream_frame_delay_seconds: float = 1 / 60  # One display frame at 60 Hz
    stream_reconnect_max_wait_seconds: float = 30.0

    # --- Realtime audio ---
    realtime_sample_rate: int = 16000  # Wire format: PCM16LE mono at this rate
    realtime_frame_size: int = 4096  # Samples per capture callback
    realtime_stop_grace_seconds: float = 2.0

    # --- Application ---
    log_level: str = "INFO"  # Python logging level


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings singleton.

    Uses ``functools.lru_cache`` so the .env file is read only once.
    Subsequent calls return the same ``Settings`` instance.

    Returns:
        Settings: The process-wide configuration object.
    """
    return Settings()
