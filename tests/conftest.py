"""Shared pytest fixtures for the tivly-asr test suite.

Provides settings wired to a temporary token file, a fake audio source
and a fake realtime WebSocket so no test touches the network or a device.
"""

import asyncio
import json

import numpy as np
import pytest

from tivly_asr.core.auth import TokenStore
from tivly_asr.core.config import Settings

# ---------------------------------------------------------------------------
# Settings / auth fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path):
    """Settings with a token, short intervals, and a tmp token file.

    Returns:
        Settings: Instance independent of the process environment cache.
    """
    return Settings(
        auth_token="test-token",
        auth_token_file=str(tmp_path / "auth_token"),
        poll_interval_seconds=0.01,
        stream_flush_interval_seconds=0.0,
        stream_frame_delay_seconds=0.001,
        realtime_stop_grace_seconds=0.2,
    )


@pytest.fixture
def no_token_settings(tmp_path):
    """Settings with no env token and no token file on disk."""
    return Settings(
        auth_token="",
        auth_token_file=str(tmp_path / "missing" / "auth_token"),
        poll_interval_seconds=0.01,
        realtime_stop_grace_seconds=0.2,
    )


@pytest.fixture
def token_store(settings):
    return TokenStore(settings)


# ---------------------------------------------------------------------------
# Audio fixtures
# ---------------------------------------------------------------------------


class FakeAudioSource:
    """In-memory ``AudioSource``; tests push frames with ``emit``."""

    def __init__(self, sample_rate: int = 16000) -> None:
        self._sample_rate = sample_rate
        self.callback = None
        self.start_count = 0
        self.stop_count = 0

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def is_running(self) -> bool:
        return self.callback is not None

    def start(self, callback) -> None:
        self.callback = callback
        self.start_count += 1

    def stop(self) -> None:
        self.callback = None
        self.stop_count += 1

    def emit(self, samples) -> None:
        if self.callback is not None:
            self.callback(np.asarray(samples, dtype=np.float32))


@pytest.fixture
def make_audio_source():
    """Factory for fake sources at an arbitrary device rate."""
    return FakeAudioSource


@pytest.fixture
def audio_source():
    return FakeAudioSource()


# ---------------------------------------------------------------------------
# Realtime socket fixtures
# ---------------------------------------------------------------------------

_CLOSED = object()


class FakeWebSocket:
    """Minimal stand-in for a ``websockets`` client connection.

    ``push`` queues a server message; iteration ends once ``close`` is
    called, or raises whatever was queued with ``fail``. With ``reply_done``
    set, a stop request is answered with a ``done`` message carrying
    ``done_transcript``.
    """

    def __init__(self) -> None:
        self.sent: list = []
        self.closed = False
        self.reply_done = False
        self.done_transcript: str | None = None
        self._incoming: asyncio.Queue = asyncio.Queue()

    def push(self, message) -> None:
        if not isinstance(message, (str, bytes)):
            message = json.dumps(message)
        self._incoming.put_nowait(message)

    def fail(self, exc: Exception) -> None:
        """Make iteration raise ``exc`` once queued messages are consumed."""
        self._incoming.put_nowait(exc)

    async def send(self, message) -> None:
        self.sent.append(message)
        if self.reply_done and isinstance(message, str) and json.loads(message) == {"type": "stop"}:
            self.push({"type": "done", "transcript": self.done_transcript})

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._incoming.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self):
        message = await self._incoming.get()
        if message is _CLOSED:
            raise StopAsyncIteration
        if isinstance(message, Exception):
            raise message
        return message


@pytest.fixture
def fake_ws():
    return FakeWebSocket()


@pytest.fixture
def fake_connect(fake_ws):
    """A ``websockets.connect`` replacement that records its arguments."""
    calls = []

    async def connect(url, **kwargs):
        calls.append((url, kwargs))
        return fake_ws

    connect.calls = calls
    return connect
