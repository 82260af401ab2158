"""Server-sent event connection for live transcription progress.

Opens ``GET /asr/stream?meetingId=...&token=...`` and feeds every named
event to a ``StreamReconciler``. The token travels in the query string
because event-stream clients cannot set custom headers.

Transport errors are never reported as job failure: dropped connections
are logged and re-established with exponential backoff until a terminal
event arrives or the caller disconnects.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import httpx
from httpx_sse import SSEError, aconnect_sse
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    wait_exponential,
)

from tivly_asr.core.auth import TokenStore
from tivly_asr.core.config import Settings, get_settings
from tivly_asr.core.models import StreamState
from tivly_asr.services.stream.reconciler import StreamReconciler

logger = logging.getLogger(__name__)


class StreamEndedError(Exception):
    """The server closed the event stream before a terminal event."""


def _log_reconnect(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "ASR stream error (attempt %d), reconnecting: %s",
        retry_state.attempt_number,
        exc,
    )


class ASRStream:
    """One live event-stream connection per (job ID, enabled) pair.

    Args:
        settings: Optional Settings instance (defaults to get_settings()).
        token_store: Source of the bearer token.
        http_client: Shared ``httpx.AsyncClient``; one is created (and
            owned) when omitted.
        on_completed / on_failed / on_progress / on_state: Forwarded to
            the ``StreamReconciler``.
        clock: Monotonic time source for flush throttling.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        token_store: TokenStore | None = None,
        http_client: httpx.AsyncClient | None = None,
        *,
        on_completed: Callable[[dict[str, Any]], Any] | None = None,
        on_failed: Callable[[dict[str, Any] | None], Any] | None = None,
        on_progress: Callable[[float, str], Any] | None = None,
        on_state: Callable[[StreamState], Any] | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._token_store = token_store or TokenStore(self._settings)
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=self._settings.api_base_url.rstrip("/"),
            timeout=httpx.Timeout(self._settings.http_timeout_seconds, read=None),
        )
        self._reconciler = StreamReconciler(
            on_completed=on_completed,
            on_failed=on_failed,
            on_progress=on_progress,
            on_state=on_state,
            flush_interval=self._settings.stream_flush_interval_seconds,
            frame_delay=self._settings.stream_frame_delay_seconds,
            clock=clock,
        )
        self._target: tuple[str | None, bool] = (None, False)
        self._task: asyncio.Task | None = None

    @property
    def state(self) -> StreamState:
        return self._reconciler.state

    @property
    def reconciler(self) -> StreamReconciler:
        return self._reconciler

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    def set_target(self, job_id: str | None, enabled: bool = True) -> asyncio.Task | None:
        """Follow ``job_id`` while ``enabled``; anything else disconnects.

        A new (job ID, enabled) pair tears down the previous connection and
        resets all accumulated state before connecting. Repeating the current
        pair keeps the existing task and state, even once that task has
        finished; only ``disconnect`` or a different pair allows a new
        connection. Without a stored token no connection is attempted.

        Returns:
            The connection task, or None when nothing was started.
        """
        target = (job_id or None, bool(enabled))
        if target == self._target and self._task is not None:
            return self._task
        self._target = target

        self._cancel_task()
        if not job_id or not enabled:
            self._reconciler.mark_disconnected()
            return None

        if not self._token_store.get_token():
            logger.warning("No auth token, skipping ASR stream for job %s", job_id)
            return None

        self._reconciler.reset()
        logger.info("Connecting ASR stream for job %s", job_id)
        self._task = asyncio.create_task(self._run(job_id))
        return self._task

    def disconnect(self) -> None:
        """Close the current connection. Safe to call repeatedly."""
        self._cancel_task()
        self._reconciler.mark_disconnected()

    async def aclose(self) -> None:
        task = self._task
        self.disconnect()
        self._reconciler.close()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._owns_client:
            await self._client.aclose()

    def _cancel_task(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    async def _run(self, job_id: str) -> None:
        retrying = AsyncRetrying(
            retry=retry_if_exception_type((httpx.TransportError, StreamEndedError)),
            wait=wait_exponential(
                multiplier=1, min=1, max=self._settings.stream_reconnect_max_wait_seconds
            ),
            before_sleep=_log_reconnect,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._consume(job_id)
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "ASR stream rejected for job %s (HTTP %s), not reconnecting",
                job_id,
                exc.response.status_code,
            )
        except SSEError as exc:
            logger.warning("ASR stream for job %s is not an event stream: %s", job_id, exc)
        finally:
            self._reconciler.mark_disconnected()

    async def _consume(self, job_id: str) -> None:
        """Read one connection until a terminal event or the stream drops."""
        token = self._token_store.get_token()
        if not token:
            logger.warning("Auth token disappeared, closing ASR stream for job %s", job_id)
            return

        params = {"meetingId": job_id, "token": token}
        async with aconnect_sse(self._client, "GET", "/asr/stream", params=params) as source:
            source.response.raise_for_status()
            try:
                async for sse in source.aiter_sse():
                    if self._reconciler.handle_event(sse.event, sse.data):
                        logger.info("ASR stream for job %s finished", job_id)
                        return
            finally:
                self._reconciler.mark_disconnected()
        raise StreamEndedError(f"Stream for job {job_id} closed before a terminal event")
