"""Reconciliation of server-push transcription events into one projection.

``StreamReconciler`` is transport-free: the SSE connection in
``transport.py`` feeds it ``(event, data)`` pairs and it publishes a frozen
``StreamState``. Partial events (``chunk``/``progress``) go through a
``CoalescingScheduler`` so a burst of network events produces a single
state update and a single progress callback.
"""

import logging
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ValidationError

from tivly_asr.core.models import StreamChunk, StreamEventType, StreamProgress, StreamState
from tivly_asr.core.utils import fire_callback, parse_json_object
from tivly_asr.services.stream.scheduler import CoalescingScheduler

logger = logging.getLogger(__name__)

DEFAULT_STAGE = "processing"


class StreamReconciler:
    """Folds stream events into a throttled ``StreamState`` projection.

    Transcript ordering is owned by the server: a chunk's
    ``orderedTranscript`` (or, failing that, its ``transcript``) replaces
    the live transcript outright and fragments are never concatenated here.

    Args:
        on_completed: Called once with the ``completed`` payload.
        on_failed: Called once with the ``failed`` payload (None if malformed).
        on_progress: Called with ``(progress, stage)`` once per flush.
        on_state: Called with every published ``StreamState``.
        flush_interval: Minimum seconds between two batched flushes.
        frame_delay: Delay before a scheduled flush fires.
        clock: Monotonic time source for the scheduler.
    """

    def __init__(
        self,
        *,
        on_completed: Callable[[dict[str, Any]], Any] | None = None,
        on_failed: Callable[[dict[str, Any] | None], Any] | None = None,
        on_progress: Callable[[float, str], Any] | None = None,
        on_state: Callable[[StreamState], Any] | None = None,
        flush_interval: float = 0.1,
        frame_delay: float = 1 / 60,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.on_completed = on_completed
        self.on_failed = on_failed
        self.on_progress = on_progress
        self.on_state = on_state

        scheduler_kwargs = {"min_interval": flush_interval, "frame_delay": frame_delay}
        if clock is not None:
            scheduler_kwargs["clock"] = clock
        self._scheduler = CoalescingScheduler(self._apply_batch, **scheduler_kwargs)

        self._state = StreamState()
        self._terminal = False
        self._reset_accumulators()

    def _reset_accumulators(self) -> None:
        self._live_transcript = ""
        self._progress: float = 0
        self._stage: str | None = None
        self._total_chunks = 0
        self._completed_chunks = 0

    # -- observable state --

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._terminal

    @property
    def pending(self) -> int:
        return self._scheduler.pending

    def _publish(self, **changes) -> None:
        self._state = self._state.model_copy(update=changes)
        fire_callback(self.on_state, self._state)

    # -- lifecycle --

    def reset(self) -> None:
        """Forget all accumulated state before a new connection."""
        self._scheduler.cancel()
        self._reset_accumulators()
        self._terminal = False
        self._state = StreamState()
        fire_callback(self.on_state, self._state)

    def mark_disconnected(self) -> None:
        if self._state.is_connected:
            self._publish(is_connected=False)

    def close(self) -> None:
        """Drop pending flushes without publishing them."""
        self._scheduler.cancel()

    # -- event ingress --

    def handle_event(self, event: str, data: str | None) -> bool:
        """Apply one named stream event.

        Args:
            event: Event name (``connected``, ``status``, ``progress``,
                ``chunk``, ``completed`` or ``failed``).
            data: Raw JSON text of the event.

        Returns:
            True when the event was terminal and the connection should close.
        """
        if self._terminal:
            logger.debug("Ignoring %r event after terminal state", event)
            return True

        try:
            kind = StreamEventType(event)
        except ValueError:
            logger.debug("Ignoring unknown stream event %r", event)
            return False

        if kind is StreamEventType.connected:
            logger.info("Stream connected")
            self._publish(is_connected=True)
        elif kind is StreamEventType.status:
            self._on_status(data)
        elif kind is StreamEventType.progress:
            self._enqueue(kind, StreamProgress, data)
        elif kind is StreamEventType.chunk:
            self._enqueue(kind, StreamChunk, data)
        elif kind is StreamEventType.completed:
            self._on_completed(data)
            return True
        elif kind is StreamEventType.failed:
            self._on_failed(data)
            return True
        return False

    def _enqueue(self, kind: StreamEventType, model: type[BaseModel], data: str | None) -> None:
        payload = parse_json_object(data)
        if payload is None:
            logger.debug("Dropping malformed %s event", kind)
            return
        try:
            item = model.model_validate(payload)
        except ValidationError:
            logger.debug("Dropping invalid %s event: %r", kind, payload)
            return
        self._scheduler.enqueue((kind, item))

    def _on_status(self, data: str | None) -> None:
        payload = parse_json_object(data)
        if payload is None:
            logger.debug("Dropping malformed status event")
            return
        try:
            status = StreamProgress.model_validate(payload)
        except ValidationError:
            logger.debug("Dropping invalid status event: %r", payload)
            return
        logger.info("Stream initial status: %s", payload.get("status"))

        if status.progress_percent is not None:
            self._progress = status.progress_percent
        if status.stage:
            self._stage = status.stage

        # A job that already has text renders it on the next flush
        transcript = payload.get("transcript")
        if isinstance(transcript, str) and transcript:
            self._scheduler.enqueue(
                (
                    StreamEventType.chunk,
                    StreamChunk(transcript=transcript, ordered_transcript=transcript),
                )
            )

        self._publish(
            is_connected=True,
            progress=status.progress_percent or 0,
            stage=status.stage or None,
        )

    # -- batching --

    def _apply_batch(self, batch: list[tuple[StreamEventType, BaseModel]]) -> None:
        for kind, item in batch:
            if kind is StreamEventType.progress:
                if item.progress_percent is not None:
                    self._progress = item.progress_percent
                if item.stage:
                    self._stage = item.stage
            elif kind is StreamEventType.chunk:
                text = item.ordered_transcript or item.transcript or ""
                if text:
                    self._live_transcript = text
                if item.progress_percent is not None:
                    self._progress = item.progress_percent
            if item.total_chunks is not None:
                self._total_chunks = item.total_chunks
            if item.completed_chunks is not None:
                self._completed_chunks = item.completed_chunks

        self._publish(
            live_transcript=self._live_transcript,
            progress=self._progress,
            stage=self._stage,
            total_chunks=self._total_chunks,
            completed_chunks=self._completed_chunks,
        )
        fire_callback(self.on_progress, self._progress, self._stage or DEFAULT_STAGE)

    # -- terminal events --

    def _on_completed(self, data: str | None) -> None:
        self._scheduler.flush_now()
        self._terminal = True

        payload = parse_json_object(data)
        if payload is None:
            logger.warning("Malformed completed payload, finalizing with live transcript")
            payload = {}

        transcript = payload.get("transcript")
        final_transcript = (
            transcript if isinstance(transcript, str) and transcript else self._live_transcript
        )
        self._live_transcript = final_transcript
        self._progress = 100
        logger.info("Stream completed (%d chars)", len(final_transcript))

        self._publish(
            is_connected=False,
            is_completed=True,
            progress=100,
            live_transcript=final_transcript,
            final_payload=payload,
        )
        fire_callback(self.on_completed, payload)

    def _on_failed(self, data: str | None) -> None:
        self._scheduler.flush_now()
        self._terminal = True

        payload = parse_json_object(data)
        logger.warning("Stream failed: %r", payload)

        self._publish(is_connected=False, is_failed=True)
        fire_callback(self.on_failed, payload)
