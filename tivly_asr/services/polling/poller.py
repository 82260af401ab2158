"""Request/response polling of a transcription job until it is terminal.

One ``JobStatusPoller`` tracks one job at a time. The loop runs as an
``asyncio.Task``; each iteration fetches the status, publishes a new
``PollingSnapshot``, evaluates completion, then sleeps a fixed interval.

Usage::

    poller = JobStatusPoller(on_complete=handle_done, on_error=handle_error)
    poller.set_job("m1")      # starts polling
    ...
    poller.set_job(None)      # stops polling
    await poller.aclose()
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from tivly_asr.core.config import Settings, get_settings
from tivly_asr.core.exceptions import TivlyASRError
from tivly_asr.core.models import (
    COMPLETED_STATUSES,
    FAILED_STATUSES,
    STAGE_DONE,
    TERMINAL_SUBSYSTEM_STATUSES,
    ASRStatus,
    JobStatus,
    PollingSnapshot,
)
from tivly_asr.core.utils import fire_callback, invoke_callback
from tivly_asr.services.status.client import ASRStatusClient

logger = logging.getLogger(__name__)

DEFAULT_ERROR_MESSAGE = "Transcription failed"


def is_fully_done(status: ASRStatus) -> bool:
    """Return True when a job's results are complete and safe to show.

    The transcript can arrive before speaker identification has finished,
    so a completed primary status alone is not enough: the stage must be
    ``done`` or the speaker identification status must be terminal.
    """
    main_done = status.status in COMPLETED_STATUSES
    has_transcript = bool(status.transcript)
    stage_done = (status.stage or "").lower() == STAGE_DONE
    subsystem_done = (status.subsystem_status or "").lower() in TERMINAL_SUBSYSTEM_STATUSES
    return main_done and has_transcript and (stage_done or subsystem_done)


class JobStatusPoller:
    """Polls ``/asr/status`` for one job until it completes or fails.

    Args:
        client: Status client; one is created (and owned) when omitted.
        on_complete: Called with ``(transcript, matches, best_match, speakers)``.
        on_error: Called with the failure message.
        on_update: Called with every published ``PollingSnapshot``.
        poll_interval: Seconds between polls (default from settings, 3.0).
    """

    def __init__(
        self,
        client: ASRStatusClient | None = None,
        *,
        on_complete: Callable[..., Any] | None = None,
        on_error: Callable[[str], Any] | None = None,
        on_update: Callable[[PollingSnapshot], Any] | None = None,
        poll_interval: float | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._owns_client = client is None
        self._client = client or ASRStatusClient(settings=settings)
        self._on_complete = on_complete
        self._on_error = on_error
        self._on_update = on_update
        self._interval = (
            poll_interval if poll_interval is not None else settings.poll_interval_seconds
        )

        self._polling = False
        self._job_id: str | None = None
        self._generation = 0
        self._task: asyncio.Task | None = None
        self._snapshot = PollingSnapshot()

    # -- observable state --

    @property
    def snapshot(self) -> PollingSnapshot:
        return self._snapshot

    @property
    def is_polling(self) -> bool:
        return self._polling

    @property
    def job_id(self) -> str | None:
        return self._job_id

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    def _publish(self, **changes) -> None:
        self._snapshot = self._snapshot.model_copy(update=changes)
        fire_callback(self._on_update, self._snapshot)

    # -- lifecycle --

    def set_job(self, job_id: str | None) -> asyncio.Task | None:
        """Point the poller at a job, or stop it with None / "".

        Changing the ID leaves any loop for the previous job to notice the
        change after its current await and exit without publishing.
        """
        if not job_id:
            self._job_id = None
            self.stop()
            return None
        if job_id != self._job_id:
            self.stop()
        self._job_id = job_id
        return self.start(job_id)

    def start(self, job_id: str) -> asyncio.Task | None:
        """Begin polling ``job_id``. A no-op while a loop is already active.

        Returns:
            The new loop task, or None when the call was a no-op.
        """
        if self._polling:
            return None

        self._polling = True
        self._job_id = job_id
        self._generation += 1
        if self._snapshot.job_id != job_id:
            self._snapshot = PollingSnapshot()
        self._publish(
            job_id=job_id,
            status=JobStatus.queued,
            error=None,
            is_polling=True,
        )
        logger.info("Polling started for job %s", job_id)
        self._task = asyncio.create_task(self._poll_loop(job_id, self._generation))
        return self._task

    def stop(self) -> None:
        """Stop polling. Safe to call repeatedly or when never started."""
        if not self._polling and not self._snapshot.is_polling:
            return
        self._polling = False
        self._publish(is_polling=False)
        logger.info("Polling stopped for job %s", self._snapshot.job_id)

    async def aclose(self) -> None:
        """Stop polling, cancel the loop task, and close an owned client."""
        self.stop()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._owns_client:
            await self._client.aclose()

    # -- loop --

    def _is_current(self, job_id: str, generation: int) -> bool:
        return (
            self._polling
            and self._generation == generation
            and self._job_id == job_id
        )

    async def _poll_loop(self, job_id: str, generation: int) -> None:
        while self._is_current(job_id, generation):
            try:
                result = await self._client.get_status(job_id)
            except TivlyASRError as exc:
                logger.warning("Polling error for job %s (will retry): %s", job_id, exc.detail)
            except Exception:
                logger.exception("Unexpected polling error for job %s (will retry)", job_id)
            else:
                if not self._is_current(job_id, generation):
                    logger.debug("Discarding stale status for job %s", job_id)
                    break
                if await self._apply(job_id, result):
                    return

            await asyncio.sleep(self._interval)

    async def _apply(self, job_id: str, result: ASRStatus) -> bool:
        """Publish one status response. Returns True when it was terminal."""
        self._publish(
            status=result.status,
            stage=result.stage,
            progress=result.progress,
            subsystem_status=result.subsystem_status,
        )

        if is_fully_done(result):
            self._publish(
                transcript=result.transcript,
                transcript_segments=result.transcript_segments,
                words=result.words,
                matches=result.matches,
                best_match=result.best_match,
                speakers=result.speakers,
                speaker_names=result.speaker_names,
                engine=result.engine,
                language=result.language,
                duration=result.duration,
                audio_backup=result.audio_backup,
            )
            self.stop()
            self._log_speakers(job_id, result)
            await invoke_callback(
                self._on_complete,
                result.transcript or "",
                result.matches,
                result.best_match,
                result.speakers,
            )
            return True

        if result.status in COMPLETED_STATUSES:
            logger.debug(
                "Job %s completed but not final yet (stage=%s, speaker id=%s)",
                job_id,
                result.stage,
                result.subsystem_status,
            )

        if result.status in FAILED_STATUSES:
            message = result.error or DEFAULT_ERROR_MESSAGE
            self._publish(error=message)
            self.stop()
            logger.warning("Job %s failed: %s", job_id, message)
            await invoke_callback(self._on_error, message)
            return True

        return False

    @staticmethod
    def _log_speakers(job_id: str, result: ASRStatus) -> None:
        logger.info(
            "Job %s done: %d chars, speaker id status=%s, %d speaker(s)",
            job_id,
            len(result.transcript or ""),
            result.subsystem_status,
            len(result.speakers),
        )
        for speaker in result.speakers:
            logger.debug(
                "  %s: %.1fs -> %s (%.0f%%) [%d sample(s)]",
                speaker.label,
                speaker.duration_seconds or 0.0,
                speaker.best_match_email or "unmatched",
                (speaker.similarity or 0.0) * 100,
                len(speaker.matches),
            )
        if result.best_match is not None:
            logger.info(
                "Job %s best match: %s (%.0f%%)",
                job_id,
                result.best_match.sample_owner_email,
                result.best_match.confidence_percent,
            )
