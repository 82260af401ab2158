"""Unit tests for the job status poller and its completion rule."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tivly_asr.core.exceptions import StatusRequestError
from tivly_asr.core.models import ASRStatus, JobStatus
from tivly_asr.services.polling import JobStatusPoller, is_fully_done
from tivly_asr.services.status import ASRStatusClient, normalize_status_payload

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _mock_client(*responses, default=None):
    """Create a status client returning ``responses`` then ``default`` forever."""
    client = MagicMock(spec=ASRStatusClient)
    queue = list(responses)

    async def get_status(job_id):
        if queue:
            item = queue.pop(0)
        else:
            item = default or ASRStatus(status=JobStatus.processing)
        if isinstance(item, Exception):
            raise item
        return item

    client.get_status = AsyncMock(side_effect=get_status)
    return client


def _done(transcript="Hej", **kwargs):
    kwargs.setdefault("stage", "done")
    return ASRStatus(status=JobStatus.completed, transcript=transcript, **kwargs)


async def _finish(poller, timeout=1.0):
    await asyncio.wait_for(poller.task, timeout)


# ---------------------------------------------------------------------------
# Completion rule
# ---------------------------------------------------------------------------


class TestIsFullyDone:
    """Verify the guard against premature completion."""

    def test_stage_done(self):
        assert is_fully_done(_done())

    @pytest.mark.parametrize("subsystem", ["done", "no_samples", "disabled", "DONE"])
    def test_terminal_subsystem(self, subsystem):
        status = _done(stage="processing", subsystem_status=subsystem)
        assert is_fully_done(status)

    def test_speaker_id_still_running(self):
        status = _done(stage="processing", subsystem_status="processing")
        assert not is_fully_done(status)

    def test_requires_transcript(self):
        assert not is_fully_done(_done(transcript=None))

    def test_requires_completed_status(self):
        status = ASRStatus(status=JobStatus.processing, transcript="Hej", stage="done")
        assert not is_fully_done(status)

    def test_done_status_counts(self):
        assert is_fully_done(ASRStatus(status=JobStatus.done, transcript="x", stage="done"))


# ---------------------------------------------------------------------------
# Poller lifecycle
# ---------------------------------------------------------------------------


class TestJobStatusPoller:
    """Verify polling, completion, failure and job switching."""

    async def test_completes_once(self, settings):
        """queued -> processing -> completed fires on_complete exactly once."""
        client = _mock_client(
            ASRStatus(status=JobStatus.queued, progress=0),
            ASRStatus(status=JobStatus.processing, progress=50),
            _done(transcript="Hej där"),
        )
        on_complete = AsyncMock()
        poller = JobStatusPoller(client, on_complete=on_complete, settings=settings)

        poller.set_job("m1")
        await _finish(poller)

        on_complete.assert_awaited_once_with("Hej där", [], None, [])
        assert client.get_status.await_count == 3
        assert not poller.is_polling
        assert poller.snapshot.transcript == "Hej där"
        assert poller.snapshot.is_polling is False
        await poller.aclose()

    async def test_waits_for_speaker_identification(self, settings):
        """A completed status with speaker identification running keeps polling."""
        client = _mock_client(
            _done(stage="processing", subsystem_status="processing"),
            _done(stage="done", subsystem_status="done"),
        )
        on_complete = AsyncMock()
        poller = JobStatusPoller(client, on_complete=on_complete, settings=settings)

        poller.set_job("m1")
        await _finish(poller)

        assert client.get_status.await_count == 2
        on_complete.assert_awaited_once()

    async def test_legacy_subsystem_done_completes(self, settings):
        """queued, then completed with sisStatus "done" and stage "processing", completes."""
        client = _mock_client(
            normalize_status_payload({"status": "queued"}),
            normalize_status_payload(
                {
                    "status": "completed",
                    "stage": "processing",
                    "sisStatus": "done",
                    "transcript": "hello world",
                }
            ),
        )
        on_complete = AsyncMock()
        poller = JobStatusPoller(client, on_complete=on_complete, settings=settings)

        poller.set_job("m1")
        await _finish(poller)

        assert client.get_status.await_count == 2
        on_complete.assert_awaited_once_with("hello world", [], None, [])

    async def test_failure_reports_error(self, settings):
        client = _mock_client(ASRStatus(status=JobStatus.failed, error="Audio corrupt"))
        on_error = AsyncMock()
        on_complete = AsyncMock()
        poller = JobStatusPoller(
            client, on_complete=on_complete, on_error=on_error, settings=settings
        )

        poller.set_job("m1")
        await _finish(poller)

        on_error.assert_awaited_once_with("Audio corrupt")
        on_complete.assert_not_awaited()
        assert poller.snapshot.error == "Audio corrupt"
        assert not poller.is_polling

    async def test_failure_default_message(self, settings):
        client = _mock_client(ASRStatus(status=JobStatus.error))
        errors = []
        poller = JobStatusPoller(client, on_error=errors.append, settings=settings)

        poller.set_job("m1")
        await _finish(poller)

        assert errors == ["Transcription failed"]

    async def test_transient_errors_keep_polling(self, settings):
        """Request errors are logged and the next poll proceeds."""
        client = _mock_client(
            StatusRequestError("timed out", category="timeout"),
            RuntimeError("unexpected"),
            _done(),
        )
        on_complete = AsyncMock()
        on_error = AsyncMock()
        poller = JobStatusPoller(
            client, on_complete=on_complete, on_error=on_error, settings=settings
        )

        poller.set_job("m1")
        await _finish(poller)

        assert client.get_status.await_count == 3
        on_complete.assert_awaited_once()
        on_error.assert_not_awaited()

    async def test_start_is_idempotent(self, settings):
        client = _mock_client()
        poller = JobStatusPoller(client, settings=settings)

        first = poller.start("m1")
        second = poller.start("m1")

        assert first is not None
        assert second is None
        await poller.aclose()

    async def test_set_job_none_stops(self, settings):
        client = _mock_client()
        poller = JobStatusPoller(client, settings=settings)

        task = poller.set_job("m1")
        await asyncio.sleep(0.03)
        poller.set_job(None)
        await asyncio.wait_for(task, 1.0)

        assert not poller.is_polling
        assert poller.job_id is None
        calls = client.get_status.await_count
        await asyncio.sleep(0.03)
        assert client.get_status.await_count == calls

    async def test_job_change_restarts(self, settings):
        """Switching jobs stops the old loop and polls the new ID only."""
        client = _mock_client()
        poller = JobStatusPoller(client, settings=settings)

        old_task = poller.set_job("m1")
        await asyncio.sleep(0.02)
        new_task = poller.set_job("m2")
        await asyncio.wait_for(old_task, 1.0)
        client.get_status.reset_mock()
        await asyncio.sleep(0.03)

        assert new_task is not old_task
        assert poller.job_id == "m2"
        assert poller.snapshot.job_id == "m2"
        polled = {call.args[0] for call in client.get_status.await_args_list}
        assert polled == {"m2"}
        await poller.aclose()

    async def test_same_job_is_noop(self, settings):
        poller = JobStatusPoller(_mock_client(), settings=settings)
        first = poller.set_job("m1")
        assert poller.set_job("m1") is None
        assert poller.task is first
        await poller.aclose()

    async def test_publishes_snapshots(self, settings):
        client = _mock_client(ASRStatus(status=JobStatus.processing, progress=40), _done())
        snapshots = []
        poller = JobStatusPoller(client, on_update=snapshots.append, settings=settings)

        poller.set_job("m1")
        await _finish(poller)

        assert snapshots[0].is_polling is True
        assert snapshots[0].status == JobStatus.queued
        assert any(s.progress == 40 for s in snapshots)
        assert snapshots[-1].is_polling is False

    async def test_stop_is_idempotent(self, settings):
        snapshots = []
        poller = JobStatusPoller(_mock_client(), on_update=snapshots.append, settings=settings)
        poller.stop()
        poller.stop()
        assert snapshots == []

    async def test_aclose_closes_owned_client(self, settings):
        """A client created by the poller is closed with it."""
        with patch("tivly_asr.services.polling.poller.ASRStatusClient") as mock_cls:
            mock_cls.return_value.aclose = AsyncMock()
            poller = JobStatusPoller(settings=settings)
            await poller.aclose()
        mock_cls.return_value.aclose.assert_awaited_once()

    async def test_aclose_keeps_shared_client(self, settings):
        client = _mock_client()
        client.aclose = AsyncMock()
        poller = JobStatusPoller(client, settings=settings)
        await poller.aclose()
        client.aclose.assert_not_awaited()
