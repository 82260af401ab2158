#!/usr/bin/env python3
"""
tivly-asr job watcher

Follows a transcription job from the terminal using one of the three
transports:

    python scripts/watch_job.py poll <job-id>
    python scripts/watch_job.py stream <job-id>
    python scripts/watch_job.py realtime <job-id> --seconds 30

The bearer token is read from ``TIVLY_AUTH_TOKEN`` or the token file
(``~/.tivly/auth_token`` by default).
"""

import argparse
import asyncio
import sys

from tivly_asr.core.auth import TokenStore
from tivly_asr.core.config import get_settings
from tivly_asr.core.models import ASRStatus, JobStatus
from tivly_asr.core.utils import configure_logging
from tivly_asr.services.polling import JobStatusPoller
from tivly_asr.services.realtime import MicrophoneSource, RealtimeASRStreamer
from tivly_asr.services.stream import ASRStream
from tivly_asr.services.transcript import process_status_with_reconstruction


async def poll(job_id: str) -> int:
    """Poll until the job completes or fails. Returns the exit code."""
    finished = asyncio.Event()
    outcome = {"code": 0}

    def on_update(snapshot) -> None:
        progress = f"{snapshot.progress:.0f}%" if snapshot.progress is not None else "-"
        print(f"  {snapshot.status or '-':<11} stage={snapshot.stage or '-':<12} {progress}")

    def on_complete(transcript, matches, best_match, speakers) -> None:
        print(f"\nCompleted ({len(speakers)} speaker(s))")
        if best_match is not None:
            print(f"Best match: {best_match.sample_owner_email} ({best_match.confidence_percent:.0f}%)")
        finished.set()

    def on_error(message: str) -> None:
        print(f"\nFailed: {message}")
        outcome["code"] = 1
        finished.set()

    poller = JobStatusPoller(on_complete=on_complete, on_error=on_error, on_update=on_update)
    poller.set_job(job_id)
    try:
        await finished.wait()
        snapshot = poller.snapshot
        fields = snapshot.model_dump(exclude={"job_id", "is_polling", "status"})
        status = ASRStatus(status=snapshot.status or JobStatus.completed, **fields)
        segments = process_status_with_reconstruction(status)
        if segments:
            for seg in segments:
                print(f"[{seg.start:7.1f}s] {seg.speaker_name}: {seg.text}")
        else:
            print(snapshot.transcript or "")
    finally:
        await poller.aclose()
    return outcome["code"]


async def stream(job_id: str) -> int:
    """Follow the server-push stream until a terminal event."""
    finished = asyncio.Event()
    outcome = {"code": 0}

    def on_progress(progress: float, stage: str) -> None:
        print(f"  {stage:<12} {progress:.0f}%")

    def on_completed(payload) -> None:
        print("\nCompleted")
        print(payload.get("transcript") or asr.state.live_transcript)
        finished.set()

    def on_failed(payload) -> None:
        message = (payload or {}).get("error") or "Transcription failed"
        print(f"\nFailed: {message}")
        outcome["code"] = 1
        finished.set()

    asr = ASRStream(on_completed=on_completed, on_failed=on_failed, on_progress=on_progress)
    task = asr.set_target(job_id)
    if task is None:
        print("No auth token available", file=sys.stderr)
        await asr.aclose()
        return 1
    waiter = asyncio.create_task(finished.wait())
    try:
        # The connection task ends on its own when the server rejects the stream
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        if not finished.is_set():
            print("Stream closed before the job finished", file=sys.stderr)
            outcome["code"] = 1
    finally:
        waiter.cancel()
        await asr.aclose()
    return outcome["code"]


async def realtime(job_id: str, seconds: float) -> int:
    """Stream the default microphone for ``seconds`` and print the transcript."""
    settings = get_settings()

    def on_partial(text: str) -> None:
        print(f"\r... {text}", end="", flush=True)

    def on_final(text: str) -> None:
        print(f"\r{text}")

    streamer = RealtimeASRStreamer(settings, on_partial=on_partial, on_final=on_final)
    source = MicrophoneSource(
        preferred_rate=settings.realtime_sample_rate,
        frame_size=settings.realtime_frame_size,
    )
    await streamer.connect(job_id, source)
    if not streamer.is_connected:
        print(f"Error: {streamer.error}", file=sys.stderr)
        return 1
    try:
        await asyncio.sleep(seconds)
    finally:
        await streamer.stop()

    print("\nTranscript:")
    print(streamer.final_text)
    return 0 if streamer.error is None else 1


def main() -> int:
    parser = argparse.ArgumentParser(description="Follow a Tivly transcription job.")
    sub = parser.add_subparsers(dest="command", required=True)

    poll_cmd = sub.add_parser("poll", help="Poll the status endpoint until done")
    poll_cmd.add_argument("job_id")

    stream_cmd = sub.add_parser("stream", help="Follow the live progress stream")
    stream_cmd.add_argument("job_id")

    rt_cmd = sub.add_parser("realtime", help="Transcribe the microphone live")
    rt_cmd.add_argument("job_id")
    rt_cmd.add_argument("--seconds", type=float, default=30.0, help="Capture duration")

    args = parser.parse_args()
    configure_logging(get_settings().log_level)

    if not TokenStore().get_token():
        print("No auth token available (set TIVLY_AUTH_TOKEN)", file=sys.stderr)
        return 1

    if args.command == "poll":
        return asyncio.run(poll(args.job_id))
    if args.command == "stream":
        return asyncio.run(stream(args.job_id))
    return asyncio.run(realtime(args.job_id, args.seconds))


if __name__ == "__main__":
    sys.exit(main())
