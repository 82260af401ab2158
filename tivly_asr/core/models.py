"""
Pydantic v2 models for wire payloads and published client snapshots.

Wire models accept the backend's camelCase field names (and snake_case for
construction in code). Snapshot models are frozen: a new instance is
published on every state change, never mutated in place.
"""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    """Base for payloads received from the backend."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ---------------------------------------------------------------------------
# Job status
# ---------------------------------------------------------------------------


class JobStatus(StrEnum):
    """Primary job status reported by the transcription backend."""

    queued = "queued"
    uploading = "uploading"
    processing = "processing"
    completed = "completed"
    done = "done"
    error = "error"
    failed = "failed"


COMPLETED_STATUSES = frozenset({JobStatus.completed, JobStatus.done})
FAILED_STATUSES = frozenset({JobStatus.error, JobStatus.failed})

# Speaker identification statuses that count as finished for job completion
TERMINAL_SUBSYSTEM_STATUSES = frozenset({"done", "no_samples", "disabled"})

STAGE_DONE = "done"


# ---------------------------------------------------------------------------
# Transcript
# ---------------------------------------------------------------------------


class TranscriptWord(_WireModel):
    """A single word with timing, as produced by the ASR engine."""

    word: str | None = None
    text: str | None = None
    start: float = 0.0
    end: float = 0.0
    confidence: float | None = None

    @property
    def display_text(self) -> str:
        return self.word or self.text or ""


class TranscriptSegment(_WireModel):
    """A server-side transcript segment attributed to a speaker."""

    speaker_id: str | None = None
    speaker: str | None = None
    text: str = ""
    start: float = 0.0
    end: float = 0.0
    confidence: float | None = None


class ReconstructedSegment(BaseModel):
    """A client-side speaker-attributed segment."""

    speaker: str
    speaker_name: str
    start: float
    end: float
    text: str


# ---------------------------------------------------------------------------
# Speaker identification
# ---------------------------------------------------------------------------


class SpeakerTimeRange(_WireModel):
    start: float
    end: float


class SpeakerCandidate(_WireModel):
    """One candidate voice-sample owner for a diarized speaker."""

    sample_owner_email: str
    similarity: float = 0.0


class Speaker(_WireModel):
    """A diarized speaker label with its time ranges and identity matches."""

    label: str
    segments: list[SpeakerTimeRange] = Field(default_factory=list)
    duration_seconds: float | None = None
    best_match_email: str | None = None
    similarity: float | None = None
    matches: list[SpeakerCandidate] = Field(default_factory=list)

    def best_candidate(self) -> SpeakerCandidate | None:
        """Return the highest-similarity candidate, or None."""
        if not self.matches:
            return None
        return max(self.matches, key=lambda m: m.similarity)


class SpeakerMatch(_WireModel):
    """A job-level identity match between a speaker and a voice sample."""

    sample_owner_email: str | None = None
    speaker_name: str | None = None
    speaker_label: str | None = None
    confidence_percent: float = 0.0
    matched_words: int | None = None


# ---------------------------------------------------------------------------
# Normalized status response
# ---------------------------------------------------------------------------


class ASRStatus(BaseModel):
    """Normalized job-status response.

    Built by ``normalize_status_payload``; field names here are the
    client's own and never carry the backend's legacy/current prefixes.
    """

    status: JobStatus = JobStatus.queued
    stage: str | None = None
    progress: float | None = None
    transcript: str | None = None
    transcript_segments: list[TranscriptSegment] | None = None
    words: list[TranscriptWord] | None = None
    subsystem_status: str | None = None
    matches: list[SpeakerMatch] = Field(default_factory=list)
    best_match: SpeakerMatch | None = None
    speakers: list[Speaker] = Field(default_factory=list)
    speaker_names: dict[str, str] = Field(default_factory=dict)
    engine: str | None = None
    language: str | None = None
    duration: float | None = None
    audio_backup: dict[str, Any] | None = None
    error: str | None = None


class PollingSnapshot(BaseModel):
    """State published by ``JobStatusPoller`` after every change."""

    model_config = ConfigDict(frozen=True)

    job_id: str | None = None
    status: JobStatus | None = None
    stage: str | None = None
    progress: float | None = None
    transcript: str | None = None
    transcript_segments: list[TranscriptSegment] | None = None
    words: list[TranscriptWord] | None = None
    subsystem_status: str | None = None
    matches: list[SpeakerMatch] = Field(default_factory=list)
    best_match: SpeakerMatch | None = None
    speakers: list[Speaker] = Field(default_factory=list)
    speaker_names: dict[str, str] = Field(default_factory=dict)
    engine: str | None = None
    language: str | None = None
    duration: float | None = None
    audio_backup: dict[str, Any] | None = None
    error: str | None = None
    is_polling: bool = False


# ---------------------------------------------------------------------------
# Server-push stream
# ---------------------------------------------------------------------------


class StreamEventType(StrEnum):
    """Named events on the server-push transcription stream."""

    connected = "connected"
    status = "status"
    progress = "progress"
    chunk = "chunk"
    completed = "completed"
    failed = "failed"


class StreamChunk(_WireModel):
    """Partial transcription result for one audio chunk."""

    meeting_id: str | None = None
    chunk_index: int | None = None
    total_chunks: int | None = None
    completed_chunks: int | None = None
    progress_percent: float | None = None
    chunk_offset_sec: float | None = None
    chunk_duration_sec: float | None = None
    transcript: str | None = None
    ordered_transcript: str | None = None
    updated_at: str | None = None


class StreamProgress(_WireModel):
    """Periodic progress report for the whole job."""

    meeting_id: str | None = None
    stage: str | None = None
    progress_percent: float | None = None
    chunk_index: int | None = None
    total_chunks: int | None = None
    completed_chunks: int | None = None
    updated_at: str | None = None


class StreamState(BaseModel):
    """Projection published by the stream reconciler on each flush."""

    model_config = ConfigDict(frozen=True)

    is_connected: bool = False
    live_transcript: str = ""
    progress: float = 0
    stage: str | None = None
    total_chunks: int = 0
    completed_chunks: int = 0
    is_completed: bool = False
    is_failed: bool = False
    final_payload: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Realtime socket
# ---------------------------------------------------------------------------


class RealtimeMessageType(StrEnum):
    """Discriminator for messages pushed by the realtime socket."""

    partial = "partial"
    final = "final"
    done = "done"
    error = "error"


class RealtimeMessage(BaseModel):
    """JSON envelope received over the realtime transcription socket."""

    model_config = ConfigDict(extra="ignore")

    type: RealtimeMessageType
    text: str | None = None
    offset: float | None = None
    duration: float | None = None
    transcript: str | None = None
    message: str | None = None
