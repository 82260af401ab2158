"""Ingress normalization for job-status payloads.

The backend is mid-way through renaming its speaker identification fields
(``lyra*`` is current, ``sis*`` is legacy). This module is the only place
that knows about either name; everything downstream reads ``ASRStatus``.
"""

import logging
from typing import Any

from pydantic import BaseModel, ValidationError

from tivly_asr.core.models import (
    ASRStatus,
    JobStatus,
    Speaker,
    SpeakerMatch,
    TranscriptSegment,
    TranscriptWord,
)

logger = logging.getLogger(__name__)

# (current, legacy) field names
_SUBSYSTEM_STATUS_KEYS = ("lyraStatus", "sisStatus")
_MATCHES_KEYS = ("lyraMatches", "sisMatches")
_BEST_MATCH_KEYS = ("lyraMatch", "sisMatch")
_SPEAKERS_KEYS = ("lyraSpeakers", "sisSpeakers")
_SPEAKER_NAMES_KEYS = ("lyraSpeakerNames", "speakerNames")


def _first_present(data: dict[str, Any], keys: tuple[str, ...]) -> Any:
    """Return the first non-empty value among ``keys``."""
    for key in keys:
        value = data.get(key)
        if value not in (None, "", [], {}):
            return value
    return None


def _parse_list(items: Any, model: type[BaseModel], field: str) -> list:
    """Validate a list of wire items, skipping malformed entries."""
    if not isinstance(items, list):
        return []
    parsed = []
    for item in items:
        try:
            parsed.append(model.model_validate(item))
        except ValidationError:
            logger.warning("Skipping malformed %s entry: %r", field, item)
    return parsed


def _parse_status(raw: Any) -> JobStatus:
    try:
        return JobStatus(str(raw).lower())
    except ValueError:
        # Unknown in-flight states (e.g. "transcribing") are non-terminal
        logger.debug("Unknown job status %r, treating as processing", raw)
        return JobStatus.processing


def _parse_float(raw: Any) -> float | None:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def best_match_of(matches: list[SpeakerMatch]) -> SpeakerMatch | None:
    """Return the highest-confidence match, or None for an empty list."""
    if not matches:
        return None
    return max(matches, key=lambda m: m.confidence_percent)


def _fill_speaker_best_matches(speakers: list[Speaker]) -> list[Speaker]:
    filled: list[Speaker] = []
    for speaker in speakers:
        candidate = speaker.best_candidate()
        if speaker.best_match_email is None and candidate is not None:
            speaker = speaker.model_copy(
                update={
                    "best_match_email": candidate.sample_owner_email,
                    "similarity": candidate.similarity,
                }
            )
        filled.append(speaker)
    return filled


def normalize_status_payload(data: dict[str, Any]) -> ASRStatus:
    """Convert a raw ``/asr/status`` JSON body into an ``ASRStatus``.

    Args:
        data: Decoded JSON object from the status endpoint.

    Returns:
        The normalized status. Missing or malformed fields fall back to
        their empty defaults rather than raising.
    """
    if not data.get("status"):
        logger.debug("Status payload without status field, treating as queued")
    status = _parse_status(data.get("status") or JobStatus.queued)

    matches = _parse_list(_first_present(data, _MATCHES_KEYS), SpeakerMatch, "match")

    best_match: SpeakerMatch | None = None
    raw_best = _first_present(data, _BEST_MATCH_KEYS)
    if isinstance(raw_best, dict):
        try:
            best_match = SpeakerMatch.model_validate(raw_best)
        except ValidationError:
            logger.warning("Ignoring malformed best match: %r", raw_best)
    if best_match is None:
        best_match = best_match_of(matches)

    speakers = _fill_speaker_best_matches(
        _parse_list(_first_present(data, _SPEAKERS_KEYS), Speaker, "speaker")
    )

    raw_names = _first_present(data, _SPEAKER_NAMES_KEYS)
    speaker_names = (
        {str(k): str(v) for k, v in raw_names.items() if v}
        if isinstance(raw_names, dict)
        else {}
    )

    raw_segments = data.get("transcriptSegments")
    raw_words = data.get("words")
    audio_backup = data.get("audioBackup")
    subsystem_status = _first_present(data, _SUBSYSTEM_STATUS_KEYS)

    return ASRStatus(
        status=status,
        stage=data.get("stage") or None,
        progress=_parse_float(data.get("progress")),
        transcript=data.get("transcript") or None,
        transcript_segments=(
            _parse_list(raw_segments, TranscriptSegment, "transcript segment")
            if isinstance(raw_segments, list)
            else None
        ),
        words=(
            _parse_list(raw_words, TranscriptWord, "word")
            if isinstance(raw_words, list)
            else None
        ),
        subsystem_status=str(subsystem_status) if subsystem_status is not None else None,
        matches=matches,
        best_match=best_match,
        speakers=speakers,
        speaker_names=speaker_names,
        engine=data.get("engine"),
        language=data.get("language"),
        duration=_parse_float(data.get("duration")),
        audio_backup=audio_backup if isinstance(audio_backup, dict) else None,
        error=data.get("error") or None,
    )
