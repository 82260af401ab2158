"""Speaker-attributed transcript reconstruction.

The diarized speaker time ranges in a status response are the source of
truth for attribution. Words are matched to speakers by timestamp and
grouped into turns; when the engine returned no word timings the plain
transcript is split across speaker turns in proportion to their duration.
"""

import logging
import math
import re

from tivly_asr.core.models import (
    ASRStatus,
    ReconstructedSegment,
    Speaker,
    TranscriptSegment,
    TranscriptWord,
)

logger = logging.getLogger(__name__)

UNKNOWN_SPEAKER = "unknown"

# Seconds of slack around each speaker range when matching word starts
SPEAKER_TIME_TOLERANCE = 0.05

# Same-speaker ranges closer than this are one turn
TURN_MERGE_GAP_SECONDS = 1.0

_NUMBERED_LABEL = re.compile(r"(?:speaker_?|talare_?)(\d+)", re.IGNORECASE)
_LETTER_LABEL = re.compile(r"^[A-Za-z]$")


def speaker_at(time: float, speakers: list[Speaker]) -> str:
    """Return the label of the first speaker active at ``time``."""
    for speaker in speakers:
        for seg in speaker.segments:
            if seg.start - SPEAKER_TIME_TOLERANCE <= time <= seg.end + SPEAKER_TIME_TOLERANCE:
                return speaker.label
    return UNKNOWN_SPEAKER


def speaker_display_name(speaker_id: str, speaker_names: dict[str, str], index: int) -> str:
    """Resolve a human-readable name for a speaker label.

    Explicit names win. Otherwise ``speaker_0`` / ``talare_0`` become
    ``Talare 1``, single letters become ``Talare A``, and anything else is
    named by its 1-based position.
    """
    if speaker_names.get(speaker_id):
        return speaker_names[speaker_id]

    match = _NUMBERED_LABEL.search(speaker_id)
    if match:
        return f"Talare {int(match.group(1)) + 1}"

    if _LETTER_LABEL.match(speaker_id):
        return f"Talare {speaker_id.upper()}"

    return f"Talare {index + 1}"


def _index_of(label: str, labels: list[str]) -> int:
    try:
        return labels.index(label)
    except ValueError:
        return len(labels)


def _merge_consecutive(segments: list[ReconstructedSegment]) -> list[ReconstructedSegment]:
    merged: list[ReconstructedSegment] = []
    for seg in segments:
        if merged and merged[-1].speaker == seg.speaker:
            last = merged[-1]
            last.text = f"{last.text} {seg.text}".strip()
            last.end = seg.end
        else:
            merged.append(seg.model_copy())
    return merged


def _from_words(
    words: list[TranscriptWord],
    speakers: list[Speaker],
    speaker_names: dict[str, str],
) -> list[ReconstructedSegment]:
    labels = [s.label for s in speakers]
    segments: list[ReconstructedSegment] = []

    def flush(label: str, group: list[TranscriptWord]) -> None:
        segments.append(
            ReconstructedSegment(
                speaker=label,
                speaker_name=speaker_display_name(label, speaker_names, _index_of(label, labels)),
                start=group[0].start,
                end=group[-1].end,
                text=" ".join(w.display_text for w in group).strip(),
            )
        )

    current = ""
    group: list[TranscriptWord] = []
    for word in words:
        label = speaker_at(word.start, speakers)
        if group and label != current:
            flush(current, group)
            group = []
        current = label
        group.append(word)
    if group:
        flush(current, group)

    return _merge_consecutive(segments)


def _from_speaker_times(
    speakers: list[Speaker],
    speaker_names: dict[str, str],
    transcript: str,
) -> list[ReconstructedSegment]:
    ranges = sorted(
        ((s.label, seg.start, seg.end) for s in speakers for seg in s.segments),
        key=lambda r: r[1],
    )

    turns: list[list] = []
    for label, start, end in ranges:
        if turns and turns[-1][0] == label and start - turns[-1][2] < TURN_MERGE_GAP_SECONDS:
            turns[-1][2] = max(turns[-1][2], end)
        else:
            turns.append([label, start, end])

    total_duration = sum(end - start for _, start, end in turns)
    words = transcript.split()
    labels = list(dict.fromkeys(s.label for s in speakers))

    result: list[ReconstructedSegment] = []
    position = 0
    for label, start, end in turns:
        if total_duration > 0:
            share = (end - start) / total_duration * len(words)
            count = max(1, math.floor(share + 0.5))
        else:
            count = 1
        result.append(
            ReconstructedSegment(
                speaker=label,
                speaker_name=speaker_display_name(label, speaker_names, _index_of(label, labels)),
                start=start,
                end=end,
                text=" ".join(words[position : position + count]),
            )
        )
        position += count

    if position < len(words) and result:
        last = result[-1]
        last.text = f"{last.text} {' '.join(words[position:])}".strip()

    return result


def reconstruct_transcript_segments(
    words: list[TranscriptWord] | None,
    speakers: list[Speaker],
    speaker_names: dict[str, str],
    transcript: str | None = None,
) -> list[ReconstructedSegment]:
    """Build speaker turns from diarization data.

    Args:
        words: Word-level timings; preferred when present.
        speakers: Diarized speakers with their time ranges.
        speaker_names: Label -> display name overrides.
        transcript: Plain text used when ``words`` is empty.

    Returns:
        Speaker-attributed segments in time order, or an empty list when
        there is nothing to attribute.
    """
    if not speakers:
        return []
    if words:
        return _from_words(words, speakers, speaker_names)
    if transcript and transcript.strip():
        return _from_speaker_times(speakers, speaker_names, transcript)
    return []


def _from_server_segments(
    segments: list[TranscriptSegment], speaker_names: dict[str, str]
) -> list[ReconstructedSegment]:
    labels = list(dict.fromkeys(s.speaker_id or s.speaker or UNKNOWN_SPEAKER for s in segments))
    return [
        ReconstructedSegment(
            speaker=(label := seg.speaker_id or seg.speaker or UNKNOWN_SPEAKER),
            speaker_name=speaker_display_name(label, speaker_names, labels.index(label)),
            start=seg.start,
            end=seg.end,
            text=seg.text,
        )
        for seg in segments
    ]


def process_status_with_reconstruction(status: ASRStatus) -> list[ReconstructedSegment]:
    """Speaker turns for a status response.

    Reconstructs from diarization when possible and otherwise falls back to
    the server's own ``transcript_segments``.
    """
    if status.speakers:
        reconstructed = reconstruct_transcript_segments(
            status.words, status.speakers, status.speaker_names, status.transcript
        )
        if reconstructed:
            logger.debug("Reconstructed %d segments from diarization", len(reconstructed))
            return reconstructed

    if status.transcript_segments:
        return _from_server_segments(status.transcript_segments, status.speaker_names)

    return []
