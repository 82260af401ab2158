"""Unit tests for speaker-attributed transcript reconstruction."""

import pytest

from tivly_asr.core.models import (
    ASRStatus,
    JobStatus,
    Speaker,
    SpeakerTimeRange,
    TranscriptSegment,
    TranscriptWord,
)
from tivly_asr.services.transcript import (
    process_status_with_reconstruction,
    reconstruct_transcript_segments,
    speaker_display_name,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _speaker(label, *ranges):
    return Speaker(label=label, segments=[SpeakerTimeRange(start=s, end=e) for s, e in ranges])


def _word(text, start, end=None):
    return TranscriptWord(word=text, start=start, end=end if end is not None else start + 0.2)


class TestSpeakerDisplayName:
    """Verify display-name fallbacks."""

    @pytest.mark.parametrize(
        "label, expected",
        [
            ("speaker_0", "Talare 1"),
            ("SPEAKER_01", "Talare 2"),
            ("talare_2", "Talare 3"),
            ("speaker3", "Talare 4"),
            ("b", "Talare B"),
            ("guest", "Talare 5"),
        ],
    )
    def test_fallbacks(self, label, expected):
        assert speaker_display_name(label, {}, 4) == expected

    def test_explicit_name_wins(self):
        assert speaker_display_name("speaker_0", {"speaker_0": "Anna"}, 0) == "Anna"


class TestFromWords:
    """Verify word-to-speaker attribution."""

    def test_groups_words_by_speaker(self):
        speakers = [_speaker("A", (0.0, 2.0)), _speaker("B", (2.5, 5.0))]
        words = [_word("Hej", 0.1), _word("där", 0.5), _word("hallå", 2.6), _word("ja", 3.0)]

        segments = reconstruct_transcript_segments(words, speakers, {"A": "Anna"})

        assert [(s.speaker, s.speaker_name, s.text) for s in segments] == [
            ("A", "Anna", "Hej där"),
            ("B", "Talare B", "hallå ja"),
        ]
        assert segments[0].start == 0.1
        assert segments[0].end == pytest.approx(0.7)
        assert segments[1].start == 2.6

    def test_tolerance_at_range_edge(self):
        speakers = [_speaker("A", (0.0, 2.0)), _speaker("B", (3.0, 5.0))]
        words = [_word("sist", 2.04), _word("först", 2.96)]

        segments = reconstruct_transcript_segments(words, speakers, {})
        assert [s.speaker for s in segments] == ["A", "B"]

    def test_unattributed_words(self):
        speakers = [_speaker("A", (0.0, 1.0)), _speaker("B", (1.0, 2.0))]
        words = [_word("ok", 0.2), _word("ensam", 10.0)]

        segments = reconstruct_transcript_segments(words, speakers, {})
        assert segments[1].speaker == "unknown"
        assert segments[1].speaker_name == "Talare 3"

    def test_text_field_fallback(self):
        speakers = [_speaker("A", (0.0, 1.0))]
        words = [TranscriptWord(text="hej", start=0.1, end=0.2)]
        segments = reconstruct_transcript_segments(words, speakers, {})
        assert segments[0].text == "hej"

    def test_speaker_returns_after_interruption(self):
        speakers = [_speaker("A", (0.0, 1.0), (2.0, 3.0)), _speaker("B", (1.0, 2.0))]
        words = [_word("a", 0.1), _word("b", 1.5), _word("c", 2.5)]

        segments = reconstruct_transcript_segments(words, speakers, {})
        assert [s.speaker for s in segments] == ["A", "B", "A"]


class TestFromSpeakerTimes:
    """Verify proportional splitting when no word timings exist."""

    def test_proportional_split(self):
        speakers = [_speaker("A", (0.0, 4.0), (4.5, 6.0)), _speaker("B", (6.0, 10.0))]
        transcript = "ett två tre fyra fem sex sju åtta nio tio"

        segments = reconstruct_transcript_segments(None, speakers, {}, transcript)

        assert [(s.speaker, s.start, s.end) for s in segments] == [("A", 0.0, 6.0), ("B", 6.0, 10.0)]
        assert segments[0].text == "ett två tre fyra fem sex"
        assert segments[1].text == "sju åtta nio tio"

    def test_leftover_words_go_to_last_segment(self):
        speakers = [_speaker("A", (0.0, 1.0), (2.0, 3.0)), _speaker("B", (1.0, 2.0))]

        segments = reconstruct_transcript_segments([], speakers, {}, "ett två tre fyra")

        assert [(s.speaker, s.text) for s in segments] == [
            ("A", "ett"),
            ("B", "två"),
            ("A", "tre fyra"),
        ]

    def test_zero_duration_ranges(self):
        speakers = [_speaker("A", (1.0, 1.0))]
        segments = reconstruct_transcript_segments(None, speakers, {}, "hej på dig")
        assert segments[0].text == "hej på dig"

    def test_nothing_to_attribute(self):
        speakers = [_speaker("A", (0.0, 1.0))]
        assert reconstruct_transcript_segments(None, speakers, {}, "   ") == []
        assert reconstruct_transcript_segments(None, [], {}, "hej") == []


class TestProcessStatus:
    """Verify the status-level entry point and its fallbacks."""

    def test_uses_diarization(self):
        status = ASRStatus(
            status=JobStatus.completed,
            transcript="Hej där",
            words=[_word("Hej", 0.1), _word("där", 0.4)],
            speakers=[_speaker("speaker_0", (0.0, 1.0))],
        )
        segments = process_status_with_reconstruction(status)
        assert [(s.speaker_name, s.text) for s in segments] == [("Talare 1", "Hej där")]

    def test_falls_back_to_server_segments(self):
        status = ASRStatus(
            status=JobStatus.completed,
            transcript_segments=[
                TranscriptSegment(speaker_id="speaker_1", text="Hej", start=0, end=1),
                TranscriptSegment(speaker="x", text="Tja", start=1, end=2),
                TranscriptSegment(text="Mm", start=2, end=3),
            ],
            speaker_names={"x": "Xena"},
        )
        segments = process_status_with_reconstruction(status)
        assert [(s.speaker, s.speaker_name, s.text) for s in segments] == [
            ("speaker_1", "Talare 2", "Hej"),
            ("x", "Xena", "Tja"),
            ("unknown", "Talare 3", "Mm"),
        ]

    def test_empty(self):
        assert process_status_with_reconstruction(ASRStatus(status=JobStatus.completed)) == []
