"""
Transcript module - speaker-attributed transcript reconstruction.
"""

from .reconstruction import (
    process_status_with_reconstruction,
    reconstruct_transcript_segments,
    speaker_display_name,
)

__all__ = [
    "process_status_with_reconstruction",
    "reconstruct_transcript_segments",
    "speaker_display_name",
]
