"""
Polling module - request/response tracking of transcription jobs.
"""

from .poller import JobStatusPoller, is_fully_done

__all__ = ["JobStatusPoller", "is_fully_done"]
