"""
Status module - HTTP access to the job-status endpoint.
"""

from .client import ASRStatusClient
from .normalize import best_match_of, normalize_status_payload

__all__ = ["ASRStatusClient", "best_match_of", "normalize_status_payload"]
