"""
Stream module - server-push transcription progress with batched updates.
"""

from .reconciler import StreamReconciler
from .scheduler import CoalescingScheduler
from .transport import ASRStream

__all__ = ["ASRStream", "CoalescingScheduler", "StreamReconciler"]
