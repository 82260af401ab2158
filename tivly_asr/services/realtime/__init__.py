"""
Realtime module - live microphone transcription over a WebSocket.
"""

from .capture import AudioSource, CaptureGraph, MicrophoneSource
from .pcm import PCMEncoder, downsample, float32_to_pcm16
from .streamer import RealtimeASRStreamer

__all__ = [
    "AudioSource",
    "CaptureGraph",
    "MicrophoneSource",
    "PCMEncoder",
    "RealtimeASRStreamer",
    "downsample",
    "float32_to_pcm16",
]
