"""
tivly-asr - Python client for the Tivly transcription backend.

Three independent transports follow a transcription job: status polling,
a server-sent event progress stream, and a realtime microphone socket.
"""

__version__ = "0.1.0"
