"""Live audio capture for the realtime streamer.

An ``AudioSource`` is the device stream (it can be started and stopped
repeatedly). A ``CaptureGraph`` is one attachment of a frame processor to a
source: it receives fixed-size float32 frames at the device rate, encodes
them to PCM16LE at the wire rate, and hands each frame on immediately.
Pausing tears down the graph; resuming builds a fresh one.
"""

import logging
from collections.abc import Callable
from typing import Protocol

import numpy as np

from tivly_asr.services.realtime.pcm import PCMEncoder

logger = logging.getLogger(__name__)

FrameCallback = Callable[[np.ndarray], None]


class AudioSource(Protocol):
    """A restartable mono float32 audio stream."""

    @property
    def sample_rate(self) -> int: ...

    def start(self, callback: FrameCallback) -> None: ...

    def stop(self) -> None: ...


class MicrophoneSource:
    """Captures an input device through ``sounddevice``.

    Tries to open the device at ``preferred_rate`` and falls back to the
    device's default rate when that is unsupported; frames are then
    downsampled by the capture graph.

    Args:
        device: sounddevice device index or name (None = system default).
        preferred_rate: Rate to request from the device.
        frame_size: Samples per callback.
    """

    def __init__(
        self,
        device: int | str | None = None,
        preferred_rate: int = 16000,
        frame_size: int = 4096,
    ) -> None:
        import sounddevice as sd  # requires the PortAudio system library

        self._sd = sd
        self._device = device
        self._frame_size = frame_size
        self._sample_rate = self._resolve_rate(preferred_rate)
        self._stream = None

    def _resolve_rate(self, preferred_rate: int) -> int:
        try:
            self._sd.check_input_settings(
                device=self._device, channels=1, dtype="float32", samplerate=preferred_rate
            )
            return preferred_rate
        except (ValueError, self._sd.PortAudioError):
            info = self._sd.query_devices(self._device, "input")
            rate = int(info["default_samplerate"])
            logger.info("Device does not support %d Hz, capturing at %d Hz", preferred_rate, rate)
            return rate

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    def start(self, callback: FrameCallback) -> None:
        if self._stream is not None:
            return

        def _on_audio(indata, frames, time_info, status) -> None:
            if status:
                logger.debug("Audio input status: %s", status)
            callback(indata[:, 0].copy())

        self._stream = self._sd.InputStream(
            device=self._device,
            channels=1,
            dtype="float32",
            samplerate=self._sample_rate,
            blocksize=self._frame_size,
            callback=_on_audio,
        )
        self._stream.start()
        logger.info("Microphone capture started at %d Hz", self._sample_rate)

    def stop(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.stop()
            stream.close()


class CaptureGraph:
    """One processor attached to an ``AudioSource``.

    Args:
        source: The device stream to read from.
        on_frame: Receives each encoded PCM16LE frame. Called on the audio
            thread for device sources.
        target_rate: Wire sample rate in Hz.
    """

    def __init__(
        self,
        source: AudioSource,
        on_frame: Callable[[bytes], None],
        target_rate: int = 16000,
    ) -> None:
        self._source = source
        self._on_frame = on_frame
        self._encoder = PCMEncoder(target_rate)
        self._closed = False
        self._started = False

    @property
    def is_active(self) -> bool:
        return self._started and not self._closed

    def start(self) -> None:
        if self._started or self._closed:
            return
        logger.debug(
            "Capture graph: %d Hz -> %d Hz",
            self._source.sample_rate,
            self._encoder.target_rate,
        )
        self._source.start(self._process)
        self._started = True

    def _process(self, samples: np.ndarray) -> None:
        if self._closed:
            return
        self._on_frame(self._encoder.encode(samples, self._source.sample_rate))

    def close(self) -> None:
        """Detach from the source. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        if self._started:
            self._source.stop()
