"""PCM encoding for the realtime transcription socket.

Converts float32 capture frames to the wire format: 16-bit signed
little-endian PCM, mono, at the target sample rate.
"""

import math

import numpy as np

PCM16_MAX = 0x7FFF  # 32767
PCM16_MIN_MAGNITUDE = 0x8000  # 32768


def downsample(samples: np.ndarray, from_rate: int, to_rate: int) -> np.ndarray:
    """Decimate ``samples`` from ``from_rate`` to ``to_rate``.

    Nearest-sample decimation: output sample ``i`` is input sample
    ``floor(i * from_rate / to_rate)``. Returns the input unchanged when the
    rates match.
    """
    if from_rate == to_rate:
        return samples
    ratio = from_rate / to_rate
    new_length = int(math.floor(len(samples) / ratio + 0.5))
    indices = np.floor(np.arange(new_length) * ratio).astype(np.int64)
    indices = np.minimum(indices, len(samples) - 1)
    return samples[indices]


def float32_to_pcm16(samples: np.ndarray) -> bytes:
    """Encode float samples in [-1.0, 1.0] as PCM16LE bytes.

    Negative samples scale by 32768 and positive by 32767 so both ends of
    the range hit full scale: ``1.0`` -> 32767, ``-1.0`` -> -32768.
    Out-of-range values are clipped; NaN encodes as silence.
    """
    clipped = np.clip(np.nan_to_num(np.asarray(samples, dtype=np.float32), nan=0.0), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * PCM16_MIN_MAGNITUDE, clipped * PCM16_MAX)
    # astype truncates toward zero
    return scaled.astype("<i2").tobytes()


class PCMEncoder:
    """Encodes capture frames from a device rate into wire frames.

    Args:
        target_rate: Wire sample rate in Hz (default: 16 kHz).
    """

    def __init__(self, target_rate: int = 16000) -> None:
        self.target_rate = target_rate

    def encode(self, samples: np.ndarray, source_rate: int) -> bytes:
        """Downsample (if needed) and encode one frame as PCM16LE bytes."""
        if source_rate != self.target_rate:
            samples = downsample(samples, source_rate, self.target_rate)
        return float32_to_pcm16(samples)
