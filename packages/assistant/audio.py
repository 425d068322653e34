import base64
from typing import Sequence, Union

import numpy as np

INPUT_SAMPLE_RATE = 16000
OUTPUT_SAMPLE_RATE = 24000
INPUT_MIME_TYPE = f"audio/pcm;rate={INPUT_SAMPLE_RATE}"
OUTPUT_MIME_TYPE = f"audio/pcm;rate={OUTPUT_SAMPLE_RATE}"


def encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode(data: str) -> bytes:
    return base64.b64decode(data, validate=True)


def float_to_pcm16(samples: Union[Sequence[float], np.ndarray]) -> bytes:
    """Little-endian signed 16-bit PCM from float samples in [-1, 1]"""
    arr = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    scaled = np.clip(np.round(arr * 32768.0), -32768, 32767)
    return scaled.astype("<i2").tobytes()


def pcm16_to_float(data: bytes, num_channels: int = 1) -> np.ndarray:
    """Float samples shaped (frames, channels); a trailing partial frame is dropped"""
    ints = np.frombuffer(data[: len(data) - len(data) % 2], dtype="<i2")
    frames = len(ints) // num_channels
    ints = ints[: frames * num_channels]
    return (ints.astype(np.float32) / 32768.0).reshape(frames, num_channels)


def chunk_duration(data: bytes, sample_rate: int = OUTPUT_SAMPLE_RATE, num_channels: int = 1) -> float:
    return (len(data) // (2 * num_channels)) / float(sample_rate)


class PlaybackScheduler:
    """Queues decoded chunks back to back on a playback clock, never in the past"""

    def __init__(self, sample_rate: int = OUTPUT_SAMPLE_RATE, num_channels: int = 1):
        self.sample_rate = sample_rate
        self.num_channels = num_channels
        self.next_start_time = 0.0

    def schedule(self, data: bytes, now: float) -> float:
        start = max(self.next_start_time, now)
        self.next_start_time = start + chunk_duration(data, self.sample_rate, self.num_channels)
        return start

    def reset(self) -> None:
        self.next_start_time = 0.0
