from __future__ import annotations

import numpy as np


def pcm16le_bytes_to_float32(pcm: bytes) -> np.ndarray:
    """Convert PCM s16le bytes to float32 in [-1, 1]."""
    if not pcm:
        return np.zeros((0,), dtype=np.float32)
    s16 = np.frombuffer(pcm, dtype=np.int16)
    return (s16.astype(np.float32) / 32768.0).copy()


def rms(samples: np.ndarray) -> float:
    if samples.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(samples * samples)))


def downmix_to_mono(pcm: bytes, channels: int) -> bytes:
    """Average interleaved PCM16 channels into a mono PCM16 frame."""
    if channels <= 1 or not pcm:
        return pcm
    s16 = np.frombuffer(pcm[: len(pcm) - (len(pcm) % (2 * channels))], dtype=np.int16)
    if s16.size == 0:
        return b""
    frames = s16.reshape(-1, channels).astype(np.int32)
    return (frames.sum(axis=1) // channels).astype(np.int16).tobytes()


def float_block_to_pcm16(block: np.ndarray) -> bytes:
    """Convert a sounddevice float32 block (frames x channels) to mono PCM16 bytes."""
    if block.size == 0:
        return b""
    x = block.astype(np.float32, copy=False)
    if x.ndim == 2:
        x = x.mean(axis=1)
    x = np.clip(x, -1.0, 1.0)
    return (x * 32767.0).astype(np.int16).tobytes()
