from __future__ import annotations

import io
import wave

import numpy as np


def pcm16_to_float32(pcm_bytes: bytes) -> np.ndarray:
    usable = len(pcm_bytes) - (len(pcm_bytes) % 2)
    audio_i16 = np.frombuffer(pcm_bytes[:usable], dtype="<i2")
    return (audio_i16.astype(np.float32) / 32768.0).clip(-1.0, 1.0)


def compute_rms(audio: np.ndarray) -> float:
    if audio.size == 0:
        return 0.0
    x = audio.astype(np.float32)
    return float(np.sqrt(np.mean(x * x)))


def pcm16_to_wav_bytes(pcm_bytes: bytes, *, sample_rate: int = 16000, channels: int = 1) -> bytes:
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm_bytes)
    return buf.getvalue()


def wav_duration_sec(wav_bytes: bytes) -> float:
    with wave.open(io.BytesIO(wav_bytes), "rb") as wf:
        rate = wf.getframerate()
        frames = wf.getnframes()
    if rate <= 0:
        return 0.0
    return float(frames) / float(rate)
