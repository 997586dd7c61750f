import base64
from typing import List

BYTES_PER_SAMPLE = 2  # 16-bit LE mono


def pcm_frames(pcm_bytes: bytes, chunk_size: int = 4096) -> List[str]:
    """Split PCM into fixed-size chunks, base64-encoded for WebSocket `audio` messages."""
    return [
        base64.b64encode(pcm_bytes[i:i + chunk_size]).decode("utf-8")
        for i in range(0, len(pcm_bytes), chunk_size)
    ]


def pcm_duration(pcm_bytes: bytes, sample_rate: int = 24000) -> float:
    """Playback length in seconds of 16-bit mono PCM."""
    return len(pcm_bytes) / (sample_rate * BYTES_PER_SAMPLE)
