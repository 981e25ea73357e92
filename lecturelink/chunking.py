"""Splitting audio into size-bounded segments for the transcription service."""

from __future__ import annotations

from typing import List

from .exceptions import ConfigurationError
from .models import AudioSource, Segment


def segment_audio(audio: AudioSource, max_segment_bytes: int) -> List[Segment]:
    """Return contiguous segments of at most ``max_segment_bytes`` bytes.

    Every segment but the last is exactly ``max_segment_bytes`` long. Segments
    are views over ``audio``; no bytes are copied until a segment's ``data`` is
    read.
    """

    if max_segment_bytes <= 0:
        raise ConfigurationError(f"max_segment_bytes must be positive, got {max_segment_bytes}")

    segments: List[Segment] = []
    offset = 0
    while offset < audio.length:
        end = min(offset + max_segment_bytes, audio.length)
        segments.append(Segment(source=audio, index=len(segments), start=offset, end=end))
        offset = end
    return segments
