"""Top-level package for lecturelink."""

from . import chunking, config, notes, processor, storage, transcriber

__all__ = ["chunking", "config", "notes", "processor", "storage", "transcriber"]
