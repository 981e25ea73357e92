import pytest

from lecturelink.chunking import segment_audio
from lecturelink.exceptions import ConfigurationError
from lecturelink.models import AudioSource

MB = 1024 * 1024


@pytest.mark.parametrize(
    "length, size",
    [(0, 5), (1, 5), (5, 5), (6, 5), (99, 10), (100, 10), (101, 10), (7, 1)],
)
def test_segments_cover_audio_exactly(length, size):
    audio = AudioSource(data=bytes(i % 256 for i in range(length)))
    segments = segment_audio(audio, size)

    assert len(segments) == -(-length // size)
    assert sum(segment.length for segment in segments) == length
    assert all(segment.length == size for segment in segments[:-1])
    if segments:
        assert 0 < segments[-1].length <= size
    assert b"".join(segment.data for segment in segments) == audio.data
    assert [segment.index for segment in segments] == list(range(len(segments)))


def test_segments_are_contiguous_and_ordered():
    segments = segment_audio(AudioSource(data=b"x" * 23), 5)
    for previous, current in zip(segments, segments[1:]):
        assert previous.end == current.start


def test_lecture_sized_recording():
    audio = AudioSource(data=bytes(45 * MB), mime_type="audio/mpeg")
    segments = segment_audio(audio, 20 * MB)

    assert [segment.length for segment in segments] == [20 * MB, 20 * MB, 5 * MB]
    assert all(segment.mime_type == "audio/mpeg" for segment in segments)


def test_segmenting_is_deterministic():
    audio = AudioSource(data=b"abcdefghij" * 3)
    first = [(s.start, s.end) for s in segment_audio(audio, 7)]
    second = [(s.start, s.end) for s in segment_audio(audio, 7)]
    assert first == second


@pytest.mark.parametrize("size", [0, -1])
def test_non_positive_segment_size_is_rejected(size):
    with pytest.raises(ConfigurationError):
        segment_audio(AudioSource(data=b"abc"), size)
