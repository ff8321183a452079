"""Tests for segment planning."""

import numpy as np
import pytest

from conftest import to_pcm_bytes
from pulsefind.core.models import AudioSegment, Priority
from pulsefind.core.segments import (
    FULL_LABEL,
    SegmentSelector,
    analyze_energy_profile,
    create_segment_selector,
)


@pytest.fixture
def selector():
    return SegmentSelector()


@pytest.fixture
def short_audio(loader):
    """Half a second of raw PCM: too short for energy analysis."""
    return loader.load(to_pcm_bytes(np.full(22050, 0.2)))


class TestSegmentCounts:
    def test_normal_scan_plans_four(self, selector, beat_audio):
        assert len(selector.select(beat_audio, deep_scan=False)) == 4

    def test_deep_scan_plans_eight(self, selector, beat_audio):
        assert len(selector.select(beat_audio, deep_scan=True)) == 8

    def test_fallback_counts(self, selector, short_audio):
        assert len(selector.select(short_audio, deep_scan=False)) == 4
        assert len(selector.select(short_audio, deep_scan=True)) == 8

    def test_configured_counts(self, beat_audio):
        selector = create_segment_selector({"normal_segments": 3, "deep_segments": 6})
        assert len(selector.select(beat_audio)) == 3
        assert len(selector.select(beat_audio, deep_scan=True)) == 6


class TestSegmentPlan:
    @pytest.mark.parametrize("deep_scan", [False, True])
    def test_full_audio_first(self, selector, beat_audio, deep_scan):
        segments = selector.select(beat_audio, deep_scan=deep_scan)
        assert segments[0].label == FULL_LABEL
        assert segments[0].offset == 0
        assert segments[0].length_bytes == beat_audio.byte_length

    @pytest.mark.parametrize("deep_scan", [False, True])
    def test_segments_within_audio(self, selector, beat_audio, deep_scan):
        for segment in selector.select(beat_audio, deep_scan=deep_scan):
            assert 0 <= segment.offset < beat_audio.byte_length
            assert segment.end <= beat_audio.byte_length
            assert segment.length_bytes > 0

    def test_remaining_ordered_by_priority(self, selector, beat_audio):
        ranks = [s.priority.rank for s in selector.select(beat_audio, deep_scan=True)[1:]]
        assert ranks == sorted(ranks)

    def test_fallback_offsets(self, selector, short_audio):
        segments = selector.select(short_audio)
        length = short_audio.byte_length
        assert [s.offset for s in segments] == [
            0, int(length * 0.30), int(length * 0.60), int(length * 0.85)
        ]
        assert [s.label for s in segments[1:]] == ["SEGMENT 30%", "SEGMENT 60%", "SEGMENT 85%"]
        assert all(s.priority is Priority.MEDIUM for s in segments[1:])

    def test_deep_fallback_offsets(self, selector):
        segments = selector.fallback_segments(1000, deep_scan=True)
        assert [s.offset for s in segments] == [0, 100, 200, 350, 500, 650, 800, 900]


class TestEnergyProfile:
    def test_too_short_returns_none(self, short_audio):
        assert analyze_energy_profile(short_audio) is None

    def test_profile_windows(self, beat_audio):
        profile = analyze_energy_profile(beat_audio)
        # 3 s at 1 s windows / 0.5 s hop
        assert profile.energies.size == 5
        assert profile.uniqueness.size == 5
        assert profile.hop == 22050


class TestAudioSegment:
    def test_slice(self):
        segment = AudioSegment(
            offset=2, length_bytes=3, label="x", estimated_energy=0.0,
            uniqueness=0.0, priority=Priority.LOW,
        )
        assert segment.slice(b"abcdefgh") == b"cde"
        assert segment.end == 5
