"""Shared fixtures: synthetic audio, fake collaborators and engine wiring."""

import io
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import MagicMock

import numpy as np
import pytest
import soundfile as sf

from pulsefind.core.aggregator import MultiPlatformAggregator
from pulsefind.core.characteristics import BeatCharacteristicsAnalyzer
from pulsefind.core.engine import BeatScanEngine
from pulsefind.core.fingerprint import FingerprintExtractor
from pulsefind.core.loader import AudioLoader
from pulsefind.core.local_matcher import LocalMatcher
from pulsefind.core.models import (
    MatchCandidate,
    MatchQuality,
    PlatformResult,
    SourceKind,
)
from pulsefind.core.recognition import RecognitionOrchestrator
from pulsefind.core.segments import SegmentSelector
from pulsefind.core.store import InMemoryFingerprintStore
from pulsefind.utils.errors import ProviderError

SAMPLE_RATE = 44100


# ---------------------------------------------------------------------------
# Synthetic audio
# ---------------------------------------------------------------------------


def make_beat(seconds: float = 3.0, seed: int = 7, sr: int = SAMPLE_RATE) -> np.ndarray:
    """Kick-like pulses at 120 BPM over seeded noise, float32 in [-1, 1]."""
    rng = np.random.default_rng(seed)
    n = int(seconds * sr)
    t = np.arange(n) / sr
    audio = 0.05 * rng.standard_normal(n)

    beat_period = int(sr * 0.5)
    decay = np.exp(-np.arange(beat_period) / (sr * 0.05))
    kick = 0.6 * np.sin(2 * np.pi * 60 * np.arange(beat_period) / sr) * decay
    for start in range(0, n, beat_period):
        end = min(n, start + beat_period)
        audio[start:end] += kick[:end - start]

    audio += 0.1 * np.sin(2 * np.pi * 440 * t)
    return np.clip(audio, -1.0, 1.0).astype(np.float32)


def to_wav_bytes(samples: np.ndarray, sr: int = SAMPLE_RATE) -> bytes:
    buffer = io.BytesIO()
    sf.write(buffer, samples, sr, format='WAV', subtype='PCM_16')
    return buffer.getvalue()


def to_pcm_bytes(samples: np.ndarray) -> bytes:
    return (np.clip(samples, -1.0, 1.0) * 32767).astype('<i2').tobytes()


@pytest.fixture
def beat_samples():
    return make_beat()


@pytest.fixture
def beat_wav(beat_samples):
    return to_wav_bytes(beat_samples)


@pytest.fixture
def other_beat_wav():
    return to_wav_bytes(make_beat(seed=99) * 0.5)


@pytest.fixture
def loader():
    return AudioLoader()


@pytest.fixture
def beat_audio(loader, beat_wav):
    """Decoded AudioSample of the default synthetic beat."""
    return loader.load(beat_wav)


# ---------------------------------------------------------------------------
# Recognition payloads and candidates
# ---------------------------------------------------------------------------


def acr_track(
    title: str,
    artist: str,
    score: float,
    isrc: Optional[str] = None,
    spotify_id: Optional[str] = None,
) -> Dict[str, Any]:
    track: Dict[str, Any] = {
        "title": title,
        "artists": [{"name": artist}],
        "album": {"name": f"{title} (Single)"},
        "score": score,
        "release_date": "2023-05-12",
    }
    if isrc:
        track["external_ids"] = {"isrc": isrc}
    if spotify_id:
        track["external_metadata"] = {"spotify": {"track": {"id": spotify_id}}}
    return track


def acr_payload(*tracks: Dict[str, Any]) -> Dict[str, Any]:
    if not tracks:
        return {"status": {"code": 1001, "msg": "No result"}}
    return {"status": {"code": 0, "msg": "Success"}, "metadata": {"music": list(tracks)}}


def make_candidate(
    title: str = "Night Drive",
    artist: str = "Kid Vector",
    confidence: float = 90,
    sources=(SourceKind.ACRCLOUD,),
    **kwargs,
) -> MatchCandidate:
    return MatchCandidate(
        title=title,
        artist=artist,
        confidence=confidence,
        sources=tuple(sources),
        match_quality=MatchQuality.from_confidence(confidence),
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------


class FakeRecognitionProvider:
    """Returns payloads from a callable of the segment label."""

    name = "fake-acr"

    def __init__(self, respond: Callable[[str], Dict[str, Any]]):
        self._respond = respond
        self.labels: List[str] = []

    def identify(self, sample_bytes: bytes, label: str) -> Dict[str, Any]:
        self.labels.append(label)
        return self._respond(label)


class FailingRecognitionProvider:
    name = "failing-acr"

    def identify(self, sample_bytes: bytes, label: str) -> Dict[str, Any]:
        raise ProviderError("service unavailable", provider=self.name, status=503)


class FakeSearchProvider:
    """Platform search returning canned results for every query."""

    def __init__(self, platform: SourceKind, results: List[PlatformResult]):
        self.platform = platform
        self._results = results
        self.queries: List[tuple] = []

    def search(self, title: str, artist: str) -> List[PlatformResult]:
        self.queries.append((title, artist))
        return list(self._results)


class FailingSearchProvider:
    def __init__(self, platform: SourceKind):
        self.platform = platform

    def search(self, title: str, artist: str) -> List[PlatformResult]:
        raise ProviderError("quota exceeded", provider=self.platform.value, status=403)


class FakeLookupProvider:
    platform = SourceKind.APPLE_MUSIC

    def __init__(self, ids: Dict[str, str]):
        self._ids = ids

    def lookup(self, title: str, artist: str) -> Optional[str]:
        return self._ids.get(title)


@pytest.fixture
def store():
    return InMemoryFingerprintStore()


@pytest.fixture
def make_engine(store):
    """Build a BeatScanEngine with real analysis and fake services."""
    engines: List[BeatScanEngine] = []

    def _make(
        provider=None,
        search_providers=(),
        lookup_providers=(),
        analytics_sink=None,
        **overrides,
    ) -> BeatScanEngine:
        kwargs = dict(
            loader=AudioLoader(),
            fingerprinter=FingerprintExtractor(),
            characteristics_analyzer=BeatCharacteristicsAnalyzer(),
            segment_selector=SegmentSelector(),
            recognizer=RecognitionOrchestrator(provider, store, segment_timeout=5.0),
            local_matcher=LocalMatcher(store),
            aggregator=MultiPlatformAggregator(search_providers, lookup_providers, timeout=5.0),
            analytics_sink=analytics_sink or MagicMock(),
        )
        kwargs.update(overrides)
        engine = BeatScanEngine(**kwargs)
        engines.append(engine)
        return engine

    yield _make

    for engine in engines:
        engine.shutdown()
