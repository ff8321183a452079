"""
Core data models for the PulseFind scan engine.

Immutable domain models for submitted audio, fingerprints, scan planning
and match candidates. Candidates never change in place; aggregation steps
produce new instances with dataclasses.replace().
"""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class MatchingMode(str, Enum):
    """Requested strictness of a scan."""

    STRICT = "strict"
    LOOSE = "loose"

    @classmethod
    def parse(cls, value: Any) -> "MatchingMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(
                f"Invalid matching mode: {value}. Must be 'strict' or 'loose'"
            )


class Genre(str, Enum):
    """Coarse genre hint derived from beat characteristics."""

    TRAP = "trap"
    DRILL = "drill"
    MELODIC = "melodic"
    BOOM_BAP = "boom-bap"
    UNKNOWN = "unknown"


class Priority(str, Enum):
    """Segment scan priority, used as a ranking tie-break only."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}


class MatchQuality(str, Enum):
    """Confidence tier of a recognition hit."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def from_confidence(cls, confidence: float) -> "MatchQuality":
        if confidence >= 85:
            return cls.HIGH
        if confidence >= 60:
            return cls.MEDIUM
        return cls.LOW


class Origin(str, Enum):
    """Where a confirmation came from."""

    LOCAL = "local"
    EXTERNAL = "external"
    PLATFORM = "platform"


class SourceKind(str, Enum):
    """
    Closed set of services that can confirm a match.

    Each member owns at most one platform-ID field (see SOURCE_FIELDS);
    adding a member without a SOURCE_FIELDS entry fails at import time.
    """

    LOCAL = "Local"
    ACRCLOUD = "ACRCloud"
    SPOTIFY = "Spotify"
    YOUTUBE = "YouTube"
    APPLE_MUSIC = "Apple Music"

    @property
    def origin(self) -> Origin:
        return SOURCE_FIELDS[self][0]

    @property
    def platform_key(self) -> Optional[str]:
        """Key in MatchCandidate.platform_ids owned by this source."""
        return SOURCE_FIELDS[self][1]


# Merge rule table: source -> (origin, platform-ID key it owns)
SOURCE_FIELDS: Dict[SourceKind, Tuple[Origin, Optional[str]]] = {
    SourceKind.LOCAL: (Origin.LOCAL, None),
    SourceKind.ACRCLOUD: (Origin.EXTERNAL, None),
    SourceKind.SPOTIFY: (Origin.PLATFORM, "spotify"),
    SourceKind.YOUTUBE: (Origin.PLATFORM, "youtube"),
    SourceKind.APPLE_MUSIC: (Origin.PLATFORM, "apple_music"),
}

if set(SOURCE_FIELDS) != set(SourceKind):
    raise RuntimeError("SOURCE_FIELDS must cover every SourceKind")

# Public URL templates per platform-ID key
PLATFORM_URL_TEMPLATES: Dict[str, str] = {
    "spotify": "https://open.spotify.com/track/{id}",
    "apple_music": "https://music.apple.com/song/{id}",
    "youtube": "https://music.youtube.com/watch?v={id}",
}


def platform_url(platform_key: str, platform_id: Optional[str]) -> Optional[str]:
    """Build the public URL for a platform ID, if the platform is known."""
    template = PLATFORM_URL_TEMPLATES.get(platform_key)
    if not template or not platform_id:
        return None
    return template.format(id=platform_id)


_NON_ALNUM = re.compile(r"[^a-z0-9 ]+")
_SPACES = re.compile(r"\s+")


def normalize_text(value: Optional[str]) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""
    if not value:
        return ""
    cleaned = _NON_ALNUM.sub("", value.lower())
    return _SPACES.sub(" ", cleaned).strip()


def song_key(title: str, artist: str) -> str:
    """Normalized title|artist identity used for deduplication."""
    return f"{normalize_text(title)}|{normalize_text(artist)}"


# ---------------------------------------------------------------------------
# Audio and fingerprints
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AudioSample:
    """
    Immutable decoded audio submitted for a scan.

    Samples are mono float32 normalized to [-1.0, 1.0]. ``byte_length``
    refers to the raw submitted bytes, which is what segments address.
    """

    samples: np.ndarray = field(repr=False, compare=False)
    sample_rate: int
    byte_length: int
    content_hash: str  # SHA-256 of the raw bytes
    source_format: str = "RAW"

    @property
    def num_samples(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        if self.sample_rate <= 0:
            return 0.0
        return self.num_samples / self.sample_rate


@dataclass(frozen=True)
class FingerprintRecord:
    """Deterministic fingerprint derived from an AudioSample."""

    binary_fingerprint: str  # concatenated 8-char hex codes
    quick_hash: str
    spectral_features: Tuple[Tuple[float, ...], ...] = field(repr=False)
    duration_ms: int

    @property
    def key(self) -> str:
        """Stable hash of the quick hash, used as a content key."""
        return hashlib.sha1(self.quick_hash.encode("utf-8")).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'binary_fingerprint': self.binary_fingerprint,
            'quick_hash': self.quick_hash,
            'spectral_features': [list(row) for row in self.spectral_features],
            'duration_ms': self.duration_ms,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FingerprintRecord":
        return cls(
            binary_fingerprint=data.get('binary_fingerprint') or "",
            quick_hash=data.get('quick_hash') or "",
            spectral_features=tuple(
                tuple(float(v) for v in row)
                for row in (data.get('spectral_features') or [])
            ),
            duration_ms=int(data.get('duration_ms') or 0),
        )


# ---------------------------------------------------------------------------
# Characteristics and thresholds
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BeatCharacteristics:
    """Tempo, energy, complexity and genre hint of a beat."""

    tempo_bpm: float  # [60, 180]
    energy: float  # [0.0, 1.0]
    spectral_complexity: float  # [0.0, 1.0]
    genre: Genre = Genre.UNKNOWN

    def __post_init__(self) -> None:
        validate_unit_interval(self.energy, "energy")
        validate_unit_interval(self.spectral_complexity, "spectral_complexity")

    @classmethod
    def default(cls) -> "BeatCharacteristics":
        """Characteristics used when analysis fails."""
        return cls(tempo_bpm=120, energy=0.5, spectral_complexity=0.5)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tempo_bpm': self.tempo_bpm,
            'energy': self.energy,
            'spectral_complexity': self.spectral_complexity,
            'genre': self.genre.value,
        }


@dataclass(frozen=True)
class AdaptiveThresholds:
    """Per-scan confidence cutoffs (percent)."""

    strict: int
    loose: int
    explanation: str

    def __post_init__(self) -> None:
        if not (75 <= self.strict <= 95):
            raise ValueError(f"strict threshold must be in [75, 95], got {self.strict}")
        if not (30 <= self.loose <= 60):
            raise ValueError(f"loose threshold must be in [30, 60], got {self.loose}")
        if self.strict <= self.loose:
            raise ValueError("strict threshold must exceed loose threshold")

    def active(self, mode: MatchingMode) -> int:
        """Threshold in force for the requested matching mode."""
        return self.strict if MatchingMode.parse(mode) is MatchingMode.STRICT else self.loose

    def to_dict(self) -> Dict[str, Any]:
        return {
            'strict': self.strict,
            'loose': self.loose,
            'explanation': self.explanation,
        }


# ---------------------------------------------------------------------------
# Scan planning
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AudioSegment:
    """Byte range of the submitted audio planned for recognition."""

    offset: int
    length_bytes: int
    label: str
    estimated_energy: float
    uniqueness: float
    priority: Priority

    @property
    def end(self) -> int:
        return self.offset + self.length_bytes

    def slice(self, data: bytes) -> bytes:
        return data[self.offset:self.end]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'offset': self.offset,
            'length_bytes': self.length_bytes,
            'label': self.label,
            'estimated_energy': self.estimated_energy,
            'uniqueness': self.uniqueness,
            'priority': self.priority.value,
        }


# ---------------------------------------------------------------------------
# Candidates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MatchCandidate:
    """A song that may contain the submitted beat."""

    title: str
    artist: str
    confidence: float  # [0, 100]
    sources: Tuple[SourceKind, ...]
    match_quality: MatchQuality
    album: Optional[str] = None
    isrc: Optional[str] = None
    platform_ids: Mapping[str, str] = field(default_factory=dict)
    segment_label: Optional[str] = None
    cached: bool = False
    popularity: Optional[int] = None
    artwork_url: Optional[str] = None
    preview_url: Optional[str] = None
    release_date: Optional[str] = None

    def __post_init__(self) -> None:
        if not (0 <= self.confidence <= 100):
            raise ValueError(f"Confidence must be in [0, 100], got {self.confidence}")
        # Own a private copy so callers cannot mutate shared state
        object.__setattr__(self, 'platform_ids', dict(self.platform_ids))
        object.__setattr__(self, 'sources', _dedupe_sources(self.sources))

    @property
    def song_key(self) -> str:
        return song_key(self.title, self.artist)

    def with_source(self, source: SourceKind) -> "MatchCandidate":
        """Return a copy confirmed by one more source."""
        if source in self.sources:
            return self
        return replace(self, sources=self.sources + (source,))

    def with_platform_ids(self, platform_ids: Mapping[str, str]) -> "MatchCandidate":
        """Return a copy carrying any platform IDs it lacked."""
        merged = dict(self.platform_ids)
        changed = False
        for key, value in platform_ids.items():
            if value and not merged.get(key):
                merged[key] = value
                changed = True
        if not changed:
            return self
        return replace(self, platform_ids=merged)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        urls = {
            f"{key}_url": platform_url(key, value)
            for key, value in self.platform_ids.items()
            if platform_url(key, value)
        }
        return {
            'title': self.title,
            'artist': self.artist,
            'album': self.album,
            'confidence': self.confidence,
            'isrc': self.isrc,
            'platform_ids': dict(self.platform_ids),
            'urls': urls,
            'sources': [s.value for s in self.sources],
            'segment_label': self.segment_label,
            'match_quality': self.match_quality.value,
            'cached': self.cached,
            'popularity': self.popularity,
            'artwork_url': self.artwork_url,
            'preview_url': self.preview_url,
            'release_date': self.release_date,
        }


def _dedupe_sources(sources: Any) -> Tuple[SourceKind, ...]:
    seen: List[SourceKind] = []
    for source in sources or ():
        kind = SourceKind(source)
        if kind not in seen:
            seen.append(kind)
    return tuple(seen)


@dataclass(frozen=True)
class PlatformResult:
    """One hit from a secondary platform search."""

    platform: SourceKind
    title: str
    artist: str
    platform_id: Optional[str] = None
    confidence: float = 0.0
    album: Optional[str] = None
    isrc: Optional[str] = None
    popularity: Optional[int] = None
    artwork_url: Optional[str] = None
    preview_url: Optional[str] = None

    def to_candidate(self) -> MatchCandidate:
        """Candidate for a platform hit that matched nothing known."""
        key = self.platform.platform_key
        return MatchCandidate(
            title=self.title,
            artist=self.artist,
            album=self.album,
            confidence=max(0.0, min(100.0, self.confidence)),
            isrc=self.isrc,
            platform_ids={key: self.platform_id} if key and self.platform_id else {},
            sources=(self.platform,),
            match_quality=MatchQuality.from_confidence(self.confidence),
            popularity=self.popularity,
            artwork_url=self.artwork_url,
            preview_url=self.preview_url,
        )


@dataclass(frozen=True)
class StoredFingerprint:
    """Persistent fingerprint entry with the song it identifies."""

    key: str
    fingerprint: FingerprintRecord
    title: str
    artist: str
    album: Optional[str] = None
    isrc: Optional[str] = None
    platform_ids: Mapping[str, str] = field(default_factory=dict)
    release_date: Optional[str] = None
    popularity: Optional[int] = None
    confidence_score: Optional[float] = None
    source: str = "acrcloud"
    match_count: int = 0
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def from_candidate(
        cls,
        key: str,
        candidate: MatchCandidate,
        fingerprint: FingerprintRecord,
        source: str = "acrcloud",
    ) -> "StoredFingerprint":
        return cls(
            key=key,
            fingerprint=fingerprint,
            title=candidate.title,
            artist=candidate.artist,
            album=candidate.album,
            isrc=candidate.isrc,
            platform_ids=dict(candidate.platform_ids),
            release_date=candidate.release_date,
            popularity=candidate.popularity,
            confidence_score=candidate.confidence,
            source=source,
        )


def stored_entry_key(candidate: MatchCandidate) -> str:
    """Conflict key for a song in the fingerprint store."""
    if candidate.isrc:
        return candidate.isrc
    return candidate.song_key


# ---------------------------------------------------------------------------
# Scan outputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SegmentOutcome:
    """Result of recognizing one segment, folded by the orchestrator."""

    segment: AudioSegment
    candidates: Tuple[MatchCandidate, ...] = ()
    error: Optional[str] = None
    elapsed_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ScanMetrics:
    """Aggregate counters returned with every scan."""

    segments_scanned: int
    results_before_filter: int
    results_after_filter: int
    confidence_scores: Tuple[float, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'segmentsScanned': self.segments_scanned,
            'resultsBeforeFilter': self.results_before_filter,
            'resultsAfterFilter': self.results_after_filter,
            'confidenceScores': list(self.confidence_scores),
        }


@dataclass
class ScanResult:
    """Complete outcome of a scan request."""

    matches: List[MatchCandidate]
    metrics: ScanMetrics
    from_cache: bool
    thresholds: AdaptiveThresholds
    characteristics: BeatCharacteristics
    matching_mode: MatchingMode
    processing_time: float = 0.0
    message: Optional[str] = None
    scan_id: Optional[str] = None

    @property
    def active_threshold(self) -> int:
        return self.thresholds.active(self.matching_mode)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = {
            'scanId': self.scan_id,
            'matches': [m.to_dict() for m in self.matches],
            'total': len(self.matches),
            'metrics': self.metrics.to_dict(),
            'fromCache': self.from_cache,
            'matchingMode': self.matching_mode.value,
            'activeThreshold': self.active_threshold,
            'thresholds': self.thresholds.to_dict(),
            'characteristics': self.characteristics.to_dict(),
            'processingTime': self.processing_time,
        }
        if self.message:
            result['message'] = self.message
        return result

    def to_json(self, indent: int = 2) -> str:
        """Export as JSON string."""
        return json.dumps(self.to_dict(), indent=indent, default=str)

    def get_summary(self) -> str:
        """Get human-readable summary."""
        if not self.matches:
            return self.message or "No matches"
        top = self.matches[0]
        origin = "local cache" if self.from_cache else "external scan"
        return (
            f"{len(self.matches)} match(es) via {origin} | "
            f"Top: {top.title} - {top.artist} ({top.confidence:.0f}%)"
        )


# Validation helpers

def validate_unit_interval(value: float, name: str) -> None:
    """Validate a score lies in [0.0, 1.0]."""
    if not (0.0 <= value <= 1.0):
        raise ValueError(f"{name} must be in [0.0, 1.0], got {value}")
