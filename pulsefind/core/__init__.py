"""
Core module containing data models, fingerprinting, matching and the scan engine.

Uses lazy imports for modules with heavy dependencies (librosa, soundfile).
"""

# Models are lightweight - import directly
from pulsefind.core.models import (
    AudioSample,
    AudioSegment,
    FingerprintRecord,
    BeatCharacteristics,
    AdaptiveThresholds,
    MatchCandidate,
    MatchingMode,
    PlatformResult,
    StoredFingerprint,
    ScanMetrics,
    ScanResult,
    SourceKind,
)
from pulsefind.core.thresholds import calculate_adaptive_thresholds, default_thresholds
from pulsefind.core.ranking import rank_candidates, ranking_score

__all__ = [
    # Models (always available)
    "AudioSample",
    "AudioSegment",
    "FingerprintRecord",
    "BeatCharacteristics",
    "AdaptiveThresholds",
    "MatchCandidate",
    "MatchingMode",
    "PlatformResult",
    "StoredFingerprint",
    "ScanMetrics",
    "ScanResult",
    "SourceKind",
    "calculate_adaptive_thresholds",
    "default_thresholds",
    "rank_candidates",
    "ranking_score",
    # Heavy modules (lazy loaded)
    "AudioLoader",
    "create_audio_loader",
    "FingerprintExtractor",
    "BeatCharacteristicsAnalyzer",
    "SegmentSelector",
    "BeatScanEngine",
    "create_scan_engine",
]


def __getattr__(name: str):
    """Lazy load modules with heavy dependencies."""
    if name in ("AudioLoader", "create_audio_loader"):
        from pulsefind.core.loader import AudioLoader, create_audio_loader
        return AudioLoader if name == "AudioLoader" else create_audio_loader
    elif name == "FingerprintExtractor":
        from pulsefind.core.fingerprint import FingerprintExtractor
        return FingerprintExtractor
    elif name == "BeatCharacteristicsAnalyzer":
        from pulsefind.core.characteristics import BeatCharacteristicsAnalyzer
        return BeatCharacteristicsAnalyzer
    elif name == "SegmentSelector":
        from pulsefind.core.segments import SegmentSelector
        return SegmentSelector
    elif name in ("BeatScanEngine", "create_scan_engine"):
        from pulsefind.core.engine import BeatScanEngine, create_scan_engine
        return BeatScanEngine if name == "BeatScanEngine" else create_scan_engine
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
