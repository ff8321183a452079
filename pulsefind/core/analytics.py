"""
Per-scan analytics record and sinks.

Every completed scan produces a ScanAnalytics record describing segment
performance, confidence distribution, timing and detected anomalies. The
record is handed to an AnalyticsSink; sink failures never fail a scan.
"""

import json
import logging
import re
import threading
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from pulsefind.core.models import (
    AdaptiveThresholds,
    BeatCharacteristics,
    MatchCandidate,
    SegmentOutcome,
    SourceKind,
)
from pulsefind.utils.errors import ConfigurationError

HIGH_CONFIDENCE = 85
MEDIUM_CONFIDENCE = 60

_POSITION = re.compile(r"(\d+)%")


@dataclass(frozen=True)
class SegmentPerformance:
    """How one segment fared during recognition."""

    segment_name: str
    position: str
    matches_found: int
    avg_confidence: float
    max_confidence: float
    success_rate: float  # 1.0 when the segment produced any match
    error: Optional[str] = None


@dataclass
class ScanAnalytics:
    """Structured observability record for one scan."""

    scan_id: str
    timestamp: datetime
    characteristics: BeatCharacteristics
    thresholds: AdaptiveThresholds
    matching_mode: str
    deep_scan: bool
    from_cache: bool

    segments: List[SegmentPerformance]
    total_segments: int
    successful_segments: int

    total_matches: int
    high_confidence_matches: int
    medium_confidence_matches: int
    low_confidence_matches: int
    avg_confidence: float
    max_confidence: float
    min_confidence: float

    fingerprint_ms: float
    matching_ms: float
    total_duration_ms: float

    source_breakdown: Dict[str, int]
    errors: List[str] = field(default_factory=list)
    anomalies: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'scan_id': self.scan_id,
            'timestamp': self.timestamp.isoformat(),
            'characteristics': self.characteristics.to_dict(),
            'thresholds': self.thresholds.to_dict(),
            'matching_mode': self.matching_mode,
            'deep_scan': self.deep_scan,
            'from_cache': self.from_cache,
            'segments': [asdict(s) for s in self.segments],
            'total_segments': self.total_segments,
            'successful_segments': self.successful_segments,
            'total_matches': self.total_matches,
            'high_confidence_matches': self.high_confidence_matches,
            'medium_confidence_matches': self.medium_confidence_matches,
            'low_confidence_matches': self.low_confidence_matches,
            'avg_confidence': self.avg_confidence,
            'max_confidence': self.max_confidence,
            'min_confidence': self.min_confidence,
            'fingerprint_ms': self.fingerprint_ms,
            'matching_ms': self.matching_ms,
            'total_duration_ms': self.total_duration_ms,
            'source_breakdown': dict(self.source_breakdown),
            'errors': list(self.errors),
            'anomalies': list(self.anomalies),
        }


def analyze_segment_performance(outcomes: Sequence[SegmentOutcome]) -> List[SegmentPerformance]:
    """Summarize each segment outcome in plan order."""
    performance = []
    for outcome in outcomes:
        confidences = [c.confidence for c in outcome.candidates]
        matches = len(confidences)
        label = outcome.segment.label
        position = _POSITION.search(label)

        performance.append(SegmentPerformance(
            segment_name=label,
            position=f"{position.group(1)}%" if position else label,
            matches_found=matches,
            avg_confidence=sum(confidences) / matches if matches else 0.0,
            max_confidence=max(confidences) if matches else 0.0,
            success_rate=1.0 if matches else 0.0,
            error=outcome.error,
        ))
    return performance


def source_breakdown(candidates: Sequence[MatchCandidate]) -> Dict[str, int]:
    """Number of candidates each source confirmed, for every known source."""
    counts = Counter(source for c in candidates for source in c.sources)
    return {kind.value: counts.get(kind, 0) for kind in SourceKind}


def build_scan_analytics(
    scan_id: str,
    characteristics: BeatCharacteristics,
    thresholds: AdaptiveThresholds,
    matching_mode: str,
    deep_scan: bool,
    from_cache: bool,
    matches: Sequence[MatchCandidate],
    segment_outcomes: Sequence[SegmentOutcome] = (),
    fingerprint_ms: float = 0.0,
    matching_ms: float = 0.0,
    total_duration_ms: float = 0.0,
    errors: Sequence[str] = (),
) -> ScanAnalytics:
    """Assemble the analytics record and attach detected anomalies."""
    confidences = [c.confidence for c in matches]
    total = len(confidences)

    analytics = ScanAnalytics(
        scan_id=scan_id,
        timestamp=datetime.utcnow(),
        characteristics=characteristics,
        thresholds=thresholds,
        matching_mode=matching_mode,
        deep_scan=deep_scan,
        from_cache=from_cache,
        segments=analyze_segment_performance(segment_outcomes),
        total_segments=len(segment_outcomes),
        successful_segments=sum(1 for o in segment_outcomes if o.succeeded),
        total_matches=total,
        high_confidence_matches=sum(1 for c in confidences if c >= HIGH_CONFIDENCE),
        medium_confidence_matches=sum(
            1 for c in confidences if MEDIUM_CONFIDENCE <= c < HIGH_CONFIDENCE
        ),
        low_confidence_matches=sum(1 for c in confidences if c < MEDIUM_CONFIDENCE),
        avg_confidence=sum(confidences) / total if total else 0.0,
        max_confidence=max(confidences) if total else 0.0,
        min_confidence=min(confidences) if total else 0.0,
        fingerprint_ms=fingerprint_ms,
        matching_ms=matching_ms,
        total_duration_ms=total_duration_ms,
        source_breakdown=source_breakdown(matches),
        errors=list(errors),
    )
    analytics.anomalies = detect_anomalies(analytics)
    return analytics


def detect_anomalies(analytics: ScanAnalytics) -> List[str]:
    """Quality-monitoring flags for a scan."""
    anomalies = []

    if analytics.total_matches > 0 and analytics.avg_confidence < 50:
        anomalies.append(f"Low avg confidence: {analytics.avg_confidence:.1f}%")

    if analytics.total_matches > 5 and analytics.avg_confidence > 95:
        anomalies.append(
            f"Suspiciously high avg confidence: {analytics.avg_confidence:.1f}%"
        )

    if analytics.successful_segments < analytics.total_segments * 0.3:
        anomalies.append(
            f"Low segment success rate: "
            f"{analytics.successful_segments}/{analytics.total_segments}"
        )

    if analytics.total_duration_ms > 60000:
        anomalies.append(f"Slow scan: {analytics.total_duration_ms / 1000:.1f}s")

    if analytics.total_matches == 0:
        anomalies.append("No matches found - check audio quality")

    return anomalies


def generate_insights_summary(analytics: ScanAnalytics) -> str:
    """One-line, pipe-separated summary of the scan."""
    insights = []

    if analytics.segments:
        best = max(analytics.segments, key=lambda s: s.avg_confidence)
        insights.append(
            f"Best performing segment: {best.segment_name} ({best.avg_confidence:.1f}% avg)"
        )

    if analytics.source_breakdown:
        primary, count = max(analytics.source_breakdown.items(), key=lambda kv: kv[1])
        insights.append(f"Primary detection source: {primary} ({count} matches)")

    insights.append(f"Adaptive thresholds: {analytics.thresholds.explanation}")

    per_segment = (
        analytics.total_duration_ms / analytics.total_segments
        if analytics.total_segments else 0.0
    )
    insights.append(f"Avg time per segment: {per_segment:.0f}ms")

    return " | ".join(insights)


class AnalyticsSink(ABC):
    """Destination for scan analytics records (Strategy Pattern)."""

    @abstractmethod
    def record(self, analytics: ScanAnalytics) -> None:
        """Persist or emit one record."""


class NullAnalyticsSink(AnalyticsSink):
    """Discards records."""

    def record(self, analytics: ScanAnalytics) -> None:
        return None


class LoggingAnalyticsSink(AnalyticsSink):
    """Emits each record as one structured log line."""

    def __init__(self, logger_name: str = "analytics"):
        self.logger = logging.getLogger(logger_name)

    def record(self, analytics: ScanAnalytics) -> None:
        self.logger.info(
            f"Scan analytics: {generate_insights_summary(analytics)}",
            extra={"scan_id": analytics.scan_id},
        )
        for anomaly in analytics.anomalies:
            self.logger.warning(f"Anomaly: {anomaly}", extra={"scan_id": analytics.scan_id})


class JSONLinesAnalyticsSink(AnalyticsSink):
    """Appends each record as a JSON line to a file."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self.logger = logging.getLogger("analytics.jsonl")

    def record(self, analytics: ScanAnalytics) -> None:
        line = json.dumps(analytics.to_dict(), default=str)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'a', encoding='utf-8') as f:
                f.write(line + "\n")
        self.logger.debug(f"Analytics appended to: {self.path}")


def create_analytics_sink(config: Optional[Dict[str, Any]] = None) -> AnalyticsSink:
    """
    Factory for the ``analytics`` config section.

    Raises:
        ConfigurationError: Unknown sink type
    """
    if config is None:
        config = {}

    sink = config.get('sink', 'log')
    if sink == 'log':
        return LoggingAnalyticsSink()
    if sink == 'jsonl':
        return JSONLinesAnalyticsSink(Path(config.get('path', 'logs/scan_analytics.jsonl')))
    if sink in ('none', 'null', None):
        return NullAnalyticsSink()

    raise ConfigurationError(
        f"Unknown analytics sink: {sink}. Must be 'log', 'jsonl' or 'none'",
        config_key='analytics.sink'
    )
