"""Tests for scan analytics records and sinks."""

import json
import logging

import pytest

from conftest import make_candidate
from pulsefind.core.analytics import (
    JSONLinesAnalyticsSink,
    LoggingAnalyticsSink,
    NullAnalyticsSink,
    analyze_segment_performance,
    build_scan_analytics,
    create_analytics_sink,
    generate_insights_summary,
    source_breakdown,
)
from pulsefind.core.models import (
    AudioSegment,
    BeatCharacteristics,
    Priority,
    SegmentOutcome,
    SourceKind,
)
from pulsefind.core.thresholds import default_thresholds
from pulsefind.utils.errors import ConfigurationError


def outcome(label, *confidences, error=None):
    segment = AudioSegment(
        offset=0, length_bytes=10, label=label, estimated_energy=0.5,
        uniqueness=0.5, priority=Priority.MEDIUM,
    )
    return SegmentOutcome(
        segment=segment,
        candidates=tuple(make_candidate(title=f"{label}{i}", confidence=c)
                         for i, c in enumerate(confidences)),
        error=error,
    )


def build(matches, outcomes=(), **kwargs):
    return build_scan_analytics(
        scan_id="abc123",
        characteristics=BeatCharacteristics.default(),
        thresholds=default_thresholds(),
        matching_mode="loose",
        deep_scan=False,
        from_cache=False,
        matches=matches,
        segment_outcomes=outcomes,
        **kwargs,
    )


class TestSegmentPerformance:
    def test_per_segment_summary(self):
        (perf,) = analyze_segment_performance([outcome("COVERAGE 15%", 60, 90)])
        assert perf.position == "15%"
        assert perf.matches_found == 2
        assert perf.avg_confidence == 75
        assert perf.max_confidence == 90
        assert perf.success_rate == 1.0

    def test_failed_segment(self):
        (perf,) = analyze_segment_performance([outcome("PEAK DROP (highest energy)", error="timeout")])
        assert perf.position == "PEAK DROP (highest energy)"
        assert perf.success_rate == 0.0
        assert perf.error == "timeout"


class TestScanAnalytics:
    def test_confidence_buckets(self):
        matches = [make_candidate(confidence=c) for c in (95, 70, 45)]
        analytics = build(matches)
        assert analytics.high_confidence_matches == 1
        assert analytics.medium_confidence_matches == 1
        assert analytics.low_confidence_matches == 1
        assert analytics.max_confidence == 95
        assert analytics.min_confidence == 45

    def test_source_breakdown_covers_every_source(self):
        breakdown = source_breakdown([
            make_candidate(sources=(SourceKind.ACRCLOUD, SourceKind.SPOTIFY)),
            make_candidate(sources=(SourceKind.ACRCLOUD,)),
        ])
        assert breakdown["ACRCloud"] == 2
        assert breakdown["Spotify"] == 1
        assert breakdown["Apple Music"] == 0
        assert set(breakdown) == {kind.value for kind in SourceKind}

    def test_no_matches_anomaly(self):
        assert "No matches found - check audio quality" in build([]).anomalies

    def test_low_confidence_anomaly(self):
        analytics = build([make_candidate(confidence=40)])
        assert any(a.startswith("Low avg confidence") for a in analytics.anomalies)

    def test_segment_success_anomaly(self):
        outcomes = [outcome("A", error="x"), outcome("B", error="x"),
                    outcome("C", error="x"), outcome("D", 90)]
        analytics = build([make_candidate()], outcomes)
        assert "Low segment success rate: 1/4" in analytics.anomalies

    def test_slow_scan_anomaly(self):
        analytics = build([make_candidate()], total_duration_ms=61000)
        assert "Slow scan: 61.0s" in analytics.anomalies

    def test_healthy_scan_has_no_anomalies(self):
        analytics = build([make_candidate(confidence=90)], [outcome("A", 90)])
        assert analytics.anomalies == []

    def test_to_dict_is_json_serializable(self):
        data = build([make_candidate()], [outcome("A", 90)]).to_dict()
        assert json.loads(json.dumps(data))["scan_id"] == "abc123"

    def test_insights_summary(self):
        summary = generate_insights_summary(build([make_candidate()], [outcome("A", 90)]))
        assert "Best performing segment: A (90.0% avg)" in summary
        assert "Primary detection source: ACRCloud (1 matches)" in summary


class TestSinks:
    def test_jsonl_appends(self, tmp_path):
        path = tmp_path / "out" / "analytics.jsonl"
        sink = JSONLinesAnalyticsSink(path)
        sink.record(build([make_candidate()]))
        sink.record(build([]))
        lines = path.read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[1])["total_matches"] == 0

    def test_logging_sink_logs_anomalies(self, caplog):
        with caplog.at_level(logging.INFO, logger="analytics"):
            LoggingAnalyticsSink().record(build([]))
        assert any("Anomaly: No matches found" in r.getMessage() for r in caplog.records)

    def test_null_sink(self):
        assert NullAnalyticsSink().record(build([])) is None

    @pytest.mark.parametrize("sink,expected", [
        ("log", LoggingAnalyticsSink),
        ("jsonl", JSONLinesAnalyticsSink),
        ("none", NullAnalyticsSink),
    ])
    def test_factory(self, sink, expected):
        assert isinstance(create_analytics_sink({"sink": sink}), expected)

    def test_factory_rejects_unknown(self):
        with pytest.raises(ConfigurationError):
            create_analytics_sink({"sink": "kafka"})
