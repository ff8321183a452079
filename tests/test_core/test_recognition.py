"""Tests for response parsing, deduplication and the recognition orchestrator."""

import threading
import time

import pytest

from conftest import (
    FailingRecognitionProvider,
    FakeRecognitionProvider,
    acr_payload,
    acr_track,
    make_candidate,
)
from pulsefind.core.models import (
    AudioSegment,
    FingerprintRecord,
    MatchQuality,
    Priority,
    SourceKind,
)
from pulsefind.core.recognition import (
    RecognitionOrchestrator,
    create_recognition_orchestrator,
    dedupe_candidates,
    parse_recognition_response,
)
from pulsefind.utils.errors import ProviderError, StoreError

FINGERPRINT = FingerprintRecord("ffffffff", "1-2", (), 1000)


def segments(*labels):
    return [
        AudioSegment(
            offset=i * 10, length_bytes=10, label=label, estimated_energy=0.5,
            uniqueness=0.5, priority=Priority.MEDIUM,
        )
        for i, label in enumerate(labels)
    ]


class TestParseRecognitionResponse:
    def test_success(self):
        payload = acr_payload(
            acr_track("Night Drive", "Kid Vector", 93, isrc="USRC17607839", spotify_id="sp1")
        )
        (candidate,) = parse_recognition_response(payload, "PEAK DROP (highest energy)")

        assert candidate.title == "Night Drive"
        assert candidate.artist == "Kid Vector"
        assert candidate.album == "Night Drive (Single)"
        assert candidate.confidence == 93
        assert candidate.isrc == "USRC17607839"
        assert candidate.platform_ids == {"spotify": "sp1"}
        assert candidate.sources == (SourceKind.ACRCLOUD,)
        assert candidate.match_quality is MatchQuality.HIGH
        assert candidate.segment_label == "PEAK DROP (highest energy)"
        assert candidate.release_date == "2023-05-12"

    def test_multiple_artists_joined(self):
        track = acr_track("Song", "A", 70)
        track["artists"] = [{"name": "A"}, {"name": "B"}]
        (candidate,) = parse_recognition_response(acr_payload(track), "x")
        assert candidate.artist == "A, B"

    def test_apple_music_id(self):
        track = acr_track("Song", "A", 70)
        track["external_metadata"] = {"apple_music": {"track": {"id": 12345}}}
        (candidate,) = parse_recognition_response(acr_payload(track), "x")
        assert candidate.platform_ids == {"apple_music": "12345"}

    def test_no_result(self):
        assert parse_recognition_response(acr_payload(), "x") == ()

    def test_error_status_raises(self):
        payload = {"status": {"code": 3001, "msg": "Missing/Invalid Access Key"}}
        with pytest.raises(ProviderError) as exc_info:
            parse_recognition_response(payload, "x")
        assert exc_info.value.status == 3001

    def test_malformed_payload_raises(self):
        with pytest.raises(ProviderError):
            parse_recognition_response({"unexpected": True}, "x")

    def test_score_clamped(self):
        (candidate,) = parse_recognition_response(acr_payload(acr_track("S", "A", 140)), "x")
        assert candidate.confidence == 100


class TestDedupeCandidates:
    def test_same_isrc_collapses(self):
        a = make_candidate(title="Night Drive", confidence=70, isrc="X1", platform_ids={"spotify": "sp"})
        b = make_candidate(title="Night Drive (Remastered)", confidence=88, isrc="X1",
                           platform_ids={"youtube": "yt"})
        (merged,) = dedupe_candidates([a, b])
        assert merged.confidence == 88
        assert merged.title == "Night Drive (Remastered)"
        assert merged.platform_ids == {"spotify": "sp", "youtube": "yt"}

    def test_same_song_without_isrc_keeps_highest(self):
        low = make_candidate(confidence=60)
        high = make_candidate(title="night drive", artist="KID VECTOR", confidence=90)
        (merged,) = dedupe_candidates([low, high])
        assert merged.confidence == 90

    def test_distinct_songs_keep_order(self):
        a = make_candidate(title="A")
        b = make_candidate(title="B")
        c = make_candidate(title="A", confidence=95)
        assert [m.title for m in dedupe_candidates([a, b, c])] == ["A", "B"]


class TestRecognitionOrchestrator:
    def test_scenario_three_duplicates(self, store):
        def respond(label):
            score = 60 if label == "FIRST" else 90
            return acr_payload(acr_track("Night Drive", "Kid Vector", score))

        orchestrator = RecognitionOrchestrator(FakeRecognitionProvider(respond), store)
        try:
            outcome = orchestrator.recognize(b"x" * 40, segments("FIRST", "SECOND"), 40)
        finally:
            orchestrator.shutdown()

        assert len(outcome.candidates) == 1
        assert outcome.candidates[0].confidence == 90
        assert outcome.raw_count == 2
        assert outcome.deduplicated_count == 1

    def test_threshold_filters(self, store):
        def respond(label):
            return acr_payload(acr_track(label, "Artist", 35 if label == "LOW" else 80))

        orchestrator = RecognitionOrchestrator(FakeRecognitionProvider(respond), store)
        try:
            outcome = orchestrator.recognize(b"x" * 40, segments("LOW", "HIGH"), 40)
        finally:
            orchestrator.shutdown()
        assert [c.title for c in outcome.candidates] == ["HIGH"]

    def test_segment_receives_its_bytes(self, store):
        received = {}

        class Recorder:
            name = "recorder"

            def identify(self, sample_bytes, label):
                received[label] = sample_bytes
                return acr_payload()

        orchestrator = RecognitionOrchestrator(Recorder(), store)
        try:
            orchestrator.recognize(bytes(range(40)), segments("A", "B"), 40)
        finally:
            orchestrator.shutdown()
        assert received == {"A": bytes(range(10)), "B": bytes(range(10, 20))}

    def test_failures_are_recorded_not_raised(self, store):
        orchestrator = RecognitionOrchestrator(FailingRecognitionProvider(), store)
        try:
            outcome = orchestrator.recognize(b"x" * 40, segments("A", "B", "C"), 40)
        finally:
            orchestrator.shutdown()
        assert outcome.candidates == []
        assert outcome.segments_failed == 3
        assert all("service unavailable" in o.error for o in outcome.segment_outcomes)

    def test_timeout_marks_segment_failed(self, store):
        class Slow:
            name = "slow"

            def identify(self, sample_bytes, label):
                if label == "SLOW":
                    time.sleep(1.0)
                return acr_payload(acr_track(label, "Artist", 90))

        orchestrator = RecognitionOrchestrator(Slow(), store, segment_timeout=0.2)
        try:
            outcome = orchestrator.recognize(b"x" * 40, segments("FAST", "SLOW"), 40)
        finally:
            orchestrator.shutdown()
        assert [c.title for c in outcome.candidates] == ["FAST"]
        assert outcome.segments_succeeded == 1
        assert "timeout" in outcome.segment_outcomes[1].error

    def test_hung_segments_do_not_starve_later_batches(self, store):
        release = threading.Event()

        class Hanging:
            name = "hanging"

            def identify(self, sample_bytes, label):
                if label in ("A", "B"):
                    release.wait(5.0)
                return acr_payload(acr_track(label, "Artist", 90))

        orchestrator = RecognitionOrchestrator(
            Hanging(), store, max_concurrency=2, segment_timeout=0.3
        )
        try:
            outcome = orchestrator.recognize(b"x" * 40, segments("A", "B", "C", "D"), 40)
            again = orchestrator.recognize(b"x" * 40, segments("C", "D"), 40)
        finally:
            release.set()
            orchestrator.shutdown()

        errors = [o.error for o in outcome.segment_outcomes]
        assert "timeout" in errors[0] and "timeout" in errors[1]
        assert errors[2:] == [None, None]
        assert [c.title for c in outcome.candidates] == ["C", "D"]
        assert again.segments_succeeded == 2

    def test_batches_respect_concurrency(self, store):
        provider = FakeRecognitionProvider(lambda label: acr_payload())
        orchestrator = RecognitionOrchestrator(provider, store, max_concurrency=2)
        try:
            outcome = orchestrator.recognize(b"x" * 80, segments(*"ABCDE"), 40)
        finally:
            orchestrator.shutdown()
        assert [o.segment.label for o in outcome.segment_outcomes] == list("ABCDE")
        assert sorted(provider.labels) == list("ABCDE")

    def test_no_provider(self, store):
        orchestrator = RecognitionOrchestrator(None, store)
        try:
            outcome = orchestrator.recognize(b"x" * 40, segments("A"), 40)
        finally:
            orchestrator.shutdown()
        assert outcome.candidates == []
        assert outcome.segments_failed == 1

    def test_results_capped(self, store):
        def respond(label):
            return acr_payload(*[acr_track(f"Song {i}", "A", 90) for i in range(10)])

        orchestrator = RecognitionOrchestrator(
            FakeRecognitionProvider(respond), store, max_results=3
        )
        try:
            outcome = orchestrator.recognize(b"x" * 40, segments("A"), 40)
        finally:
            orchestrator.shutdown()
        assert len(outcome.candidates) == 3


class TestPersist:
    def test_persists_top_n(self, store):
        orchestrator = RecognitionOrchestrator(None, store, persist_top_n=2)
        candidates = [
            make_candidate(title="One", isrc="I1"),
            make_candidate(title="Two"),
            make_candidate(title="Three"),
        ]
        try:
            assert orchestrator.persist(candidates, FINGERPRINT) == 2
        finally:
            orchestrator.shutdown()
        assert "I1" in store
        assert "two|kid vector" in store
        assert len(store) == 2

    def test_no_fingerprint_skips(self, store):
        orchestrator = RecognitionOrchestrator(None, store)
        try:
            assert orchestrator.persist([make_candidate()], None) == 0
        finally:
            orchestrator.shutdown()
        assert len(store) == 0

    def test_write_failures_are_logged(self):
        class ReadOnlyStore:
            def upsert(self, entry):
                raise StoreError("read-only", operation="upsert", key=entry.key)

        orchestrator = RecognitionOrchestrator(None, ReadOnlyStore())
        try:
            assert orchestrator.persist([make_candidate()], FINGERPRINT) == 0
        finally:
            orchestrator.shutdown()

    def test_factory_reads_config(self, store):
        orchestrator = create_recognition_orchestrator(
            None, store,
            {"scan": {"max_concurrency": 3, "segment_timeout": 2.0}, "store": {"persist_top_n": 4}},
        )
        try:
            assert orchestrator.max_concurrency == 3
            assert orchestrator.segment_timeout == 2.0
            assert orchestrator.persist_top_n == 4
        finally:
            orchestrator.shutdown()
