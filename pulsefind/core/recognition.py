"""
External recognition orchestrator.

Slow path of a scan: every planned segment is sent to the recognition
service in bounded concurrent batches. Each task returns its own
SegmentOutcome; the caller folds them in plan order, deduplicates the
candidates and applies the active threshold.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from pulsefind.core.models import (
    AudioSegment,
    FingerprintRecord,
    MatchCandidate,
    MatchQuality,
    SegmentOutcome,
    SourceKind,
    StoredFingerprint,
    stored_entry_key,
)
from pulsefind.core.store import FingerprintStore
from pulsefind.providers.base import RecognitionProvider
from pulsefind.utils.errors import ProviderError, StoreError

SUCCESS_CODE = 0
NO_RESULT_CODE = 1001

MAX_CONCURRENCY = 10
SEGMENT_TIMEOUT = 15.0
MAX_RESULTS = 50
PERSIST_TOP_N = 10


# ---------------------------------------------------------------------------
# Response interpretation
# ---------------------------------------------------------------------------


def _get(data: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(data, Mapping):
            return None
        data = data.get(key)
    return data


def parse_recognition_response(
    payload: Mapping[str, Any], segment_label: str, provider: str = "acrcloud"
) -> Tuple[MatchCandidate, ...]:
    """
    Interpret a recognition payload.

    Status 0 yields one candidate per ``metadata.music`` entry, 1001 means
    no match and yields nothing.

    Raises:
        ProviderError: Any other status, or a payload without a status
    """
    code = _get(payload, "status", "code")
    message = _get(payload, "status", "msg") or ""
    try:
        code = int(code)
    except (TypeError, ValueError):
        raise ProviderError(f"Malformed recognition response for {segment_label}", provider=provider)

    if code == NO_RESULT_CODE:
        return ()
    if code != SUCCESS_CODE:
        raise ProviderError(
            f"Recognition error {code}: {message}", provider=provider, status=code
        )

    tracks = _get(payload, "metadata", "music") or []
    candidates = []
    for track in tracks:
        candidate = _track_to_candidate(track, segment_label)
        if candidate is not None:
            candidates.append(candidate)
    return tuple(candidates)


def _track_to_candidate(track: Mapping[str, Any], segment_label: str) -> Optional[MatchCandidate]:
    title = track.get("title")
    if not title:
        return None

    try:
        confidence = max(0.0, min(100.0, float(track.get("score", 0))))
    except (TypeError, ValueError):
        return None

    artists = ", ".join(a.get("name", "") for a in track.get("artists") or [] if a.get("name"))

    platform_ids = {
        "spotify": _get(track, "external_metadata", "spotify", "track", "id"),
        "apple_music": (
            _get(track, "external_metadata", "applemusic", "track", "id")
            or _get(track, "external_metadata", "apple_music", "track", "id")
        ),
        "youtube": _get(track, "external_metadata", "youtube", "vid"),
    }

    return MatchCandidate(
        title=title,
        artist=artists,
        album=_get(track, "album", "name"),
        confidence=confidence,
        isrc=_get(track, "external_ids", "isrc"),
        platform_ids={k: str(v) for k, v in platform_ids.items() if v},
        sources=(SourceKind.ACRCLOUD,),
        match_quality=MatchQuality.from_confidence(confidence),
        segment_label=segment_label,
        release_date=track.get("release_date"),
    )


# ---------------------------------------------------------------------------
# Deduplication
# ---------------------------------------------------------------------------


def _dedupe_key(candidate: MatchCandidate) -> str:
    if candidate.isrc:
        return f"isrc:{candidate.isrc}"
    return f"song:{candidate.song_key}"


def _merge_duplicate(kept: MatchCandidate, other: MatchCandidate) -> MatchCandidate:
    winner, loser = (other, kept) if other.confidence > kept.confidence else (kept, other)
    merged = winner.with_platform_ids(loser.platform_ids)
    for source in loser.sources:
        merged = merged.with_source(source)
    return merged


def dedupe_candidates(candidates: Sequence[MatchCandidate]) -> List[MatchCandidate]:
    """
    Collapse duplicates, keeping first-seen order.

    Candidates with an ISRC group by ISRC; the rest by normalized
    title|artist. The highest confidence wins and platform IDs are unioned.
    """
    merged: Dict[str, MatchCandidate] = {}
    for candidate in candidates:
        key = _dedupe_key(candidate)
        if key in merged:
            merged[key] = _merge_duplicate(merged[key], candidate)
        else:
            merged[key] = candidate
    return list(merged.values())


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RecognitionOutcome:
    """Folded result of all segment tasks."""

    candidates: List[MatchCandidate]
    segment_outcomes: Tuple[SegmentOutcome, ...]
    raw_count: int
    deduplicated_count: int

    @property
    def segments_succeeded(self) -> int:
        return sum(1 for o in self.segment_outcomes if o.succeeded)

    @property
    def segments_failed(self) -> int:
        return len(self.segment_outcomes) - self.segments_succeeded


def _batches(items: Sequence[AudioSegment], size: int) -> Iterator[Sequence[AudioSegment]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class RecognitionOrchestrator:
    """
    Fans segments out to the recognition provider.

    Design:
    - Bounded batches of max_concurrency segments, each on its own thread pool
    - Per-segment timeout; late or failing segments are recorded, never raised
    - No shared counters: tasks return SegmentOutcome values
    """

    def __init__(
        self,
        provider: Optional[RecognitionProvider],
        store: Optional[FingerprintStore] = None,
        max_concurrency: int = MAX_CONCURRENCY,
        segment_timeout: float = SEGMENT_TIMEOUT,
        max_results: int = MAX_RESULTS,
        persist_top_n: int = PERSIST_TOP_N,
    ):
        self.provider = provider
        self.store = store
        self.max_concurrency = max(1, max_concurrency)
        self.segment_timeout = segment_timeout
        self.max_results = max_results
        self.persist_top_n = persist_top_n
        self.logger = logging.getLogger("recognition")

    @property
    def provider_name(self) -> str:
        return getattr(self.provider, "name", "recognition")

    def recognize(
        self,
        audio_bytes: bytes,
        segments: Sequence[AudioSegment],
        active_threshold: float,
    ) -> RecognitionOutcome:
        """
        Identify all segments and return filtered, deduplicated candidates.

        Args:
            audio_bytes: Raw submitted bytes that segments address
            segments: Planned segments
            active_threshold: Minimum confidence (0-100) kept

        Returns:
            RecognitionOutcome; candidates capped at max_results
        """
        if self.provider is None:
            self.logger.warning("No recognition provider configured; skipping external scan")
            outcomes = tuple(
                SegmentOutcome(segment=s, error="recognition provider not configured")
                for s in segments
            )
            return RecognitionOutcome([], outcomes, 0, 0)

        outcomes: List[SegmentOutcome] = []
        for batch in _batches(list(segments), self.max_concurrency):
            outcomes.extend(self._run_batch(audio_bytes, batch))

        raw = [c for outcome in outcomes for c in outcome.candidates]
        deduped = dedupe_candidates(raw)
        filtered = [c for c in deduped if c.confidence >= active_threshold]
        capped = filtered[:self.max_results]

        succeeded = sum(1 for o in outcomes if o.succeeded)
        self.logger.info(
            f"External scan: {succeeded}/{len(outcomes)} segments ok, "
            f"{len(raw)} raw, {len(deduped)} unique, {len(capped)} >= {active_threshold}%"
        )

        return RecognitionOutcome(
            candidates=capped,
            segment_outcomes=tuple(outcomes),
            raw_count=len(raw),
            deduplicated_count=len(deduped),
        )

    def _run_batch(
        self, audio_bytes: bytes, batch: Sequence[AudioSegment]
    ) -> List[SegmentOutcome]:
        # One worker per segment on a pool owned by this batch, so the timeout
        # covers execution only and hung calls cannot starve later batches
        pool = ThreadPoolExecutor(
            max_workers=len(batch), thread_name_prefix="recognition"
        )
        try:
            futures = [
                (segment, pool.submit(self._identify_segment, audio_bytes, segment))
                for segment in batch
            ]
            done, _ = wait([f for _, f in futures], timeout=self.segment_timeout)
        finally:
            pool.shutdown(wait=False)

        outcomes = []
        for segment, future in futures:
            if future in done:
                outcomes.append(future.result())
                continue
            # The worker may still finish; its result is ignored
            self.logger.warning(
                f"{segment.label} timed out after {self.segment_timeout}s",
                extra={"segment": segment.label, "provider": self.provider_name},
            )
            outcomes.append(SegmentOutcome(
                segment=segment,
                error=f"timeout after {self.segment_timeout}s",
                elapsed_ms=self.segment_timeout * 1000,
            ))
        return outcomes

    def _identify_segment(self, audio_bytes: bytes, segment: AudioSegment) -> SegmentOutcome:
        start_time = time.time()
        extra = {"segment": segment.label, "provider": self.provider_name}

        try:
            payload = self.provider.identify(segment.slice(audio_bytes), segment.label)
            candidates = parse_recognition_response(payload, segment.label, self.provider_name)
        except Exception as e:
            elapsed_ms = (time.time() - start_time) * 1000
            self.logger.warning(f"{segment.label} failed: {e}", extra=extra)
            return SegmentOutcome(segment=segment, error=str(e), elapsed_ms=elapsed_ms)

        elapsed_ms = (time.time() - start_time) * 1000
        self.logger.debug(
            f"{segment.label}: {len(candidates)} result(s) ({elapsed_ms:.0f}ms)", extra=extra
        )
        return SegmentOutcome(segment=segment, candidates=candidates, elapsed_ms=elapsed_ms)

    def persist(
        self, candidates: Sequence[MatchCandidate], fingerprint: Optional[FingerprintRecord]
    ) -> int:
        """
        Upsert the top candidates with the scan's fingerprint.

        Called only after ranking completes. Write failures are logged.

        Returns:
            Number of entries written
        """
        if self.store is None or fingerprint is None:
            return 0

        written = 0
        for candidate in list(candidates)[:self.persist_top_n]:
            key = stored_entry_key(candidate)
            entry = StoredFingerprint.from_candidate(
                key, candidate, fingerprint, source=self.provider_name
            )
            try:
                self.store.upsert(entry)
                written += 1
            except StoreError as e:
                self.logger.error(f"Failed to store fingerprint for {key}: {e}")

        self.logger.info(f"Stored {written} fingerprint entr{'y' if written == 1 else 'ies'}")
        return written

    def shutdown(self) -> None:
        """Nothing to release: each batch shuts down its own pool."""


def create_recognition_orchestrator(
    provider: Optional[RecognitionProvider],
    store: Optional[FingerprintStore],
    config: Optional[Dict[str, Any]] = None,
) -> RecognitionOrchestrator:
    """Factory using the ``scan`` and ``store`` config sections."""
    if config is None:
        config = {}
    scan = config.get('scan', {})

    return RecognitionOrchestrator(
        provider=provider,
        store=store,
        max_concurrency=scan.get('max_concurrency', MAX_CONCURRENCY),
        segment_timeout=scan.get('segment_timeout', SEGMENT_TIMEOUT),
        max_results=scan.get('max_results', MAX_RESULTS),
        persist_top_n=config.get('store', {}).get('persist_top_n', PERSIST_TOP_N),
    )
