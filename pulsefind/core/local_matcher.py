"""
Local fingerprint store matcher.

Fast path of a scan: compares the new fingerprint against every stored
entry and, on any hit, lets the engine skip external recognition.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pulsefind.core.fingerprint import hamming_similarity, spectral_similarity
from pulsefind.core.models import (
    AdaptiveThresholds,
    FingerprintRecord,
    MatchCandidate,
    MatchingMode,
    MatchQuality,
    SourceKind,
    StoredFingerprint,
)
from pulsefind.core.store import FingerprintStore
from pulsefind.utils.errors import StoreError

LOOSE_SIMILARITY: float = 0.70


@dataclass(frozen=True)
class LocalHit:
    """A stored entry whose fingerprint passed the similarity threshold."""

    entry: StoredFingerprint
    similarity: float

    def to_candidate(self) -> MatchCandidate:
        confidence = round(self.similarity * 100)
        entry = self.entry
        return MatchCandidate(
            title=entry.title,
            artist=entry.artist,
            album=entry.album,
            confidence=confidence,
            isrc=entry.isrc,
            platform_ids=dict(entry.platform_ids),
            sources=(SourceKind.LOCAL,),
            match_quality=MatchQuality.from_confidence(confidence),
            cached=True,
            popularity=entry.popularity,
            release_date=entry.release_date,
        )


@dataclass(frozen=True)
class LocalMatchResult:
    hits: Tuple[LocalHit, ...] = ()
    threshold: float = 0.0
    candidates: List[MatchCandidate] = field(default_factory=list)

    @property
    def cache_hit(self) -> bool:
        return bool(self.hits)


class LocalMatcher:
    """
    Hamming-similarity search over the fingerprint store.

    Strict scans require strict/100 similarity; loose scans use the fixed
    local-cache similarity, independent of the adaptive loose threshold.
    """

    def __init__(
        self,
        store: FingerprintStore,
        loose_similarity: float = LOOSE_SIMILARITY,
        min_spectral_similarity: Optional[float] = None,
    ):
        self.store = store
        self.loose_similarity = loose_similarity
        self.min_spectral_similarity = min_spectral_similarity
        self.logger = logging.getLogger("local_matcher")

    def similarity_threshold(
        self, thresholds: AdaptiveThresholds, mode: MatchingMode
    ) -> float:
        """Similarity (0-1) an entry must reach for the given scan."""
        if MatchingMode.parse(mode) is MatchingMode.STRICT:
            return thresholds.strict / 100
        return self.loose_similarity

    def match(self, fingerprint: FingerprintRecord, threshold: float) -> LocalMatchResult:
        """
        Compare a fingerprint against every stored entry.

        Args:
            fingerprint: Fingerprint of the submitted audio
            threshold: Minimum Hamming similarity (0-1)

        Returns:
            LocalMatchResult with hits ordered by similarity, highest first

        Raises:
            StoreError: The store could not be read
        """
        hits: List[LocalHit] = []
        entries = self.store.all_entries()

        for entry in entries:
            similarity = hamming_similarity(
                fingerprint.binary_fingerprint, entry.fingerprint.binary_fingerprint
            )
            if similarity < threshold:
                continue
            if self.min_spectral_similarity is not None:
                spectral = spectral_similarity(
                    fingerprint.spectral_features, entry.fingerprint.spectral_features
                )
                if spectral < self.min_spectral_similarity:
                    continue
            hits.append(LocalHit(entry=entry, similarity=similarity))

        hits.sort(key=lambda h: h.similarity, reverse=True)
        self.logger.info(
            f"Local cache: {len(hits)} hit(s) in {len(entries)} entries "
            f"(threshold={threshold:.2f})"
        )

        return LocalMatchResult(
            hits=tuple(hits),
            threshold=threshold,
            candidates=[hit.to_candidate() for hit in hits],
        )

    def record_sample(
        self, fingerprint: FingerprintRecord, result: LocalMatchResult
    ) -> Optional[StoredFingerprint]:
        """
        Store the new sample under its own content key.

        The entry carries the best hit's song metadata. Hit entries keep
        their fingerprints, so a resembling upload never replaces the
        reference it matched. Write failures are logged.

        Returns:
            The stored entry, or None when there was no hit or the write failed
        """
        if not result.hits:
            return None

        top = result.hits[0]
        entry = replace(
            top.entry,
            key=fingerprint.key,
            fingerprint=fingerprint,
            confidence_score=float(round(top.similarity * 100)),
            source="local",
            match_count=0,
            created_at=datetime.utcnow(),
            updated_at=datetime.utcnow(),
        )
        try:
            return self.store.upsert(entry)
        except StoreError as e:
            self.logger.error(f"Failed to store sample {fingerprint.key}: {e}")
            return None


def create_local_matcher(
    store: FingerprintStore, config: Optional[Dict[str, Any]] = None
) -> LocalMatcher:
    """Factory function to create LocalMatcher from the ``local_cache`` section."""
    if config is None:
        config = {}

    return LocalMatcher(
        store=store,
        loose_similarity=config.get('loose_similarity', LOOSE_SIMILARITY),
        min_spectral_similarity=config.get('min_spectral_similarity'),
    )
