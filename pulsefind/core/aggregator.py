"""
Multi-platform aggregator.

Confirms the top recognized songs on secondary platforms. Searches run
concurrently; every platform's batch is collected in full and then folded
sequentially (song order, then platform order) into an immutable
candidate list, so no candidate is ever shared between threads.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import replace
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from pulsefind.core.models import (
    MatchCandidate,
    PlatformResult,
    SourceKind,
    normalize_text,
)
from pulsefind.providers.base import CatalogLookupProvider, PlatformSearchProvider

TOP_K = 5
SEARCH_TIMEOUT = 10.0


def _text_matches(a: str, b: str) -> bool:
    # Spacing differs between catalogs ("Kid Vector" vs "KidVector")
    a = normalize_text(a).replace(" ", "")
    b = normalize_text(b).replace(" ", "")
    if not a or not b:
        return False
    return a == b or a in b or b in a


def result_matches(candidate: MatchCandidate, result: PlatformResult) -> bool:
    """
    A platform result confirms a candidate when it shares a platform ID or
    ISRC, or its normalized title and artist are equal or contain each other.
    """
    key = result.platform.platform_key
    if key and result.platform_id and candidate.platform_ids.get(key) == result.platform_id:
        return True
    if result.isrc and candidate.isrc and result.isrc == candidate.isrc:
        return True
    return _text_matches(candidate.title, result.title) and _text_matches(
        candidate.artist, result.artist
    )


def merge_result(candidate: MatchCandidate, result: PlatformResult) -> MatchCandidate:
    """Copy fields the candidate lacks and record the platform as a source."""
    key = result.platform.platform_key
    merged = candidate
    if key and result.platform_id:
        merged = merged.with_platform_ids({key: result.platform_id})

    merged = replace(
        merged,
        artwork_url=merged.artwork_url or result.artwork_url,
        preview_url=merged.preview_url or result.preview_url,
        popularity=merged.popularity if merged.popularity is not None else result.popularity,
        album=merged.album or result.album,
        isrc=merged.isrc or result.isrc,
    )
    return merged.with_source(result.platform)


def fold_platform_results(
    candidates: Sequence[MatchCandidate], results: Sequence[PlatformResult]
) -> List[MatchCandidate]:
    """
    Fold one batch of platform results into the candidate list.

    Matched results enrich the first matching candidate; unmatched results
    are appended as new single-source candidates.
    """
    folded = list(candidates)
    for result in results:
        for index, candidate in enumerate(folded):
            if result_matches(candidate, result):
                folded[index] = merge_result(candidate, result)
                break
        else:
            folded.append(result.to_candidate())
    return folded


def select_top_songs(candidates: Sequence[MatchCandidate], top_k: int) -> List[MatchCandidate]:
    """First top_k candidates that are distinct by normalized title/artist."""
    seen = set()
    selected = []
    for candidate in candidates:
        if candidate.song_key in seen:
            continue
        seen.add(candidate.song_key)
        selected.append(candidate)
        if len(selected) >= top_k:
            break
    return selected


class MultiPlatformAggregator:
    """
    Enriches candidates with secondary-platform confirmations.

    Per-platform failures are logged and contribute nothing.
    """

    def __init__(
        self,
        search_providers: Sequence[PlatformSearchProvider] = (),
        lookup_providers: Sequence[CatalogLookupProvider] = (),
        top_k: int = TOP_K,
        timeout: float = SEARCH_TIMEOUT,
        max_workers: int = 8,
    ):
        self.search_providers = list(search_providers)
        self.lookup_providers = list(lookup_providers)
        self.top_k = top_k
        self.timeout = timeout
        self.max_workers = max(1, max_workers)
        self.logger = logging.getLogger("aggregator")

    def aggregate(self, candidates: Sequence[MatchCandidate]) -> List[MatchCandidate]:
        """
        Search secondary platforms for the top songs and merge the results.

        Args:
            candidates: Primary candidates in discovery order

        Returns:
            Enriched candidates followed by any platform-only candidates
        """
        merged = list(candidates)
        if not merged:
            return merged

        if self.search_providers:
            songs = select_top_songs(merged, self.top_k)
            batches = self._collect_searches(songs)
            for song_index in range(len(songs)):
                for provider in self.search_providers:
                    results = batches.get((song_index, provider.platform), ())
                    merged = fold_platform_results(merged, results)

        if self.lookup_providers:
            merged = self._resolve_missing_ids(merged)

        return merged

    def _collect_searches(
        self, songs: Sequence[MatchCandidate]
    ) -> Dict[Tuple[int, SourceKind], Tuple[PlatformResult, ...]]:
        """Run every (song, platform) search concurrently; failures yield ()."""
        tasks = [
            (song_index, provider)
            for song_index in range(len(songs))
            for provider in self.search_providers
        ]
        outcomes = self._run_concurrently([
            partial(provider.search, songs[song_index].title, songs[song_index].artist)
            for song_index, provider in tasks
        ])

        batches: Dict[Tuple[int, SourceKind], Tuple[PlatformResult, ...]] = {}
        for (song_index, provider), (results, error) in zip(tasks, outcomes):
            if error is not None:
                song = songs[song_index]
                self.logger.warning(
                    f"{provider.platform.value} search failed for "
                    f"{song.title} - {song.artist}: {error}",
                    extra={"platform": provider.platform.value},
                )
                continue
            batches[(song_index, provider.platform)] = tuple(results)
        return batches

    def _resolve_missing_ids(self, candidates: List[MatchCandidate]) -> List[MatchCandidate]:
        """One direct catalog lookup per candidate still missing that platform's ID."""
        resolved = list(candidates)
        for provider in self.lookup_providers:
            key = provider.platform.platform_key
            if not key:
                continue

            pending = [i for i, c in enumerate(resolved) if not c.platform_ids.get(key)]
            outcomes = self._run_concurrently([
                partial(provider.lookup, resolved[i].title, resolved[i].artist)
                for i in pending
            ])
            for index, (platform_id, error) in zip(pending, outcomes):
                candidate = resolved[index]
                if error is not None:
                    self.logger.warning(
                        f"{provider.platform.value} lookup failed for "
                        f"{candidate.title} - {candidate.artist}: {error}",
                        extra={"platform": provider.platform.value},
                    )
                    continue
                if platform_id:
                    resolved[index] = candidate.with_platform_ids({key: platform_id})
        return resolved

    def _run_concurrently(
        self, calls: Sequence[Callable[[], Any]]
    ) -> List[Tuple[Any, Optional[BaseException]]]:
        """
        Run calls on a pool owned by this request, sharing one timeout window.

        Returns (result, None) or (None, error) per call, in call order. Calls
        still running at the deadline are abandoned with a TimeoutError and
        cannot delay later requests.
        """
        if not calls:
            return []

        pool = ThreadPoolExecutor(
            max_workers=min(len(calls), self.max_workers), thread_name_prefix="aggregator"
        )
        try:
            futures = [pool.submit(call) for call in calls]
            done, _ = wait(futures, timeout=self.timeout)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        outcomes: List[Tuple[Any, Optional[BaseException]]] = []
        for future in futures:
            if future not in done:
                outcomes.append((None, TimeoutError(f"timed out after {self.timeout}s")))
            elif future.exception() is not None:
                outcomes.append((None, future.exception()))
            else:
                outcomes.append((future.result(), None))
        return outcomes

    def shutdown(self) -> None:
        """Nothing to release: each request shuts down its own pool."""


def create_aggregator(
    search_providers: Sequence[PlatformSearchProvider],
    lookup_providers: Sequence[CatalogLookupProvider],
    config: Optional[Dict[str, Any]] = None,
) -> MultiPlatformAggregator:
    """Factory using the ``aggregation`` config section."""
    if config is None:
        config = {}

    return MultiPlatformAggregator(
        search_providers=search_providers,
        lookup_providers=lookup_providers,
        top_k=config.get('top_k', TOP_K),
        timeout=config.get('timeout', SEARCH_TIMEOUT),
    )
