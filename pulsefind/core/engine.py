"""
Scan engine for the PulseFind beat identification system.

Main orchestration engine: decodes the upload, fingerprints and analyzes
it in parallel, tries the local fingerprint store, and otherwise runs the
segment scan, platform aggregation and ranking.
"""

import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from dotenv import load_dotenv

from pulsefind.core.aggregator import MultiPlatformAggregator, create_aggregator
from pulsefind.core.analytics import AnalyticsSink, build_scan_analytics, create_analytics_sink
from pulsefind.core.characteristics import BeatCharacteristicsAnalyzer
from pulsefind.core.fingerprint import FingerprintExtractor
from pulsefind.core.loader import AudioLoader, create_audio_loader
from pulsefind.core.local_matcher import LocalMatcher, create_local_matcher
from pulsefind.core.models import (
    AdaptiveThresholds,
    AudioSample,
    BeatCharacteristics,
    FingerprintRecord,
    MatchCandidate,
    MatchingMode,
    Origin,
    ScanMetrics,
    ScanResult,
    SegmentOutcome,
)
from pulsefind.core.ranking import MAX_RESULTS, rank_candidates
from pulsefind.core.recognition import (
    RecognitionOrchestrator,
    create_recognition_orchestrator,
    dedupe_candidates,
)
from pulsefind.core.segments import SegmentSelector, create_segment_selector
from pulsefind.core.store import create_fingerprint_store
from pulsefind.core.thresholds import calculate_adaptive_thresholds, default_thresholds
from pulsefind.providers import (
    create_acrcloud_provider,
    create_itunes_provider,
    create_spotify_provider,
    create_youtube_provider,
)
from pulsefind.utils.logging import create_logger_with_context

# Load .env from project root
_env_path = Path(__file__).parent.parent.parent / '.env'
if _env_path.exists():
    load_dotenv(_env_path)

NO_MATCHES_MESSAGE = (
    "No confirmed matches found. Try uploading a longer or clearer version of the beat."
)


class BeatScanEngine:
    """
    Main scan engine - orchestrates all components.

    Design:
    - Dependency Injection: All collaborators injected (testable)
    - Parallel Execution: Fingerprinting and characteristics run concurrently
    - Fast path: Local fingerprint store hit skips external recognition
    - Error Handling: Analysis and collaborator failures degrade, never abort
    """

    def __init__(
        self,
        loader: AudioLoader,
        fingerprinter: Any,
        characteristics_analyzer: Any,
        segment_selector: SegmentSelector,
        recognizer: RecognitionOrchestrator,
        local_matcher: Optional[LocalMatcher] = None,
        aggregator: Optional[MultiPlatformAggregator] = None,
        analytics_sink: Optional[AnalyticsSink] = None,
        max_results: int = MAX_RESULTS,
        max_workers: int = 4,
    ):
        """
        Initialize scan engine.

        Args:
            loader: AudioLoader instance
            fingerprinter: Analyzer returning a FingerprintRecord
            characteristics_analyzer: Analyzer returning BeatCharacteristics
            segment_selector: Plans recognition segments
            recognizer: External recognition orchestrator
            local_matcher: Optional local fingerprint store matcher
            aggregator: Optional multi-platform aggregator
            analytics_sink: Optional destination for scan analytics
            max_results: Cap on returned matches
            max_workers: Max parallel analysis workers
        """
        self.loader = loader
        self.analyzers = {
            'fingerprint': fingerprinter,
            'characteristics': characteristics_analyzer,
        }
        self.segment_selector = segment_selector
        self.recognizer = recognizer
        self.local_matcher = local_matcher
        self.aggregator = aggregator
        self.analytics_sink = analytics_sink
        self.max_results = max_results
        self.executor = ThreadPoolExecutor(max_workers=max_workers)
        self.logger = logging.getLogger('engine')

    def scan(
        self,
        audio_bytes: bytes,
        deep_scan: bool = False,
        matching_mode: Any = MatchingMode.LOOSE,
    ) -> ScanResult:
        """
        Identify songs containing the submitted beat.

        Args:
            audio_bytes: Raw uploaded audio
            deep_scan: Plan 8 segments instead of 4
            matching_mode: "strict" or "loose"

        Returns:
            ScanResult: Ranked matches, metrics and thresholds

        Raises:
            AudioLoadError: No audio or unreadable audio
            StoreError: The fingerprint store could not be read
        """
        mode = MatchingMode.parse(matching_mode)
        scan_id = uuid.uuid4().hex[:12]
        log = create_logger_with_context('engine', {'scan_id': scan_id, 'mode': mode.value})
        start_time = time.time()

        # Step 1: Decode
        audio = self.loader.load(audio_bytes)
        log.info(
            f"Scanning {audio.byte_length} bytes ({audio.duration:.1f}s), "
            f"deep_scan={deep_scan}"
        )

        # Step 2: Fingerprint + characteristics in parallel
        fingerprint, characteristics, fingerprint_ms, errors = self._run_analyzers_parallel(
            audio, log
        )
        if characteristics is None:
            characteristics = BeatCharacteristics.default()
            thresholds = default_thresholds()
        else:
            thresholds = calculate_adaptive_thresholds(characteristics)
        active_threshold = thresholds.active(mode)
        log.info(thresholds.explanation)

        matching_start = time.time()

        # Step 3: Local fingerprint store
        if fingerprint is not None and self.local_matcher is not None:
            local = self.local_matcher.match(
                fingerprint, self.local_matcher.similarity_threshold(thresholds, mode)
            )
            if local.cache_hit:
                # A stored sample and its reference entry name the same song
                local_candidates = dedupe_candidates(local.candidates)
                ranked = rank_candidates(local_candidates, active_threshold, self.max_results)
                self.local_matcher.record_sample(fingerprint, local)
                log.info(f"Local cache hit: {len(ranked)} match(es)")
                metrics = ScanMetrics(
                    segments_scanned=0,
                    results_before_filter=len(local_candidates),
                    results_after_filter=len(ranked),
                    confidence_scores=tuple(c.confidence for c in ranked),
                )
                return self._finish(
                    scan_id, ranked, metrics, True, thresholds, characteristics, mode,
                    deep_scan, start_time, fingerprint_ms, matching_start, (), errors, log,
                )

        # Step 4: External recognition over planned segments
        segments = self.segment_selector.select(audio, deep_scan)
        outcome = self.recognizer.recognize(audio_bytes, segments, active_threshold)

        # Step 5: Secondary platforms
        candidates: List[MatchCandidate] = outcome.candidates
        if self.aggregator is not None:
            candidates = self.aggregator.aggregate(candidates)

        # Step 6: Rank, then write back
        ranked = rank_candidates(candidates, active_threshold, self.max_results)
        recognized = [
            c for c in ranked
            if any(s.origin is Origin.EXTERNAL for s in c.sources)
        ]
        self.recognizer.persist(recognized, fingerprint)

        metrics = ScanMetrics(
            segments_scanned=len(segments),
            results_before_filter=outcome.deduplicated_count,
            results_after_filter=len(ranked),
            confidence_scores=tuple(c.confidence for c in ranked),
        )
        errors = errors + [
            f"{o.segment.label}: {o.error}" for o in outcome.segment_outcomes if o.error
        ]
        return self._finish(
            scan_id, ranked, metrics, False, thresholds, characteristics, mode,
            deep_scan, start_time, fingerprint_ms, matching_start,
            outcome.segment_outcomes, errors, log,
        )

    def scan_file(
        self, file_path: Path, deep_scan: bool = False, matching_mode: Any = MatchingMode.LOOSE
    ) -> ScanResult:
        """Read an audio file and scan its bytes."""
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"Audio file not found: {file_path}")
        return self.scan(file_path.read_bytes(), deep_scan=deep_scan, matching_mode=matching_mode)

    def _run_analyzers_parallel(
        self, audio: AudioSample, log: logging.LoggerAdapter
    ) -> Tuple[Optional[FingerprintRecord], Optional[BeatCharacteristics], float, List[str]]:
        """
        Run fingerprinting and characteristics analysis concurrently.

        Returns:
            (fingerprint or None, characteristics or None, fingerprint ms, errors)
        """
        futures = {
            name: self.executor.submit(self._run_analyzer, analyzer, audio)
            for name, analyzer in self.analyzers.items()
        }

        results: Dict[str, Any] = {}
        fingerprint_ms = 0.0
        errors: List[str] = []
        for name, future in futures.items():
            try:
                result, elapsed_ms = future.result()
                results[name] = result
                if name == 'fingerprint':
                    fingerprint_ms = elapsed_ms
                log.debug(f"{name} complete in {elapsed_ms:.0f}ms")
            except Exception as e:
                log.warning(f"{name} failed, continuing with defaults: {e}")
                errors.append(f"{name}: {e}")
                results[name] = None

        return results['fingerprint'], results['characteristics'], fingerprint_ms, errors

    def _run_analyzer(self, analyzer: Any, audio: AudioSample) -> Tuple[Any, float]:
        start_time = time.time()
        result = analyzer.analyze(audio)
        return result, (time.time() - start_time) * 1000

    def _finish(
        self,
        scan_id: str,
        ranked: List[MatchCandidate],
        metrics: ScanMetrics,
        from_cache: bool,
        thresholds: AdaptiveThresholds,
        characteristics: BeatCharacteristics,
        mode: MatchingMode,
        deep_scan: bool,
        start_time: float,
        fingerprint_ms: float,
        matching_start: float,
        segment_outcomes: Sequence[SegmentOutcome],
        errors: List[str],
        log: logging.LoggerAdapter,
    ) -> ScanResult:
        processing_time = time.time() - start_time

        result = ScanResult(
            matches=ranked,
            metrics=metrics,
            from_cache=from_cache,
            thresholds=thresholds,
            characteristics=characteristics,
            matching_mode=mode,
            processing_time=processing_time,
            message=None if ranked else NO_MATCHES_MESSAGE,
            scan_id=scan_id,
        )

        self._record_analytics(
            result, deep_scan, segment_outcomes, fingerprint_ms,
            (time.time() - matching_start) * 1000, errors, log,
        )
        log.info(f"Scan complete in {processing_time:.3f}s: {result.get_summary()}")
        return result

    def _record_analytics(
        self,
        result: ScanResult,
        deep_scan: bool,
        segment_outcomes: Sequence[SegmentOutcome],
        fingerprint_ms: float,
        matching_ms: float,
        errors: List[str],
        log: logging.LoggerAdapter,
    ) -> None:
        if self.analytics_sink is None:
            return
        try:
            analytics = build_scan_analytics(
                scan_id=result.scan_id,
                characteristics=result.characteristics,
                thresholds=result.thresholds,
                matching_mode=result.matching_mode.value,
                deep_scan=deep_scan,
                from_cache=result.from_cache,
                matches=result.matches,
                segment_outcomes=segment_outcomes,
                fingerprint_ms=fingerprint_ms,
                matching_ms=matching_ms,
                total_duration_ms=result.processing_time * 1000,
                errors=errors,
            )
            self.analytics_sink.record(analytics)
        except Exception as e:
            log.error(f"Failed to record scan analytics: {e}")

    def shutdown(self) -> None:
        """Shutdown thread pools gracefully."""
        self.logger.info("Shutting down scan engine")
        self.recognizer.shutdown()
        if self.aggregator is not None:
            self.aggregator.shutdown()
        self.executor.shutdown(wait=True)

    def __enter__(self) -> "BeatScanEngine":
        """Context manager support."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Cleanup on context exit."""
        self.shutdown()


def create_scan_engine(config: Dict[str, Any]) -> BeatScanEngine:
    """
    Factory function to create a fully configured scan engine.

    Args:
        config: Configuration dict (see get_default_config())

    Returns:
        BeatScanEngine: Configured engine instance
    """
    logger = logging.getLogger('engine')
    providers = config.get('providers', {})

    store = create_fingerprint_store(config.get('store', {}))

    local_config = config.get('local_cache', {})
    local_matcher = (
        create_local_matcher(store, local_config)
        if local_config.get('enabled', True) else None
    )

    recognizer = create_recognition_orchestrator(
        create_acrcloud_provider(providers.get('acrcloud', {})), store, config
    )

    search_providers = [
        p for p in (
            create_spotify_provider(providers.get('spotify', {})),
            create_youtube_provider(providers.get('youtube', {})),
        )
        if p is not None
    ]
    lookup_providers = [
        p for p in (create_itunes_provider(providers.get('itunes', {})),)
        if p is not None
    ]
    aggregator = create_aggregator(
        search_providers, lookup_providers, config.get('aggregation', {})
    )

    logger.info(
        f"Engine ready: recognition={'on' if recognizer.provider else 'off'}, "
        f"platforms={[p.platform.value for p in search_providers]}, "
        f"store={config.get('store', {}).get('backend', 'memory')}"
    )

    return BeatScanEngine(
        loader=create_audio_loader(config.get('audio', {})),
        fingerprinter=FingerprintExtractor(
            n_coefficients=config.get('fingerprint', {}).get('spectral_coefficients', 13)
        ),
        characteristics_analyzer=BeatCharacteristicsAnalyzer(),
        segment_selector=create_segment_selector(config.get('scan', {})),
        recognizer=recognizer,
        local_matcher=local_matcher,
        aggregator=aggregator,
        analytics_sink=create_analytics_sink(config.get('analytics', {})),
        max_results=config.get('ranking', {}).get('max_results', MAX_RESULTS),
        max_workers=config.get('performance', {}).get('max_workers', 4),
    )
