"""
Segment selection for external recognition.

Plans which byte ranges of the submitted audio are sent to the recognition
service. The primary strategy looks for energy peaks with distinctive
band structure; when the audio is too short to analyze, fixed offsets are
used instead. Either way a normal scan plans exactly 4 segments and a deep
scan exactly 8.
"""

import logging
from typing import Any, Dict, List, NamedTuple, Optional, Sequence

import librosa
import numpy as np

from pulsefind.core.models import AudioSample, AudioSegment, Priority

NORMAL_SEGMENTS: int = 4
DEEP_SEGMENTS: int = 8
SEGMENT_BYTES: int = 24 * 1024
PEAK_BYTES: int = 60 * 1024
COVERAGE_BYTES: int = 40 * 1024

UNIQUENESS_BANDS: int = 32
MIN_ANALYSIS_WINDOWS: int = 3

FULL_LABEL = "FULL AUDIO (comprehensive)"

logger = logging.getLogger(__name__)


class CoveragePosition(NamedTuple):
    """Fixed relative position used to fill the plan after peaks."""

    fraction: float
    label: str
    priority: Priority
    uniqueness: float


NORMAL_COVERAGE: List[CoveragePosition] = [
    CoveragePosition(0.40, "MID SECTION (40%)", Priority.MEDIUM, 0.7),
    CoveragePosition(0.75, "LATE SECTION (75%)", Priority.MEDIUM, 0.6),
    CoveragePosition(0.15, "COVERAGE 15%", Priority.LOW, 0.5),
    CoveragePosition(0.90, "COVERAGE 90%", Priority.LOW, 0.5),
]

DEEP_COVERAGE: List[CoveragePosition] = [
    CoveragePosition(0.15, "COVERAGE 15%", Priority.MEDIUM, 0.6),
    CoveragePosition(0.35, "COVERAGE 35%", Priority.MEDIUM, 0.6),
    CoveragePosition(0.55, "COVERAGE 55%", Priority.LOW, 0.6),
    CoveragePosition(0.75, "COVERAGE 75%", Priority.LOW, 0.6),
    CoveragePosition(0.90, "COVERAGE 90%", Priority.LOW, 0.6),
    CoveragePosition(0.25, "COVERAGE 25%", Priority.LOW, 0.5),
    CoveragePosition(0.65, "COVERAGE 65%", Priority.LOW, 0.5),
]

NORMAL_FALLBACK_OFFSETS: Sequence[float] = (0.0, 0.30, 0.60, 0.85)
DEEP_FALLBACK_OFFSETS: Sequence[float] = (0.0, 0.10, 0.20, 0.35, 0.50, 0.65, 0.80, 0.90)


class EnergyProfile(NamedTuple):
    """Windowed energy analysis of a sample."""

    energies: np.ndarray
    uniqueness: np.ndarray
    hop: int
    peaks: List[int]  # window indices of local energy maxima

    @property
    def avg_energy(self) -> float:
        return float(np.mean(self.energies))


class SegmentSelector:
    """
    Plans recognition segments for a sample.

    Stateless; safe to share across concurrent scans.
    """

    def __init__(
        self,
        normal_count: int = NORMAL_SEGMENTS,
        deep_count: int = DEEP_SEGMENTS,
        segment_bytes: int = SEGMENT_BYTES,
    ):
        self.normal_count = normal_count
        self.deep_count = deep_count
        self.segment_bytes = segment_bytes

    def select(self, audio: AudioSample, deep_scan: bool = False) -> List[AudioSegment]:
        """
        Plan segments for a scan.

        Args:
            audio: Decoded sample (byte_length addresses the raw upload)
            deep_scan: Plan the deep-scan count instead of the normal one

        Returns:
            List[AudioSegment]: Full-length marker first, then the rest
                ordered by priority and energy
        """
        target = self.deep_count if deep_scan else self.normal_count

        try:
            profile = analyze_energy_profile(audio)
        except Exception as e:
            logger.warning(f"Segment analysis failed, using fixed offsets: {e}")
            profile = None

        if profile is None:
            segments = self.fallback_segments(audio.byte_length, deep_scan)
        else:
            segments = self._plan_from_profile(audio, profile, target, deep_scan)

        for seg in segments:
            logger.debug(
                f"  {seg.label}: offset={seg.offset}, energy={seg.estimated_energy:.2f}, "
                f"uniqueness={seg.uniqueness:.2f}, priority={seg.priority.value}"
            )
        return segments

    def _plan_from_profile(
        self,
        audio: AudioSample,
        profile: EnergyProfile,
        target: int,
        deep_scan: bool,
    ) -> List[AudioSegment]:
        byte_length = audio.byte_length
        full = AudioSegment(
            offset=0,
            length_bytes=byte_length,
            label=FULL_LABEL,
            estimated_energy=profile.avg_energy,
            uniqueness=1.0,
            priority=Priority.HIGH,
        )

        planned: List[AudioSegment] = []
        used_offsets = {0}
        max_uniqueness = float(np.max(profile.uniqueness)) or 1.0

        # Peaks ranked by uniqueness; sorted() is stable for ties
        ranked_peaks = sorted(
            profile.peaks, key=lambda i: profile.uniqueness[i], reverse=True
        )
        peak_count = 3 if deep_scan else 1
        for rank, window in enumerate(ranked_peaks[:peak_count], start=1):
            offset = _byte_offset(window * profile.hop, audio.num_samples, byte_length)
            if offset in used_offsets:
                continue
            used_offsets.add(offset)
            label = f"PEAK {rank} (high energy)" if deep_scan else "PEAK DROP (highest energy)"
            planned.append(AudioSegment(
                offset=offset,
                length_bytes=_clip(offset, PEAK_BYTES, byte_length),
                label=label,
                estimated_energy=float(profile.energies[window]),
                uniqueness=float(profile.uniqueness[window]) / max_uniqueness,
                priority=Priority.HIGH,
            ))

        coverage = DEEP_COVERAGE if deep_scan else NORMAL_COVERAGE
        for position in coverage:
            if len(planned) >= target - 1:
                break
            offset = int(byte_length * position.fraction)
            if offset in used_offsets:
                continue
            used_offsets.add(offset)
            planned.append(AudioSegment(
                offset=offset,
                length_bytes=_clip(offset, COVERAGE_BYTES, byte_length),
                label=position.label,
                estimated_energy=profile.avg_energy * (1 - position.fraction * 0.3),
                uniqueness=position.uniqueness,
                priority=position.priority,
            ))

        planned = planned[:target - 1]
        if len(planned) < target - 1:
            fill = self.fallback_segments(byte_length, deep_scan)[1:]
            planned.extend(fill[:target - 1 - len(planned)])

        planned.sort(key=lambda s: (s.priority.rank, -s.estimated_energy))
        return [full] + planned

    def fallback_segments(self, byte_length: int, deep_scan: bool = False) -> List[AudioSegment]:
        """Fixed-offset plan used when the audio cannot be analyzed."""
        fractions = DEEP_FALLBACK_OFFSETS if deep_scan else NORMAL_FALLBACK_OFFSETS
        target = self.deep_count if deep_scan else self.normal_count
        fractions = _stretch(fractions, target)

        segments = [AudioSegment(
            offset=0,
            length_bytes=byte_length,
            label=FULL_LABEL,
            estimated_energy=0.0,
            uniqueness=1.0,
            priority=Priority.HIGH,
        )]
        for fraction in fractions[1:]:
            offset = int(byte_length * fraction)
            segments.append(AudioSegment(
                offset=offset,
                length_bytes=_clip(offset, self.segment_bytes, byte_length),
                label=f"SEGMENT {int(round(fraction * 100))}%",
                estimated_energy=0.0,
                uniqueness=0.0,
                priority=Priority.MEDIUM,
            ))
        return segments


def analyze_energy_profile(audio: AudioSample) -> Optional[EnergyProfile]:
    """
    RMS energy and band-variance uniqueness over 1 s windows (0.5 s hop).

    Returns None when fewer than MIN_ANALYSIS_WINDOWS windows fit.
    """
    window = int(audio.sample_rate)
    hop = window // 2
    samples = np.ascontiguousarray(audio.samples, dtype=np.float64)

    if window <= 0 or hop <= 0 or samples.size < window:
        return None

    frames = librosa.util.frame(samples, frame_length=window, hop_length=hop).T
    if frames.shape[0] < MIN_ANALYSIS_WINDOWS:
        return None

    energies = np.sqrt(np.mean(frames ** 2, axis=1))

    usable = (window // UNIQUENESS_BANDS) * UNIQUENESS_BANDS
    bands = frames[:, :usable].reshape(frames.shape[0], UNIQUENESS_BANDS, -1)
    uniqueness = np.var(np.sum(bands ** 2, axis=2), axis=1)

    peaks = [
        i for i in range(1, energies.size - 1)
        if energies[i] > energies[i - 1] and energies[i] > energies[i + 1]
    ]

    logger.debug(
        f"Energy profile: min={energies.min():.3f}, max={energies.max():.3f}, "
        f"avg={energies.mean():.3f}, {len(peaks)} peaks"
    )
    return EnergyProfile(energies=energies, uniqueness=uniqueness, hop=hop, peaks=peaks)


def _byte_offset(sample_index: int, num_samples: int, byte_length: int) -> int:
    if num_samples <= 0:
        return 0
    return min(byte_length - 1, int(sample_index / num_samples * byte_length))


def _clip(offset: int, length: int, byte_length: int) -> int:
    return max(0, min(length, byte_length - offset))


def _stretch(fractions: Sequence[float], target: int) -> List[float]:
    """Resize an offset table to target entries, keeping 0.0 first."""
    if len(fractions) >= target:
        return list(fractions[:target])
    extra = [i / target for i in range(1, target)]
    merged = list(fractions) + [f for f in extra if f not in fractions]
    return merged[:target]


def create_segment_selector(config: Optional[Dict[str, Any]] = None) -> SegmentSelector:
    """
    Factory function to create SegmentSelector from the ``scan`` config section.
    """
    if config is None:
        config = {}

    return SegmentSelector(
        normal_count=config.get('normal_segments', NORMAL_SEGMENTS),
        deep_count=config.get('deep_segments', DEEP_SEGMENTS),
        segment_bytes=config.get('segment_bytes', SEGMENT_BYTES),
    )
