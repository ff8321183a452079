"""
Adaptive confidence thresholds.

Per-scan strict/loose cutoffs computed from beat characteristics using a
genre delta table followed by an ordered adjustment rule table.
"""

from typing import Callable, Dict, List, NamedTuple, Optional, Tuple

from pulsefind.core.models import AdaptiveThresholds, BeatCharacteristics, Genre

BASE_STRICT: int = 85
BASE_LOOSE: int = 40
STRICT_BOUNDS: Tuple[int, int] = (75, 95)
LOOSE_BOUNDS: Tuple[int, int] = (30, 60)

# genre -> (strict delta, loose delta)
GENRE_DELTAS: Dict[Genre, Tuple[int, int]] = {
    Genre.TRAP: (2, 5),
    Genre.DRILL: (3, 10),
    Genre.MELODIC: (-3, -5),
    Genre.BOOM_BAP: (1, 2),
    Genre.UNKNOWN: (0, 0),
}


class ThresholdRule(NamedTuple):
    """One adjustment: predicate, deltas and the explanation it contributes."""

    applies: Callable[[BeatCharacteristics], bool]
    strict_delta: int
    loose_delta: int
    describe: Callable[[BeatCharacteristics], str]


def _unusual_tempo(c: BeatCharacteristics) -> bool:
    return c.tempo_bpm > 160 or c.tempo_bpm < 80


ADJUSTMENT_RULES: List[ThresholdRule] = [
    ThresholdRule(
        lambda c: c.spectral_complexity > 0.7, -3, -5,
        lambda c: "complex layering detected (looser thresholds)",
    ),
    ThresholdRule(
        lambda c: c.spectral_complexity < 0.3, 2, 3,
        lambda c: "simple pattern detected (stricter thresholds)",
    ),
    ThresholdRule(
        lambda c: c.energy > 0.8, -2, -3,
        lambda c: "high energy with potential distortion",
    ),
    ThresholdRule(
        _unusual_tempo, -2, -2,
        lambda c: f"unusual tempo ({int(round(c.tempo_bpm))} BPM)",
    ),
]


def _clamp(value: int, bounds: Tuple[int, int]) -> int:
    low, high = bounds
    return max(low, min(high, value))


def _genre_label(genre: Genre) -> Optional[str]:
    if genre is Genre.UNKNOWN:
        return None
    name = genre.value
    return f"{name[0].upper()}{name[1:]} beat detected"


def calculate_adaptive_thresholds(
    characteristics: Optional[BeatCharacteristics] = None,
) -> AdaptiveThresholds:
    """
    Compute strict/loose cutoffs for a beat.

    Args:
        characteristics: Analyzed beat; defaults are used when None

    Returns:
        AdaptiveThresholds with strict in [75, 95], loose in [30, 60]
        and an explanation listing every rule that fired
    """
    c = characteristics or BeatCharacteristics.default()

    strict_delta, loose_delta = GENRE_DELTAS[c.genre]
    strict = BASE_STRICT + strict_delta
    loose = BASE_LOOSE + loose_delta

    parts: List[str] = []
    label = _genre_label(c.genre)
    if label:
        parts.append(label)

    for rule in ADJUSTMENT_RULES:
        if rule.applies(c):
            strict += rule.strict_delta
            loose += rule.loose_delta
            parts.append(rule.describe(c))

    strict = _clamp(strict, STRICT_BOUNDS)
    loose = _clamp(loose, LOOSE_BOUNDS)

    if parts:
        explanation = (
            f"Adaptive thresholds: {', '.join(parts)}. "
            f"Strict: {strict}%, Loose: {loose}%"
        )
    else:
        explanation = f"Standard thresholds: Strict {strict}%, Loose {loose}%"

    return AdaptiveThresholds(strict=strict, loose=loose, explanation=explanation)


def default_thresholds() -> AdaptiveThresholds:
    """Thresholds used when characteristics analysis fails."""
    return calculate_adaptive_thresholds(BeatCharacteristics.default())
