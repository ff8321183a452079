"""
Beat characteristics analyzer.

Estimates tempo, energy and spectral complexity of a beat and derives a
coarse genre hint from an ordered rule table.
"""

from typing import Callable, List, Tuple

import librosa
import numpy as np

from pulsefind.core.analyzer_base import BaseAnalyzer
from pulsefind.core.models import AudioSample, BeatCharacteristics, Genre

ONSET_FRAME: int = 2048
ONSET_HOP: int = 512
MIN_BPM: int = 60
MAX_BPM: int = 180
DEFAULT_TEMPO: int = 120

COMPLEXITY_WINDOW: int = 2048
COMPLEXITY_HOP: int = 1024
COMPLEXITY_BANDS: int = 32
COMPLEXITY_SCALE: float = 100.0

ENERGY_SCALE: float = 10.0

GenreRule = Tuple[Genre, Callable[[float, float, float], bool]]

# Ordered (genre, predicate(tempo, energy, complexity)); first match wins
GENRE_RULES: List[GenreRule] = [
    (Genre.TRAP, lambda t, e, c: 130 <= t <= 150 and e > 0.5),
    (Genre.DRILL, lambda t, e, c: 140 <= t <= 155 and e > 0.6 and c > 0.6),
    (Genre.MELODIC, lambda t, e, c: c > 0.7),
    (Genre.BOOM_BAP, lambda t, e, c: 85 <= t <= 100 and 0.4 < e < 0.7),
]


class BeatCharacteristicsAnalyzer(BaseAnalyzer[BeatCharacteristics]):
    """
    Tempo / energy / complexity analysis of a submitted beat.

    Analyzes:
    - Tempo via autocorrelation of an RMS onset envelope
    - Energy from global RMS
    - Spectral complexity from band-energy variance
    - Genre hint from GENRE_RULES
    """

    def __init__(self, tempo_range: Tuple[int, int] = (MIN_BPM, MAX_BPM)):
        super().__init__("characteristics", "1.0.0")
        self.tempo_range = tempo_range

    def _analyze_impl(self, audio: AudioSample) -> BeatCharacteristics:
        samples = np.asarray(audio.samples, dtype=np.float64)

        tempo = estimate_tempo(samples, audio.sample_rate, self.tempo_range)
        energy = compute_energy(samples)
        complexity = compute_spectral_complexity(samples)
        genre = detect_genre(tempo, energy, complexity)

        self.logger.debug(
            f"Characteristics: {tempo} BPM, energy={energy:.2f}, "
            f"complexity={complexity:.2f}, genre={genre.value}"
        )

        return BeatCharacteristics(
            tempo_bpm=tempo,
            energy=energy,
            spectral_complexity=complexity,
            genre=genre,
        )


def onset_envelope(samples: np.ndarray) -> np.ndarray:
    """Per-frame RMS energy (sqrt of summed squares)."""
    if samples.size < ONSET_FRAME:
        return np.zeros(0)
    frames = librosa.util.frame(
        np.ascontiguousarray(samples), frame_length=ONSET_FRAME, hop_length=ONSET_HOP
    )
    return np.sqrt(np.sum(frames ** 2, axis=0))


def estimate_tempo(
    samples: np.ndarray,
    sample_rate: int,
    tempo_range: Tuple[int, int] = (MIN_BPM, MAX_BPM),
) -> int:
    """
    Estimate tempo (BPM) by autocorrelating the onset envelope.

    Lags cover tempo_range and never exceed half the envelope length;
    when no lag fits, DEFAULT_TEMPO is returned.
    """
    min_bpm, max_bpm = tempo_range
    envelope = onset_envelope(samples)

    min_lag = int((60 / max_bpm) * sample_rate / ONSET_HOP)
    max_lag = int((60 / min_bpm) * sample_rate / ONSET_HOP)
    max_lag = min(max_lag, envelope.size // 2)

    if envelope.size == 0 or min_lag < 1 or max_lag < min_lag:
        return DEFAULT_TEMPO

    best_lag = min_lag
    best_correlation = 0.0
    for lag in range(min_lag, max_lag + 1):
        correlation = float(np.dot(envelope[:-lag], envelope[lag:]))
        if correlation > best_correlation:
            best_correlation = correlation
            best_lag = lag

    bpm = (60 * sample_rate) / (best_lag * ONSET_HOP)
    return int(round(max(min_bpm, min(max_bpm, bpm))))


def compute_energy(samples: np.ndarray) -> float:
    """Global RMS scaled into [0, 1]."""
    if samples.size == 0:
        return 0.0
    rms = float(np.sqrt(np.mean(samples ** 2)))
    return max(0.0, min(1.0, rms * ENERGY_SCALE))


def compute_spectral_complexity(samples: np.ndarray) -> float:
    """Mean variance of 32 band energies per window, scaled into [0, 1]."""
    if samples.size < COMPLEXITY_WINDOW:
        return 0.0

    frames = librosa.util.frame(
        np.ascontiguousarray(samples),
        frame_length=COMPLEXITY_WINDOW,
        hop_length=COMPLEXITY_HOP,
    ).T
    bands = frames.reshape(frames.shape[0], COMPLEXITY_BANDS, -1)
    band_energies = np.sum(bands ** 2, axis=2)

    avg_variance = float(np.mean(np.var(band_energies, axis=1)))
    return max(0.0, min(1.0, avg_variance * COMPLEXITY_SCALE))


def detect_genre(tempo: float, energy: float, complexity: float) -> Genre:
    """First GENRE_RULES entry whose predicate holds, else UNKNOWN."""
    for genre, predicate in GENRE_RULES:
        if predicate(tempo, energy, complexity):
            return genre
    return Genre.UNKNOWN
