"""
Audio fingerprint extraction and comparison.

Three deterministic views of the same sample are produced:

- a binary fingerprint of band-energy deltas (one 32-bit code per window),
  compared with Hamming similarity;
- a quick hash of coarse RMS levels at 100 evenly spaced points;
- log mel-band energies per short window, compared with cosine similarity
  of their time averages.
"""

from typing import Sequence, Tuple

import librosa
import numpy as np

from pulsefind.core.analyzer_base import BaseAnalyzer
from pulsefind.core.models import AudioSample, FingerprintRecord
from pulsefind.utils.errors import FeatureExtractionError

BINARY_WINDOW: int = 4096
BINARY_HOP: int = 2048
BINARY_BANDS: int = 32

QUICK_HASH_POINTS: int = 100

SPECTRAL_WINDOW: int = 2048
SPECTRAL_HOP: int = 512
SPECTRAL_COEFFICIENTS: int = 13

LOG_FLOOR: float = 1e-10
HEX_CHARS_PER_CODE: int = BINARY_BANDS // 4

_BIT_WEIGHTS = np.left_shift(np.uint64(1), np.arange(BINARY_BANDS, dtype=np.uint64))


class FingerprintExtractor(BaseAnalyzer[FingerprintRecord]):
    """
    Derives a FingerprintRecord from an AudioSample.

    Pure function of the sample data: the same bytes always yield
    byte-identical fingerprints and quick hashes.
    """

    def __init__(self, n_coefficients: int = SPECTRAL_COEFFICIENTS):
        super().__init__("fingerprint", "1.0.0")
        self.n_coefficients = n_coefficients

    def _analyze_impl(self, audio: AudioSample) -> FingerprintRecord:
        samples = np.asarray(audio.samples, dtype=np.float64)

        if samples.size == 0:
            raise FeatureExtractionError("Cannot fingerprint empty audio", "samples")

        binary = compute_binary_fingerprint(samples)
        quick = compute_quick_hash(samples)
        spectral = compute_spectral_features(
            samples, audio.sample_rate, self.n_coefficients
        )

        self.logger.debug(
            f"Fingerprint: {len(binary) // HEX_CHARS_PER_CODE} codes, "
            f"{len(spectral)} spectral frames"
        )

        return FingerprintRecord(
            binary_fingerprint=binary,
            quick_hash=quick,
            spectral_features=spectral,
            duration_ms=int(audio.duration * 1000),
        )


def compute_binary_fingerprint(samples: np.ndarray) -> str:
    """
    Hex string of 32-bit band-energy delta codes.

    Each 4096-sample window is split into 32 equal bands. For every window
    after the first, bit b is set when band b's log energy rose compared
    with the previous window.
    """
    samples = np.ascontiguousarray(samples, dtype=np.float64)
    if samples.size < BINARY_WINDOW * 2:
        return ""

    frames = librosa.util.frame(
        samples, frame_length=BINARY_WINDOW, hop_length=BINARY_HOP
    ).T
    bands = frames.reshape(frames.shape[0], BINARY_BANDS, -1)
    energies = np.log(np.sum(bands ** 2, axis=2) + LOG_FLOOR)

    rising = energies[1:] > energies[:-1]
    codes = (rising.astype(np.uint64) * _BIT_WEIGHTS).sum(axis=1)

    return "".join(f"{int(code):08x}" for code in codes)


def compute_quick_hash(samples: np.ndarray) -> str:
    """Dash-joined floor(rms * 100) at 100 evenly spaced points."""
    samples = np.asarray(samples, dtype=np.float64)
    step = max(1, samples.size // QUICK_HASH_POINTS)

    levels = []
    for start in range(0, samples.size, step):
        window = samples[start:start + step]
        rms = np.sqrt(np.mean(window ** 2))
        levels.append(str(int(np.floor(rms * 100))))

    return "-".join(levels)


def compute_spectral_features(
    samples: np.ndarray,
    sample_rate: int,
    n_coefficients: int = SPECTRAL_COEFFICIENTS,
) -> Tuple[Tuple[float, ...], ...]:
    """Log mel-band energies, one tuple of n_coefficients per window."""
    samples = np.asarray(samples, dtype=np.float32)
    if samples.size < SPECTRAL_WINDOW:
        return ()

    try:
        mel = librosa.feature.melspectrogram(
            y=samples,
            sr=sample_rate,
            n_fft=SPECTRAL_WINDOW,
            hop_length=SPECTRAL_HOP,
            n_mels=n_coefficients,
            center=False,
        )
    except librosa.util.exceptions.ParameterError as e:
        raise FeatureExtractionError(
            f"Spectral feature extraction failed: {e}", "spectral_features"
        ) from e

    log_mel = np.log(mel.astype(np.float64) + LOG_FLOOR)
    return tuple(tuple(float(v) for v in frame) for frame in log_mel.T)


def _hex_to_codes(fingerprint: str) -> np.ndarray:
    return np.frombuffer(bytes.fromhex(fingerprint), dtype='>u4')


def hamming_similarity(a: str, b: str) -> float:
    """
    Bitwise similarity of two hex fingerprints over their shared length.

    Returns:
        1 - differing_bits / total_bits, or 0.0 when nothing is shared
    """
    shared = min(len(a), len(b))
    shared -= shared % HEX_CHARS_PER_CODE
    if shared == 0:
        return 0.0

    diff = _hex_to_codes(a[:shared]) ^ _hex_to_codes(b[:shared])
    differing = int(np.unpackbits(diff.view(np.uint8)).sum())
    total = shared * 4

    return 1.0 - differing / total


def spectral_similarity(
    a: Sequence[Sequence[float]], b: Sequence[Sequence[float]]
) -> float:
    """Cosine similarity of time-averaged spectral coefficient vectors."""
    if len(a) == 0 or len(b) == 0:
        return 0.0

    avg_a = np.mean(np.asarray(a, dtype=np.float64), axis=0)
    avg_b = np.mean(np.asarray(b, dtype=np.float64), axis=0)
    if avg_a.shape != avg_b.shape:
        return 0.0

    norm_a = np.linalg.norm(avg_a)
    norm_b = np.linalg.norm(avg_b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(avg_a, avg_b) / (norm_a * norm_b))
