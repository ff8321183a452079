"""
Audio loader for the PulseFind scan engine.

Decodes submitted audio bytes into a mono AudioSample. Container formats
are read with soundfile from an in-memory buffer; headerless uploads are
treated as raw little-endian 16-bit PCM.
"""

import hashlib
import io
import logging
from typing import Any, Dict, Optional, Tuple

import librosa
import numpy as np
import soundfile as sf

from pulsefind.core.models import AudioSample
from pulsefind.utils.errors import (
    AudioLoadError,
    FileTooLargeError,
    NoAudioError,
    UnsupportedFormatError,
)

TARGET_SAMPLE_RATE: int = 44100  # Hz
MAX_BYTES: int = 104857600  # 100 MB
PCM16_SCALE: float = 32768.0

logger = logging.getLogger(__name__)


class AudioLoader:
    """
    Loads audio bytes and creates AudioSample instances.

    Thread-safe and stateless - can be used concurrently.
    """

    def __init__(
        self,
        target_sr: int = TARGET_SAMPLE_RATE,
        max_bytes: int = MAX_BYTES,
        allow_raw_pcm: bool = True
    ):
        """
        Initialize loader with configuration.

        Args:
            target_sr: Sample rate every decoded sample is resampled to
            max_bytes: Maximum accepted upload size in bytes
            allow_raw_pcm: Treat undecodable input as raw 16-bit PCM
        """
        self.target_sr = target_sr
        self.max_bytes = max_bytes
        self.allow_raw_pcm = allow_raw_pcm

    def load(self, data: Optional[bytes]) -> AudioSample:
        """
        Decode audio bytes into an AudioSample.

        Args:
            data: Raw bytes as submitted by the caller

        Returns:
            AudioSample: Mono float32 sample at the target rate

        Raises:
            NoAudioError: No bytes were submitted
            FileTooLargeError: Upload exceeds max_bytes
            UnsupportedFormatError: Bytes are neither a readable container
                nor usable as raw PCM
            AudioLoadError: Decoded audio is empty
        """
        self._validate_bytes(data)

        audio_data, sample_rate, source_format = self._decode(data)
        audio_data = self._validate_audio_data(audio_data)

        return AudioSample(
            samples=audio_data,
            sample_rate=sample_rate,
            byte_length=len(data),
            content_hash=hashlib.sha256(data).hexdigest(),
            source_format=source_format,
        )

    def _validate_bytes(self, data: Optional[bytes]) -> None:
        if not data:
            raise NoAudioError()

        if len(data) > self.max_bytes:
            raise FileTooLargeError(
                f"Audio too large: {len(data) / 1024 / 1024:.1f} MB. "
                f"Maximum: {self.max_bytes / 1024 / 1024:.1f} MB",
                file_size=len(data),
                max_size=self.max_bytes
            )

    def _decode(self, data: bytes) -> Tuple[np.ndarray, int, str]:
        """Decode a container, falling back to raw PCM."""
        try:
            audio_data, sample_rate, source_format = self._decode_container(data)
        except (RuntimeError, ValueError, TypeError) as e:
            if not self.allow_raw_pcm:
                raise UnsupportedFormatError(
                    f"Unreadable audio format: {e}", format="unknown"
                ) from e
            logger.debug(f"No container detected, reading as raw PCM: {e}")
            return self._decode_raw_pcm(data), self.target_sr, "RAW"

        if sample_rate != self.target_sr:
            audio_data = librosa.resample(
                audio_data, orig_sr=sample_rate, target_sr=self.target_sr
            )
        return audio_data.astype(np.float32), self.target_sr, source_format

    def _decode_container(self, data: bytes) -> Tuple[np.ndarray, int, str]:
        with sf.SoundFile(io.BytesIO(data)) as f:
            source_format = f.format
            logger.info(
                f"Decoding audio: {f.samplerate} Hz, "
                f"{f.channels} ch, {f.subtype}"
            )
            audio_data = f.read(dtype='float32', always_2d=True)
            sample_rate = f.samplerate

        # soundfile yields (frames, channels); librosa expects (channels, frames)
        audio_data = librosa.to_mono(audio_data.T)
        return audio_data, sample_rate, source_format

    def _decode_raw_pcm(self, data: bytes) -> np.ndarray:
        usable = len(data) - (len(data) % 2)
        if usable < 2:
            raise UnsupportedFormatError(
                "Audio shorter than one 16-bit sample", format="RAW"
            )
        pcm = np.frombuffer(data[:usable], dtype='<i2')
        return (pcm.astype(np.float32) / PCM16_SCALE).astype(np.float32)

    def _validate_audio_data(self, audio_data: np.ndarray) -> np.ndarray:
        """Validate decoded samples and normalize clipping."""
        if audio_data.size == 0:
            raise AudioLoadError("Decoded audio is empty", byte_length=0)

        rms = float(np.sqrt(np.mean(audio_data ** 2)))
        if rms < 1e-6:
            logger.warning("Audio appears to be silent")

        max_abs = float(np.max(np.abs(audio_data)))
        if max_abs > 1.0:
            logger.warning(f"Audio contains clipping (max: {max_abs:.2f}), normalizing")
            audio_data = audio_data / max_abs

        return np.ascontiguousarray(audio_data, dtype=np.float32)


def create_audio_loader(config: Optional[Dict[str, Any]] = None) -> AudioLoader:
    """
    Factory function to create AudioLoader with configuration.

    Args:
        config: Optional ``audio`` configuration section

    Returns:
        AudioLoader: Configured loader instance
    """
    if config is None:
        config = {}

    return AudioLoader(
        target_sr=config.get('target_sample_rate', TARGET_SAMPLE_RATE),
        max_bytes=config.get('max_bytes', MAX_BYTES),
        allow_raw_pcm=config.get('allow_raw_pcm', True)
    )
