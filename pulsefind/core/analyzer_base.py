"""
Analyzer base interface for the PulseFind scan engine.

The fingerprint extractor and the characteristics analyzer both consume an
AudioSample and return an immutable result; this module defines that
contract and the shared timing/error-wrapping template.
"""

import logging
import time
from abc import abstractmethod
from typing import Generic, Protocol, TypeVar

from pulsefind.core.models import AudioSample
from pulsefind.utils.errors import AnalysisError

T = TypeVar('T')


class Analyzer(Protocol[T]):
    """
    Structural protocol for analyzers.

    Anything with ``name``, ``version`` and ``analyze(audio) -> T`` can be
    plugged into the engine; inheriting BaseAnalyzer is optional.
    """

    @property
    def name(self) -> str:
        """Analyzer name (e.g., 'fingerprint', 'characteristics')."""
        ...

    @property
    def version(self) -> str:
        """Analyzer version for result tracking."""
        ...

    def analyze(self, audio: AudioSample) -> T:
        """
        Analyze audio sample and return typed result.

        Raises:
            AnalysisError: If analysis fails
        """
        ...


class BaseAnalyzer(Generic[T]):
    """
    Base class providing timing, logging and error wrapping.

    Template Method pattern: analyze() provides the template,
    subclasses implement _analyze_impl().
    """

    def __init__(self, name: str, version: str):
        self._name = name
        self._version = version
        self.logger = logging.getLogger(f"analyzer.{name}")

    @property
    def name(self) -> str:
        return self._name

    @property
    def version(self) -> str:
        return self._version

    def analyze(self, audio: AudioSample) -> T:
        """
        Run _analyze_impl() with timing and error handling.

        Args:
            audio: AudioSample to analyze

        Returns:
            T: Analysis result

        Raises:
            AnalysisError: If analysis fails for any reason
        """
        start_time = time.time()

        try:
            self.logger.debug(
                f"Starting analysis: {audio.num_samples} samples "
                f"@ {audio.sample_rate}Hz"
            )

            result = self._analyze_impl(audio)

            elapsed = time.time() - start_time
            self.logger.debug(f"Analysis complete in {elapsed:.3f}s")

            return result

        except AnalysisError:
            raise

        except Exception as e:
            self.logger.error(f"Analysis failed: {e}")
            raise AnalysisError(
                f"{self.name} analysis failed: {e}",
                analyzer_name=self.name,
                original_error=e
            ) from e

    @abstractmethod
    def _analyze_impl(self, audio: AudioSample) -> T:
        """Subclasses implement actual analysis logic."""
        raise NotImplementedError
