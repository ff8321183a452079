"""
Utility modules for configuration, logging, and error handling.
"""

from pulsefind.utils.errors import (
    PulseFindError,
    AudioLoadError,
    NoAudioError,
    UnsupportedFormatError,
    FileTooLargeError,
    AnalysisError,
    FeatureExtractionError,
    ConfigurationError,
    StoreError,
    ProviderError,
    CredentialsMissingError,
)
from pulsefind.utils.logging import (
    get_logger,
    setup_logging,
    setup_logging_from_config,
    create_logger_with_context,
    JSONFormatter,
)
from pulsefind.utils.config import ConfigManager, load_config, get_default_config

__all__ = [
    "PulseFindError",
    "AudioLoadError",
    "NoAudioError",
    "UnsupportedFormatError",
    "FileTooLargeError",
    "AnalysisError",
    "FeatureExtractionError",
    "ConfigurationError",
    "StoreError",
    "ProviderError",
    "CredentialsMissingError",
    "get_logger",
    "setup_logging",
    "setup_logging_from_config",
    "create_logger_with_context",
    "JSONFormatter",
    "ConfigManager",
    "load_config",
    "get_default_config",
]
