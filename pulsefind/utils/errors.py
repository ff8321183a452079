"""
Custom exceptions for the PulseFind beat identification engine.

This module defines a hierarchy of exceptions for handling various
error conditions throughout the scan pipeline.
"""

from typing import Optional, Any


class PulseFindError(Exception):
    """Base exception for all PulseFind errors."""

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class AudioLoadError(PulseFindError):
    """Raised when submitted audio cannot be decoded."""

    def __init__(self, message: str, byte_length: Optional[int] = None):
        super().__init__(message, details={"byte_length": byte_length})
        self.byte_length = byte_length


class NoAudioError(AudioLoadError):
    """Raised when a scan request carries no audio at all."""

    def __init__(self, message: str = "No audio file provided"):
        super().__init__(message, byte_length=0)


class UnsupportedFormatError(AudioLoadError):
    """Raised when audio format is not supported."""

    def __init__(self, message: str, format: Optional[str] = None):
        super().__init__(message)
        self.format = format
        self.details = {"format": format}


class FileTooLargeError(AudioLoadError):
    """Raised when submitted audio exceeds the size limit."""

    def __init__(
        self,
        message: str,
        file_size: Optional[int] = None,
        max_size: Optional[int] = None,
    ):
        super().__init__(message, byte_length=file_size)
        self.file_size = file_size
        self.max_size = max_size
        self.details = {"file_size": file_size, "max_size": max_size}


class AnalysisError(PulseFindError):
    """Raised when audio analysis fails."""

    def __init__(
        self,
        message: str,
        analyzer_name: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.analyzer_name = analyzer_name
        self.original_error = original_error
        self.details = {
            "analyzer_name": analyzer_name,
            "original_error": str(original_error) if original_error else None,
        }


class FeatureExtractionError(AnalysisError):
    """Raised when fingerprint feature extraction fails."""

    def __init__(self, message: str, feature_name: Optional[str] = None):
        super().__init__(message, analyzer_name="fingerprint")
        self.feature_name = feature_name
        self.details["feature_name"] = feature_name


class ConfigurationError(PulseFindError):
    """Raised when configuration is invalid or missing."""

    def __init__(self, message: str, config_key: Optional[str] = None):
        super().__init__(message)
        self.config_key = config_key
        self.details = {"config_key": config_key}


class StoreError(PulseFindError):
    """Raised when fingerprint store operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        key: Optional[str] = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.key = key
        self.details = {"operation": operation, "key": key}


class ProviderError(PulseFindError):
    """Raised when an external recognition or platform service call fails."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status: Optional[int] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status = status
        self.details = {"provider": provider, "status": status}


class CredentialsMissingError(ProviderError):
    """Raised when a collaborator is used without configured credentials."""

    def __init__(self, provider: str, env_vars: str):
        super().__init__(
            f"No credentials found for {provider}. Set {env_vars}.",
            provider=provider,
        )
        self.env_vars = env_vars
