"""
PulseFind Beat Identification Engine

Finds commercially released songs that contain a submitted beat by
combining local fingerprint matching with external audio recognition
and streaming-platform confirmation.
"""

__version__ = "1.0.0"
__author__ = "PulseFind Team"
