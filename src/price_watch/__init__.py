"""Price re-check pipeline for tracked third-party listings."""

__version__ = "0.1.0"
