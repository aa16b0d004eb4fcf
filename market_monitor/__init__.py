"""Market monitor: threshold and release alerts with tiered multi-channel delivery."""

__version__ = "0.1.0"
