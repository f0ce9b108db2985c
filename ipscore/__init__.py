"""Core modules for fingerprint-based indoor positioning.

This package contains reusable core components:
- fingerprinting: calibration cache, k-d tree index and KNN position estimation
"""

__version__ = "0.1.0"
