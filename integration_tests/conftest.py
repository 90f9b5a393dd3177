"""Pytest configuration for integration tests.

Integration tests run the real application against a real ffmpeg binary and
are skipped when none is installed.
"""

import os
import warnings

# Ignore warnings from sigcast.shared
warnings.filterwarnings("ignore", category=DeprecationWarning, module="sigcast.shared.*")

os.environ.update({"SESSION_SWEEP_INTERVAL_SECONDS": "0"})
