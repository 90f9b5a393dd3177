import os
import warnings

# Ignore warnings from sigcast.shared
warnings.filterwarnings("ignore", category=DeprecationWarning, module="sigcast.shared.*")

# Set test environment variables
os.environ.update({"SESSION_SWEEP_INTERVAL_SECONDS": "0"})

# Shared fixtures and fakes for every test module
from tests.fixtures.session_fixtures import *  # noqa: E402, F403
from tests.fixtures.transcoder_fixtures import *  # noqa: E402, F403
