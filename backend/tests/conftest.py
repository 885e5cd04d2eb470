"""Root conftest: shared test configuration."""

import os

# Keep tests independent of any developer .env
os.environ.setdefault("RESTCORE_LOG_FORMAT", "text")
os.environ.setdefault("RESTCORE_DISPATCH_TIMEOUT_MS", "1000")
