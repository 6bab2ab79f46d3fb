# tests/conftest.py
import asyncio
import os
import sys

# Settings are read at import time, so the test environment has to be in place first.
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["RATE_LIMITER_STORAGE_URL"] = "memory://"
os.environ.setdefault("SECRET_KEY", "test-secret-key")

# This is the crucial fix for Windows asyncio issues with pytest.
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
