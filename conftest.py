"""Root pytest configuration.

Settings are read once at import time by several modules (engine, auth,
rate limiter), so the test environment must be in place before any
``libs`` or ``services`` import happens.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("CHAIN_WEBHOOK_SECRET", "test-webhook-secret")
os.environ["RATE_LIMIT_ENABLED"] = "false"
# No sibling services in tests; cross-service calls are exercised with mocks
os.environ["ORDERS_SERVICE_URL"] = ""
os.environ["LEDGER_SERVICE_URL"] = ""
os.environ["CHAIN_SERVICE_URL"] = ""

from libs.common.config import get_settings  # noqa: E402

get_settings.cache_clear()
