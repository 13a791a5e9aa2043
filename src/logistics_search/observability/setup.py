"""Observability setup using Logfire.

Logfire provides:
- OpenTelemetry-based tracing for search spans
- Structured logs for degraded collection branches
- Auto-instrumentation for pymongo and Redis
"""

from typing import Any

import logfire

from logistics_search import __version__
from logistics_search.config import get_settings

_configured = False


def setup_observability() -> dict[str, Any]:
    """Configure Logfire observability.

    Safe to call multiple times - will only configure once. Without a token
    nothing is sent and spans stay local.

    Returns:
        Dict with configuration status
    """
    global _configured

    if _configured:
        return {"configured": True, "status": "already_configured"}

    settings = get_settings()

    if not settings.logfire_token:
        logfire.configure(send_to_logfire=False, console=False)
        _configured = True
        return {"configured": False, "status": "no_token", "message": "LOGFIRE_TOKEN not set"}

    try:
        logfire.configure(
            token=settings.logfire_token,
            service_name="logistics-search",
            service_version=__version__,
            environment=settings.environment,
            min_level=settings.log_level.lower(),
        )

        logfire.instrument_pymongo()
        logfire.instrument_redis()

        _configured = True
        return {"configured": True, "status": "success"}

    except Exception as e:
        _configured = True
        return {"configured": False, "status": "error", "error": str(e)}
