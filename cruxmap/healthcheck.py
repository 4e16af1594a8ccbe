"""Check that a generator answers in JSON mode before a run spends its budget.

Every structured call in a run goes through JSON mode, so the check asks for
a tiny JSON object and validates it with the same parser the run uses.
"""

import asyncio
import logging
import time
from dataclasses import dataclass

from cruxmap.generation import parse_json_response
from cruxmap.providers.base import AIProvider, ProviderError
from cruxmap.schemas import HealthResponse

logger = logging.getLogger(__name__)

_STATUS_PROMPT = 'Return exactly this JSON object and nothing else: {"status": "ok"}'
_TIMEOUT_SEC = 15.0


@dataclass(frozen=True)
class ProviderHealth:
    name: str
    ok: bool
    latency_sec: float = 0.0
    error: str = ""


async def check_provider(name: str, provider: AIProvider) -> ProviderHealth:
    start = time.monotonic()
    try:
        response = await asyncio.wait_for(
            provider.generate(_STATUS_PROMPT, temperature=0.0, json_mode=True),
            timeout=_TIMEOUT_SEC,
        )
        parse_json_response(name, response.content, HealthResponse)
    except ProviderError as exc:
        return ProviderHealth(name, False, time.monotonic() - start, str(exc))
    except TimeoutError:
        return ProviderHealth(name, False, time.monotonic() - start, f"No reply within {_TIMEOUT_SEC:.0f}s")
    return ProviderHealth(name, True, time.monotonic() - start)


async def run_health_checks(providers: dict[str, AIProvider]) -> dict[str, ProviderHealth]:
    """Check all providers concurrently, keyed by provider name."""
    results = await asyncio.gather(*(check_provider(n, p) for n, p in providers.items()))
    for health in results:
        if health.ok:
            logger.debug("%s answered in %.2fs", health.name, health.latency_sec)
        else:
            logger.warning("Health check failed for %s: %s", health.name, health.error)
    return {health.name: health for health in results}
