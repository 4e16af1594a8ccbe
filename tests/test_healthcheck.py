"""Unit tests for cruxmap/healthcheck.py, no real API calls."""

import asyncio
import logging
from unittest.mock import AsyncMock

import cruxmap.healthcheck as hc
from cruxmap.healthcheck import check_provider, run_health_checks
from cruxmap.providers.base import ProviderError
from tests.conftest import MockProvider

_STATUS_JSON = '{"status": "ok"}'


async def test_all_providers_pass():
    providers = {"claude": MockProvider("claude", _STATUS_JSON), "gemini": MockProvider("gemini", _STATUS_JSON)}

    results = await run_health_checks(providers)

    assert results["claude"].ok and results["gemini"].ok
    assert results["claude"].error == ""


async def test_check_requests_json_at_zero_temperature():
    provider = MockProvider("mock", _STATUS_JSON)
    await check_provider("mock", provider)
    kwargs = provider.generate.call_args.kwargs
    assert kwargs == {"temperature": 0.0, "json_mode": True}


async def test_reply_that_is_not_json_fails():
    health = await check_provider("chatty", MockProvider("chatty", "Sure, everything is fine!"))
    assert health.ok is False
    assert "not JSON" in health.error


async def test_reply_missing_status_fails():
    health = await check_provider("odd", MockProvider("odd", '{"state": "ok"}'))
    assert health.ok is False
    assert "HealthResponse" in health.error


async def test_one_provider_fails(caplog):
    providers = {"claude": MockProvider("claude", _STATUS_JSON), "grok": MockProvider("grok")}
    providers["grok"].generate = AsyncMock(side_effect=ProviderError("grok", "403 Forbidden"))

    with caplog.at_level(logging.WARNING):
        results = await run_health_checks(providers)

    assert results["claude"].ok
    assert results["grok"].ok is False
    assert "403" in results["grok"].error
    assert "Health check failed for grok" in caplog.text


async def test_empty_providers():
    assert await run_health_checks({}) == {}


async def test_timeout_counts_as_failure(monkeypatch):
    provider = MockProvider("slow")

    async def hang(*args, **kwargs):
        await asyncio.sleep(9999)

    provider.generate = AsyncMock(side_effect=hang)
    monkeypatch.setattr(hc, "_TIMEOUT_SEC", 0.05)

    health = await check_provider("slow", provider)

    assert health.ok is False
    assert "No reply" in health.error
