"""
Unit tests for EmailScanner: cache-first lookup and in-flight sharing.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from mailguard.client.queue import ClientRequestQueue
from mailguard.client.scanner import EmailScanner
from mailguard.models.enums import ThreatType
from mailguard.models.messages import AnalysisResult, ResponseMessage
from mailguard.persistence.cache import FingerprintCache
from tests.fixtures.fakes import ScriptedServer

RESULT = AnalysisResult(brief_analysis="Credential harvesting link.", type="phishing", confidence=0.9)


@pytest.fixture
def cache(fake_redis, test_settings):
    return FingerprintCache(fake_redis, test_settings)


@pytest.fixture
def queue():
    """Queue whose submissions resolve on demand."""
    queue = MagicMock()
    queue.futures = []

    def submit(email, handler=None):
        future = asyncio.get_running_loop().create_future()
        queue.futures.append(future)
        return future

    queue.submit.side_effect = submit
    queue.clear = AsyncMock()
    return queue


@pytest.mark.asyncio
async def test_miss_submits_and_caches_completion(queue, cache, phishing_email):
    scanner = EmailScanner(queue, cache)

    task = asyncio.create_task(scanner.scan(phishing_email))
    await asyncio.sleep(0.01)
    queue.futures[0].set_result(ResponseMessage.completion("r1", RESULT))
    outcome = await task

    assert outcome.cached is False
    assert outcome.response.type is ThreatType.PHISHING
    assert await cache.get(phishing_email.fingerprint()) == RESULT


@pytest.mark.asyncio
async def test_hit_skips_queue(queue, cache, phishing_email):
    await cache.put(phishing_email.fingerprint(), RESULT)
    scanner = EmailScanner(queue, cache)

    outcome = await scanner.scan(phishing_email)

    assert outcome.cached is True
    assert outcome.response.is_completion
    assert outcome.response.confidence == RESULT.confidence
    queue.submit.assert_not_called()


@pytest.mark.asyncio
async def test_error_responses_are_not_cached(queue, cache, phishing_email):
    scanner = EmailScanner(queue, cache)

    task = asyncio.create_task(scanner.scan(phishing_email))
    await asyncio.sleep(0.01)
    queue.futures[0].set_result(
        ResponseMessage.failure("r1", "insufficient memory", threat_type=ThreatType.UNKNOWN_THREAT)
    )
    outcome = await task

    assert outcome.response.type is ThreatType.UNKNOWN_THREAT
    assert await cache.get(phishing_email.fingerprint()) is None


@pytest.mark.asyncio
async def test_overlapping_scans_share_one_submission(queue, cache, phishing_email):
    scanner = EmailScanner(queue, cache)

    tasks = [asyncio.create_task(scanner.scan(phishing_email)) for _ in range(3)]
    await asyncio.sleep(0.01)
    queue.futures[0].set_result(ResponseMessage.completion("r1", RESULT))
    outcomes = await asyncio.gather(*tasks)

    assert queue.submit.call_count == 1
    assert all(o.response.type is ThreatType.PHISHING for o in outcomes)


@pytest.mark.asyncio
async def test_cache_failure_still_returns_result(queue, cache, fake_redis, phishing_email):
    scanner = EmailScanner(queue, cache)
    fake_redis.fail = True

    task = asyncio.create_task(scanner.scan(phishing_email))
    await asyncio.sleep(0.01)
    queue.futures[0].set_result(ResponseMessage.completion("r1", RESULT))
    outcome = await task

    assert outcome.response.is_completion


@pytest.mark.asyncio
async def test_clear_cache_removes_entries_and_clears_queue(queue, cache, phishing_email, newsletter_email):
    await cache.put(phishing_email.fingerprint(), RESULT)
    await cache.put(newsletter_email.fingerprint(), RESULT)
    scanner = EmailScanner(queue, cache)

    removed = await scanner.clear_cache()

    assert removed == 2
    assert await cache.get(phishing_email.fingerprint()) is None
    queue.clear.assert_awaited_once()


@pytest.mark.asyncio
async def test_rescan_after_abandoned_request_submits_again(cache, prompt_builder, test_settings, phishing_email):
    server = ScriptedServer()
    queue = ClientRequestQueue(server, prompt_builder, test_settings)
    scanner = EmailScanner(queue, cache)

    stuck = asyncio.create_task(scanner.scan(phishing_email))
    await server.next_request()
    # Channel drops with the request dispatched: that scan is abandoned
    await server.current.close()
    await asyncio.sleep(0.02)

    retry = asyncio.create_task(scanner.scan(phishing_email))
    request = await server.next_request()
    assert request.fingerprint == phishing_email.fingerprint()
    await server.reply(request, RESULT)
    outcome = await asyncio.wait_for(retry, 1.0)

    assert outcome.response.type is ThreatType.PHISHING
    assert await cache.get(phishing_email.fingerprint()) == RESULT
    assert not stuck.done()
    stuck.cancel()
    await queue.clear()
