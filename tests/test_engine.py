"""
End-to-end engine flows with a fake host: capture, correlate, sidecar.
"""

import asyncio
import dataclasses
import json

from splice_alt.config import MemorySettingsStore
from splice_alt.download_correlator import DownloadState
from splice_alt.engine import CorrelationEngine
from splice_alt.files.http_fetcher import HttpFetchResult
from splice_alt.files.session_context import SessionContext
from splice_alt.notifications import QueueListener
from splice_alt.schemas import ConfigUpdate

from conftest import BATCH_URL, KICK_ITEM, ORIGIN_URL, SINGLE_URL


async def capture(engine, sink, url, body, request_id="r1", chunk_size=7):
    raw = body.encode("utf-8")
    engine.response_started(request_id, url)
    for i in range(0, len(raw), chunk_size):
        await engine.response_chunk(request_id, raw[i:i + chunk_size], sink)
    return engine.response_stopped(request_id)


class TestCaptureToSidecar:

    async def test_kick_scenario(self, engine, sink, requester):
        """Record captured, matching WAV lands, an unrelated WAV fails after the re-check."""
        listener = QueueListener()
        engine.bridge.add_listener(listener)
        body = json.dumps(KICK_ITEM)

        records = await capture(engine, sink, SINGLE_URL, body)

        assert sink.forwarded("r1") == body.encode("utf-8")
        assert [r.filename for r in records] == ["kick_808.wav"]
        for key in ("kick_808.wav", "abc123", "s1", "kick_808"):
            assert engine.cache.get(key) is records[0]

        await asyncio.sleep(0.01)
        kick = await engine.file_saved("/home/u/Splice/samples/kick_808.wav", ORIGIN_URL)
        other = await engine.file_saved("/home/u/Splice/samples/other_999.wav", ORIGIN_URL)

        assert kick.state is DownloadState.MATCHED
        assert other.state is DownloadState.RETRY_SCHEDULED

        await engine.correlator.wait_idle()

        assert other.state is DownloadState.FAILED
        assert [r.target_name for r in requester.requests] == ["kick_808.json"]
        assert requester.requests[0].overwrite is True

        events = [listener.queue.get_nowait() for _ in range(listener.queue.qsize())]
        assert [e["type"] for e in events] == ["METADATA_CAPTURED", "JSON_CREATED"]

        stats = engine.get_stats()
        assert stats.recordCount == 4
        assert stats.processedCount == 1
        assert stats.correlationFailures == 1
        assert stats.openStreams == 0

    async def test_batch_capture(self, engine, sink):
        body = json.dumps({"samples": [
            {"sample_meta_data": {"filename": "a.wav", "file_hash": "ha"}},
            {"sample_meta_data": {"filename": "b.wav", "file_hash": "hb"}},
        ]})
        records = await capture(engine, sink, BATCH_URL, body)

        assert [r.filename for r in records] == ["a.wav", "b.wav"]
        assert engine.get_stats().distinctRecords == 2
        assert engine.get_stats().responsesCaptured == 1

    async def test_unlisted_url_is_forwarded_not_captured(self, engine, sink):
        url = "https://api.splice.com/v2/packs/p1"
        records = await capture(engine, sink, url, json.dumps(KICK_ITEM))

        assert records == []
        assert sink.forwarded("r1") == json.dumps(KICK_ITEM).encode("utf-8")
        assert len(engine.cache) == 0

    async def test_malformed_body_counts_parse_error(self, engine, sink):
        records = await capture(engine, sink, SINGLE_URL, '{"sample": {"filename": ')

        assert records == []
        assert engine.get_stats().parseErrors == 1


class TestControlSurface:

    async def test_disabled_capture(self, engine, sink, requester, kick_record):
        await engine.update_config(ConfigUpdate(enabled=False))
        engine.cache.put(kick_record)

        assert engine.response_started("r1", SINGLE_URL) is False
        download = await engine.file_saved("/tmp/kick_808.wav", ORIGIN_URL)

        assert download.state is DownloadState.FILTERED_OUT
        assert requester.requests == []

    async def test_update_config_is_partial_and_persisted(self, fast_settings, requester):
        store = MemorySettingsStore()
        engine = CorrelationEngine(fast_settings, requester, settings_store=store)

        config = await engine.update_config(ConfigUpdate(autoCapture=False))

        assert config.enabled is True
        assert config.autoCapture is False
        assert await store.get({"enabled": True, "autoCapture": True}) == {"enabled": True, "autoCapture": False}

    async def test_start_loads_stored_config(self, fast_settings, requester):
        engine = CorrelationEngine(
            fast_settings, requester, settings_store=MemorySettingsStore({"enabled": False})
        )
        await engine.start()
        try:
            assert engine.get_config().enabled is False
            assert engine.get_config().capturing is False
        finally:
            await engine.stop()

    async def test_sweep_loop_trims_cache(self, fast_settings, requester, make_record):
        settings = dataclasses.replace(fast_settings, sweep_interval=0.01)
        engine = CorrelationEngine(settings, requester, settings_store=MemorySettingsStore())
        record = make_record("bulk.wav", "bulk")
        for i in range(settings.max_keys + 5):
            engine.cache._entries[f"k{i}"] = record

        await engine.start()
        try:
            await asyncio.sleep(0.1)
        finally:
            await engine.stop()

        assert len(engine.cache) == settings.keep_keys

    async def test_stop_waits_for_pending_recheck(self, engine, requester, kick_record):
        await engine.start()
        download = await engine.file_saved("/tmp/kick_808.wav", ORIGIN_URL)
        assert download.state is DownloadState.RETRY_SCHEDULED
        engine.cache.put(kick_record)

        await engine.stop()

        assert download.state is DownloadState.MATCHED
        assert [r.target_name for r in requester.requests] == ["kick_808.json"]

    async def test_clear_cache_resets_counters(self, engine, kick_record):
        engine.cache.put(kick_record)
        await engine.file_saved("/tmp/kick_808.wav", ORIGIN_URL)
        assert engine.get_stats().processedCount == 1

        assert engine.clear_cache() == 4
        stats = engine.get_stats()
        assert stats.recordCount == 0
        assert stats.processedCount == 0

    def test_list_records(self, engine, kick_record):
        engine.cache.put(kick_record)
        records = engine.list_records()

        assert len(records) == 1
        assert records[0]["filename"] == "kick_808.wav"
        assert records[0]["category"] == "Kick"


class TestRefetchFallback:

    async def test_single_sample_refetched_with_session(self, engine, monkeypatch):
        calls = []

        async def fake_fetch(ctx, url, timeout_s=15.0, client=None):
            calls.append((ctx, url))
            return HttpFetchResult(ok=True, status=200, text=json.dumps(KICK_ITEM))

        monkeypatch.setattr("splice_alt.engine.fetch_text", fake_fetch)
        ctx = SessionContext(base_url="https://api.splice.com", cookies={"sid": "x"})
        engine.set_session(ctx)

        records = await engine.response_completed(SINGLE_URL, 200)

        assert [r.filename for r in records] == ["kick_808.wav"]
        assert calls == [(ctx, SINGLE_URL)]
        assert engine.stats["refetches"] == 1

    async def test_skips_non_200_and_batch(self, engine, monkeypatch):
        async def fail_fetch(*args, **kwargs):
            raise AssertionError("should not fetch")

        monkeypatch.setattr("splice_alt.engine.fetch_text", fail_fetch)

        assert await engine.response_completed(SINGLE_URL, 404) == []
        assert await engine.response_completed(BATCH_URL, 200) == []

    async def test_failed_fetch_yields_nothing(self, engine, monkeypatch):
        async def failing_fetch(ctx, url, timeout_s=15.0, client=None):
            return HttpFetchResult(ok=False, status=401, error="HTTP 401")

        monkeypatch.setattr("splice_alt.engine.fetch_text", failing_fetch)

        assert await engine.response_completed(SINGLE_URL, 200) == []
        assert len(engine.cache) == 0
