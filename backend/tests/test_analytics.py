from __future__ import annotations

import asyncio
import logging
from unittest.mock import AsyncMock

from backend.analytics.aggregator import summarize_search_log
from backend.analytics.sink import AnalyticsConfig, SearchAnalyticsSink
from backend.search.models import SearchLogEntry
from backend.storage.memory import MemoryCatalogueStore


def _entry(query="pasta", **kwargs):
    return SearchLogEntry(query=query, **kwargs)


# ── Summary ──────────────────────────────────────────────────────────────


def test_summary_of_empty_log():
    summary = summarize_search_log([])
    assert summary["total_searches"] == 0
    assert summary["avg_result_count"] == 0.0
    assert summary["zero_result_rate"] == 0.0
    assert summary["top_queries"] == []
    assert summary["filter_usage"] == {}


def test_summary_counts_and_rates():
    entries = [
        _entry("Pasta", user_id=1, result_count=4, filters={"cuisine": ["Italian"]}),
        _entry(" pasta ", user_id=2, result_count=2, search_type="recipes"),
        _entry("sushi", user_id=1, result_count=0, filters={"cuisine": [], "tags": ["quick"]}),
        _entry("advanced_filter", result_count=6, search_type="advanced_recipe"),
    ]
    summary = summarize_search_log(entries)
    assert summary["total_searches"] == 4
    assert summary["unique_queries"] == 3
    assert summary["unique_users"] == 2
    assert summary["avg_result_count"] == 3.0
    assert summary["zero_result_rate"] == 25.0
    assert summary["top_queries"][0] == {"query": "pasta", "count": 2}
    assert summary["zero_result_queries"] == [{"query": "sushi", "count": 1}]
    assert summary["search_type_usage"] == {"all": 2, "recipes": 1, "advanced_recipe": 1}
    # Empty filter values are not counted as used
    assert summary["filter_usage"] == {"cuisine": 25.0, "tags": 25.0}


def test_summary_top_n():
    entries = [_entry(f"query {i}") for i in range(5)]
    assert len(summarize_search_log(entries, top_n=3)["top_queries"]) == 3


# ── Sink ─────────────────────────────────────────────────────────────────


def test_sink_writes_entries_in_background():
    store = MemoryCatalogueStore()
    sink = SearchAnalyticsSink(store_provider=lambda: store)

    async def scenario():
        await sink.start()
        assert sink.running
        sink.record(_entry("pasta"))
        sink.record(_entry("pizza"))
        await sink.stop()

    asyncio.run(scenario())
    assert [e.query for e in asyncio.run(store.search_log())] == ["pasta", "pizza"]
    assert not sink.running


def test_sink_can_be_restarted():
    store = MemoryCatalogueStore()
    sink = SearchAnalyticsSink(store_provider=lambda: store)

    async def scenario():
        await sink.start()
        sink.record(_entry("before"))
        await sink.stop()
        await sink.start()
        sink.record(_entry("after"))
        await sink.stop()

    asyncio.run(scenario())
    assert [e.query for e in asyncio.run(store.search_log())] == ["before", "after"]


def test_sink_drops_entries_when_queue_is_full(caplog):
    store = MemoryCatalogueStore()
    sink = SearchAnalyticsSink(store_provider=lambda: store, config=AnalyticsConfig(queue_size=2))

    async def scenario():
        await sink.start()
        # The worker cannot run until this coroutine yields
        for query in ("one", "two", "three"):
            sink.record(_entry(query))
        await sink.stop()

    with caplog.at_level(logging.WARNING, logger="backend.analytics.sink"):
        asyncio.run(scenario())
    assert sink.dropped == 1
    assert [e.query for e in asyncio.run(store.search_log())] == ["one", "two"]
    assert "queue full" in caplog.text


def test_failed_write_is_logged_not_raised(caplog):
    store = AsyncMock()
    store.record_search.side_effect = [RuntimeError("database down"), None]
    sink = SearchAnalyticsSink(store_provider=lambda: store)

    async def scenario():
        await sink.start()
        sink.record(_entry("first"))
        sink.record(_entry("second"))
        await sink.drain()
        assert sink.running
        await sink.stop()

    with caplog.at_level(logging.WARNING, logger="backend.analytics.sink"):
        asyncio.run(scenario())
    assert store.record_search.await_count == 2
    assert "Failed to record search analytics" in caplog.text


def test_record_before_start_is_dropped():
    store = AsyncMock()
    sink = SearchAnalyticsSink(store_provider=lambda: store)
    sink.record(_entry())
    assert sink.dropped == 0
    store.record_search.assert_not_called()


def test_disabled_sink_never_starts():
    store = AsyncMock()
    sink = SearchAnalyticsSink(store_provider=lambda: store, config=AnalyticsConfig(enabled=False))

    async def scenario():
        await sink.start()
        sink.record(_entry())
        await sink.stop()

    asyncio.run(scenario())
    assert not sink.running
    store.record_search.assert_not_called()
