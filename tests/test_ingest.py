"""Tests for mergecord.fetcher and mergecord.ingest."""

import asyncio

import pytest

from common.db import open_store
from common.errors import SerializationError, TransportError
from mergecord.fetcher import iter_pages
from mergecord.ingest import ingest_all, ingest_channel, store_page
from mergecord.records import decode
from conftest import FakePlatform, make_msg


class ScriptedPlatform:
    """Returns pre-built pages in order, whatever the cursor."""

    def __init__(self, sizes, fail_at=None):
        self.pages = []
        next_id = 10_000
        for size in sizes:
            page = []
            for _ in range(size):
                page.append(make_msg(next_id))
                next_id -= 1
            self.pages.append(page)
        self.fail_at = fail_at
        self.calls = []

    async def fetch_messages(self, channel_id, limit, before):
        self.calls.append((channel_id, limit, before))
        if self.fail_at == len(self.calls):
            raise ConnectionResetError("peer reset")
        return self.pages[len(self.calls) - 1]


async def _collect(agen):
    return [p async for p in agen]


def test_pagination_stops_on_empty_page() -> None:
    plat = ScriptedPlatform([100, 100, 37, 0])
    pages = asyncio.run(_collect(iter_pages(plat, "1")))
    assert [len(p) for p in pages] == [100, 100, 37]
    assert len(plat.calls) == 4


def test_cursor_advances_to_oldest_of_previous_page() -> None:
    plat = ScriptedPlatform([3, 2, 0])
    asyncio.run(_collect(iter_pages(plat, "9", page_size=3)))
    assert plat.calls[0] == ("9", 3, None)
    assert plat.calls[1] == ("9", 3, str(plat.pages[0][-1].id))
    assert plat.calls[2] == ("9", 3, str(plat.pages[1][-1].id))


def test_pagination_termination_ingests_237(store_dir) -> None:
    plat = ScriptedPlatform([100, 100, 37, 0])
    with open_store(store_dir) as store:
        n = asyncio.run(ingest_channel(plat, store, "1"))
        assert n == 237
        assert store.count() == 237


def test_fetch_walks_real_history_backwards() -> None:
    hist = [make_msg(i) for i in range(1, 251)]
    plat = FakePlatform({"1": hist})
    pages = asyncio.run(_collect(iter_pages(plat, "1")))
    assert [len(p) for p in pages] == [100, 100, 50]
    ids = [m.id for p in pages for m in p]
    assert ids == list(range(250, 0, -1))


def test_transport_error_on_third_page_aborts(store_dir) -> None:
    plat = ScriptedPlatform([100, 100, 100, 0], fail_at=3)
    with open_store(store_dir) as store:
        with pytest.raises(TransportError) as ei:
            asyncio.run(ingest_channel(plat, store, "1"))
        assert ei.value.op == "fetch"
        assert isinstance(ei.value.cause, ConnectionResetError)
        # the two committed pages stay; nothing after the failure
        assert store.count() == 200
    assert len(plat.calls) == 3


def test_error_in_first_channel_skips_the_rest(store_dir) -> None:
    plat = FakePlatform(
        {"a": [make_msg(1, "a")], "b": [make_msg(2, "b")]}, fail_on={"fetch": 1}
    )
    with open_store(store_dir) as store:
        with pytest.raises(TransportError):
            asyncio.run(ingest_all(plat, store, ["a", "b"]))
    assert [c[0] for c in plat.fetch_calls] == ["a"]


def test_ingest_all_is_sequential_per_channel(store_dir) -> None:
    plat = FakePlatform(
        {
            "a": [make_msg(i, "a") for i in range(1, 4)],
            "b": [make_msg(i, "b") for i in range(10, 12)],
        }
    )
    with open_store(store_dir) as store:
        counts = asyncio.run(ingest_all(plat, store, ["a", "b"], page_size=2))
        assert counts == {"a": 3, "b": 2}
    order = [c[0] for c in plat.fetch_calls]
    assert order == ["a", "a", "a", "b", "b"]


def test_store_page_writes_one_record_per_message(store_dir) -> None:
    msgs = [
        make_msg(3, ts_us=30, attachments=[("x.png", "https://cdn/x")]),
        make_msg(1, ts_us=10, pinned=True),
    ]
    with open_store(store_dir) as store:
        assert store_page(store, msgs) == 2
        with store.iterate() as rows:
            recs = [decode(v) for _, v in rows]
    assert [r.id for r in recs] == ["1", "3"]
    assert recs[0].pinned is True
    assert recs[1].attachments[0].url == "https://cdn/x"


def test_bad_message_aborts_whole_page(store_dir) -> None:
    bad = make_msg(2)
    bad.created_at = "yesterday"
    with open_store(store_dir) as store:
        with pytest.raises(SerializationError):
            store_page(store, [make_msg(1), bad])
        assert store.count() == 0
