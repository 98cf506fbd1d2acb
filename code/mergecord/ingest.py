# =============================================================================
#  Mergecord
#  Copyright (C) 2025 github.com/Mergecord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations
import logging
import time
from typing import Any, Dict, Optional, Sequence

from common.constants import PAGE_SIZE
from common.db import OrderedStore
from common.errors import SerializationError, reraise_as
from mergecord.fetcher import iter_pages
from mergecord.records import encode, from_discord

logger = logging.getLogger("mergecord.ingest")


def store_page(store: OrderedStore, msgs: Sequence[Any]) -> int:
    """
    Write one fetched page as a single durable transaction.

    Either every message of the page is in the store when this returns or
    none is. Returns the number of records written.
    """
    with store.batch() as batch:
        for msg in msgs:
            with reraise_as(SerializationError, "encode", detail=f"msg_id={getattr(msg, 'id', '?')}"):
                rec = from_discord(msg)
                key = rec.key()
            batch.set(key, encode(rec))
        return batch.commit()


async def ingest_channel(
    platform,
    store: OrderedStore,
    channel_id: str,
    *,
    page_size: int = PAGE_SIZE,
    log: Optional[logging.Logger] = None,
) -> int:
    log = log or logger
    total = 0
    async for page in iter_pages(platform, channel_id, page_size=page_size, log=log):
        total += store_page(store, page)
    return total


async def ingest_all(
    platform,
    store: OrderedStore,
    channel_ids: Sequence[str],
    *,
    page_size: int = PAGE_SIZE,
    log: Optional[logging.Logger] = None,
) -> Dict[str, int]:
    """Ingest each source channel to exhaustion, one after another."""
    log = log or logger
    counts: Dict[str, int] = {}
    for cid in channel_ids:
        t0 = time.perf_counter()
        log.info("Ingesting channel", extra={"channel_id": cid})
        n = await ingest_channel(platform, store, cid, page_size=page_size, log=log)
        counts[cid] = n
        log.info(
            "Channel ingested",
            extra={
                "channel_id": cid,
                "records": n,
                "took_ms": int((time.perf_counter() - t0) * 1000),
            },
        )
    return counts
