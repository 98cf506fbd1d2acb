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
from typing import Any, AsyncIterator, List, Optional

from common.constants import PAGE_SIZE
from common.errors import TransportError, reraise_as

logger = logging.getLogger("mergecord.fetcher")


async def iter_pages(
    platform,
    channel_id: str,
    *,
    page_size: int = PAGE_SIZE,
    log: Optional[logging.Logger] = None,
) -> AsyncIterator[List[Any]]:
    """
    Yield one channel's history newest page first, ``page_size`` messages at
    a time, until the platform returns an empty page.

    The cursor is the id of the last (oldest) message of the previous page.
    A failed request ends the walk with :class:`TransportError`.
    """
    log = log or logger
    before: Optional[str] = None
    page_no = 0

    while True:
        with reraise_as(TransportError, "fetch", detail=f"channel={channel_id} before={before}"):
            msgs = await platform.fetch_messages(channel_id, page_size, before)

        if not msgs:
            log.debug(
                "History exhausted",
                extra={"channel_id": channel_id, "page": page_no, "cursor": before},
            )
            return

        page_no += 1
        before = str(msgs[-1].id)
        log.debug(
            "Fetched page",
            extra={
                "channel_id": channel_id,
                "page": page_no,
                "records": len(msgs),
                "cursor": before,
            },
        )
        yield msgs
