# =============================================================================
#  Mergecord
#  Copyright (C) 2025 github.com/Mergecord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations
import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

import aiohttp

from common.config import Config
from common.constants import PAGE_SIZE
from common.db import open_store
from common.logging_setup import phase
from mergecord.attachments import AttachmentRelay
from mergecord.discord_api import DiscordPlatform
from mergecord.ingest import ingest_all
from mergecord.replayer import Replayer


@dataclass
class RunResult:
    ingested: Dict[str, int] = field(default_factory=dict)
    replayed: int = 0

    @property
    def total_ingested(self) -> int:
        return sum(self.ingested.values())


async def run(
    config: Config,
    log: logging.Logger,
    *,
    cancel: Optional[asyncio.Event] = None,
    platform=None,
    relay=None,
    page_size: int = PAGE_SIZE,
) -> RunResult:
    """
    Ingest every source channel into a fresh store, then replay the merged
    timeline to the destination.

    ``platform`` and ``relay`` default to the Discord client and an aiohttp
    backed relay. Everything opened here is closed, and the store directory
    deleted, on every exit path.
    """
    result = RunResult()
    async with contextlib.AsyncExitStack() as stack:
        store = stack.enter_context(open_store(config.STORE_PATH, log=log))

        if platform is None:
            platform = await stack.enter_async_context(
                DiscordPlatform(config.TOKEN, logger=log)
            )
        if relay is None:
            session = await stack.enter_async_context(aiohttp.ClientSession())
            relay = AttachmentRelay(session, log=log)

        with phase("ingest"):
            result.ingested = await ingest_all(
                platform, store, config.FROM, page_size=page_size, log=log
            )
            log.info(
                "Ingest finished for %d channel(s)",
                len(result.ingested),
                extra={"records": result.total_ingested},
            )

        with phase("replay"):
            replayer = Replayer(platform, relay, config.TO, log=log)
            result.replayed = await replayer.run(store, cancel)

    return result
