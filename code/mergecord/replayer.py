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
import logging
import time
from typing import Optional

from common.db import OrderedStore
from common.errors import ReplayCancelled, TransportError, reraise_as
from mergecord.records import StoredMessage, decode

logger = logging.getLogger("mergecord.replayer")


class Replayer:
    """
    Walks the store in key order and re-posts every record to one channel.

    Per record: the ``author: content`` message, then a pin of that message
    when the source was pinned, then one upload per attachment in original
    order. The first failing call aborts the whole replay.
    """

    LOG_EVERY = 100

    def __init__(
        self,
        platform,
        relay,
        to_channel: str,
        *,
        log: Optional[logging.Logger] = None,
    ):
        self.platform = platform
        self.relay = relay
        self.to = to_channel
        self.log = log or logger

    async def run(
        self, store: OrderedStore, cancel: Optional[asyncio.Event] = None
    ) -> int:
        sent = 0
        t0 = time.perf_counter()
        with store.iterate() as rows:
            for _key, value in rows:
                if cancel is not None and cancel.is_set():
                    self.log.warning("Replay cancelled", extra={"records": sent})
                    raise ReplayCancelled(sent)
                await self.send(decode(value))
                sent += 1
                if sent % self.LOG_EVERY == 0:
                    self.log.info("Replay progress", extra={"records": sent})

        self.log.info(
            "Replay complete",
            extra={"records": sent, "took_ms": int((time.perf_counter() - t0) * 1000)},
        )
        return sent

    async def send(self, msg: StoredMessage) -> None:
        with reraise_as(TransportError, "send", detail=f"msg_id={msg.id}"):
            new_id = await self.platform.send_message(self.to, msg.render())

        if msg.pinned:
            with reraise_as(TransportError, "pin", detail=f"msg_id={msg.id}"):
                await self.platform.pin_message(self.to, new_id)

        for att in msg.attachments:
            async with self.relay.open(att.url) as fp:
                with reraise_as(TransportError, "upload", detail=att.filename):
                    await self.platform.send_file(self.to, att.filename, fp)

        self.log.debug(
            "Replayed %s from %s (%d attachment(s), pinned=%s)",
            msg.id,
            msg.channel_id,
            len(msg.attachments),
            msg.pinned,
        )
