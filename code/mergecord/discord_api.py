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
from typing import Any, BinaryIO, Dict, List, Optional, Protocol

import discord

from common.errors import TransportError, reraise_as


class Platform(Protocol):
    """Remote calls the pipeline needs. Every call may raise."""

    async def fetch_messages(
        self, channel_id: str, limit: int, before: Optional[str]
    ) -> List[Any]: ...

    async def send_message(self, channel_id: str, content: str) -> str: ...

    async def pin_message(self, channel_id: str, message_id: str) -> None: ...

    async def send_file(self, channel_id: str, filename: str, fp: BinaryIO) -> str: ...


class DiscordPlatform:
    """
    :class:`Platform` over discord.py's REST client.

    Only ``login`` is performed; no gateway connection is opened. discord.py
    handles rate-limit buckets and 429 retries inside its HTTP client.
    """

    def __init__(self, token: str, *, logger: Optional[logging.Logger] = None):
        self.token = token
        self.log = logger or logging.getLogger("mergecord.discord")
        self.bot = discord.Client(intents=discord.Intents.none())
        self._channels: Dict[int, Any] = {}

    async def __aenter__(self) -> "DiscordPlatform":
        try:
            with reraise_as(TransportError, "login"):
                await self.bot.login(self.token)
        except TransportError:
            await self.__aexit__(None, None, None)
            raise
        user = getattr(self.bot, "user", None)
        self.log.info("Logged in as %s", user)
        return self

    async def __aexit__(self, *exc) -> None:
        try:
            await self.bot.close()
        except Exception:
            self.log.debug("Discord client close failed", exc_info=True)

    async def _channel(self, channel_id: str):
        cid = int(channel_id)
        ch = self._channels.get(cid)
        if ch is None:
            ch = self.bot.get_channel(cid) or await self.bot.fetch_channel(cid)
            self._channels[cid] = ch
        return ch

    async def fetch_messages(
        self, channel_id: str, limit: int, before: Optional[str]
    ) -> List[discord.Message]:
        ch = await self._channel(channel_id)
        kw: Dict[str, Any] = {"limit": limit}
        if before:
            kw["before"] = discord.Object(id=int(before))
        # newest first, so the last element is the oldest
        return [m async for m in ch.history(**kw)]

    async def send_message(self, channel_id: str, content: str) -> str:
        ch = await self._channel(channel_id)
        msg = await ch.send(
            content=content, allowed_mentions=discord.AllowedMentions.none()
        )
        return str(msg.id)

    async def pin_message(self, channel_id: str, message_id: str) -> None:
        ch = await self._channel(channel_id)
        await ch.get_partial_message(int(message_id)).pin()

    async def send_file(self, channel_id: str, filename: str, fp: BinaryIO) -> str:
        ch = await self._channel(channel_id)
        msg = await ch.send(file=discord.File(fp, filename=filename))
        return str(msg.id)
