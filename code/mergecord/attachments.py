# =============================================================================
#  Mergecord
#  Copyright (C) 2025 github.com/Mergecord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations
import contextlib
import logging
import os
import tempfile
from typing import AsyncIterator, BinaryIO, Optional

import aiohttp

from common.errors import TransportError, reraise_as

logger = logging.getLogger("mergecord.attachments")


class AttachmentRelay:
    """
    Downloads attachment URLs into throwaway local files.

    :meth:`open` hands the caller a file positioned at offset 0 and removes
    it when the block exits, whatever happened inside. No retries.
    """

    CHUNK = 1 << 14
    TIMEOUT = aiohttp.ClientTimeout(total=180)

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        tmp_dir: Optional[str] = None,
        log: Optional[logging.Logger] = None,
    ):
        self.session = session
        self.tmp_dir = tmp_dir
        self.log = log or logger

    @contextlib.asynccontextmanager
    async def open(self, url: str) -> AsyncIterator[BinaryIO]:
        fp: Optional[BinaryIO] = None
        try:
            with reraise_as(TransportError, "download", detail=url):
                fp = tempfile.NamedTemporaryFile(
                    prefix="attachment-", dir=self.tmp_dir, delete=False
                )
                async with self.session.get(url, timeout=self.TIMEOUT) as resp:
                    if not 200 <= resp.status < 300:
                        raise RuntimeError(f"HTTP {resp.status}")
                    async for chunk in resp.content.iter_chunked(self.CHUNK):
                        if chunk:
                            fp.write(chunk)
                fp.flush()
                fp.seek(0)
            yield fp
        finally:
            if fp is not None:
                self._discard(fp)

    def _discard(self, fp: BinaryIO) -> None:
        name = fp.name
        try:
            fp.close()
        except OSError:
            self.log.debug("Closing %s failed", name, exc_info=True)
        try:
            os.remove(name)
        except FileNotFoundError:
            pass
        except OSError as e:
            self.log.warning("Could not remove transient file %s: %s", name, e)
