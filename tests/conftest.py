"""Shared fakes: an in-memory platform and message builders."""

import contextlib
import io
import logging
import os
import tempfile
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

BASE = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_msg(
    msg_id,
    channel_id="1",
    *,
    ts_us=None,
    content="hi",
    author="alice",
    pinned=False,
    attachments=(),
):
    """Build an object shaped like a discord.Message."""
    created = BASE + timedelta(microseconds=ts_us if ts_us is not None else int(msg_id))
    return SimpleNamespace(
        id=int(msg_id),
        channel=SimpleNamespace(id=channel_id),
        content=content,
        author=SimpleNamespace(name=author),
        pinned=pinned,
        created_at=created,
        attachments=[SimpleNamespace(filename=f, url=u) for f, u in attachments],
    )


class FakePlatform:
    """
    Histories are stored oldest to newest per channel and served newest first,
    like Discord's ``before`` pagination.
    """

    def __init__(self, histories=None, *, fail_on=None):
        self.histories = {str(k): list(v) for k, v in (histories or {}).items()}
        self.fail_on = fail_on or {}
        self.fetch_calls = []
        self.actions = []
        self._next_id = 9000

    def _maybe_fail(self, op):
        n = sum(1 for a in self.actions if a[0] == op) + 1
        if self.fail_on.get(op) == n:
            raise ConnectionError(f"{op} #{n} refused")

    async def fetch_messages(self, channel_id, limit, before):
        self.fetch_calls.append((channel_id, limit, before))
        if self.fail_on.get("fetch") == len(self.fetch_calls):
            raise ConnectionError("fetch refused")
        hist = self.histories.get(str(channel_id), [])
        newest_first = list(reversed(hist))
        if before is not None:
            idx = next(i for i, m in enumerate(newest_first) if str(m.id) == str(before))
            newest_first = newest_first[idx + 1:]
        return newest_first[:limit]

    async def send_message(self, channel_id, content):
        self._maybe_fail("send")
        self._next_id += 1
        self.actions.append(("send", channel_id, content, str(self._next_id)))
        return str(self._next_id)

    async def pin_message(self, channel_id, message_id):
        self._maybe_fail("pin")
        self.actions.append(("pin", channel_id, message_id))

    async def send_file(self, channel_id, filename, fp):
        self._maybe_fail("upload")
        data = fp.read()
        self.actions.append(("upload", channel_id, filename, data))
        self._next_id += 1
        return str(self._next_id)

    def sent_texts(self):
        return [a[2] for a in self.actions if a[0] == "send"]


class FakeRelay:
    """Serves attachment bytes from memory through real temp files."""

    def __init__(self, tmp_dir, payloads=None):
        self.tmp_dir = str(tmp_dir)
        self.payloads = payloads or {}
        self.opened = []

    @contextlib.asynccontextmanager
    async def open(self, url):
        fd, name = tempfile.mkstemp(prefix="attachment-", dir=self.tmp_dir)
        self.opened.append(name)
        fp = os.fdopen(fd, "w+b")
        try:
            fp.write(self.payloads.get(url, url.encode()))
            fp.seek(0)
            yield fp
        finally:
            fp.close()
            os.remove(name)


@pytest.fixture
def store_dir(tmp_path):
    return str(tmp_path / "msgs.db")


@pytest.fixture
def relay(tmp_path):
    d = tmp_path / "att"
    d.mkdir()
    return FakeRelay(d)


@pytest.fixture
def log_stream():
    return io.StringIO()


@pytest.fixture(autouse=True)
def _reset_app_logger():
    yield
    root = logging.getLogger("mergecord")
    root.handlers.clear()
    root.propagate = True
    root.setLevel(logging.NOTSET)
