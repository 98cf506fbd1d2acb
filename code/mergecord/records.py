# =============================================================================
#  Mergecord
#  Copyright (C) 2025 github.com/Mergecord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

"""
Stored record shape, sort keys and the JSON codec.

A sort key is ``<timestamp:020d>_<id>`` as ASCII bytes. The timestamp is
fixed width, so comparing two keys byte by byte compares timestamps
numerically first and message ids second, which is exactly the
``(timestamp, id)`` tuple order. Records from every source channel share one
key space and come back out of the store already merged.
"""

from __future__ import annotations
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, List, Tuple

from common.constants import KEY_SEP, KEY_TS_WIDTH
from common.errors import SerializationError

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_US = timedelta(microseconds=1)
_MAX_TS = 10**KEY_TS_WIDTH - 1


@dataclass(frozen=True)
class Attachment:
    filename: str
    url: str


@dataclass(frozen=True)
class StoredMessage:
    id: str
    channel_id: str
    content: str
    author: str
    pinned: bool
    timestamp: int
    attachments: Tuple[Attachment, ...] = field(default_factory=tuple)

    def key(self) -> bytes:
        return sort_key(self.timestamp, self.id)

    def render(self) -> str:
        """Text posted to the destination for this record."""
        return f"{self.author}: {self.content}"


def to_micros(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return (dt - _EPOCH) // _ONE_US


def sort_key(timestamp: int, message_id: str) -> bytes:
    if not isinstance(timestamp, int) or isinstance(timestamp, bool):
        raise ValueError(f"timestamp must be int, got {type(timestamp).__name__}")
    if timestamp < 0 or timestamp > _MAX_TS:
        raise ValueError(f"timestamp out of range: {timestamp}")
    return f"{timestamp:0{KEY_TS_WIDTH}d}{KEY_SEP}{message_id}".encode("utf-8")


def split_key(key: bytes) -> Tuple[int, str]:
    s = key.decode("utf-8")
    ts, sep, mid = s[:KEY_TS_WIDTH], s[KEY_TS_WIDTH:KEY_TS_WIDTH + 1], s[KEY_TS_WIDTH + 1:]
    if sep != KEY_SEP or not ts.isdigit():
        raise ValueError(f"not a sort key: {key!r}")
    return int(ts), mid


def from_discord(msg: Any) -> StoredMessage:
    """
    Normalize a fetched message. ``msg`` is a ``discord.Message`` or anything
    with the same attribute shape.
    """
    return StoredMessage(
        id=str(msg.id),
        channel_id=str(msg.channel.id),
        content=msg.content or "",
        author=str(msg.author.name),
        pinned=bool(msg.pinned),
        timestamp=to_micros(msg.created_at),
        attachments=tuple(
            Attachment(filename=a.filename, url=a.url) for a in (msg.attachments or [])
        ),
    )


def encode(rec: StoredMessage) -> bytes:
    try:
        return json.dumps(
            {
                "id": rec.id,
                "channel_id": rec.channel_id,
                "content": rec.content,
                "author": rec.author,
                "pinned": rec.pinned,
                "timestamp": rec.timestamp,
                "attachments": [
                    {"filename": a.filename, "url": a.url} for a in rec.attachments
                ],
            },
            ensure_ascii=False,
            separators=(",", ":"),
        ).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise SerializationError("encode", e, detail=f"msg_id={rec.id}") from e


_STR_FIELDS = ("id", "channel_id", "content", "author")


def decode(raw: bytes) -> StoredMessage:
    try:
        d = json.loads(raw)
    except (UnicodeDecodeError, ValueError) as e:
        raise SerializationError("decode", e) from e
    if not isinstance(d, dict):
        raise SerializationError("decode", detail=f"expected object, got {type(d).__name__}")

    for k in _STR_FIELDS:
        if not isinstance(d.get(k), str):
            raise SerializationError("decode", detail=f"field {k!r} missing or not a string")
    if not isinstance(d.get("pinned"), bool):
        raise SerializationError("decode", detail="field 'pinned' missing or not a bool")
    ts = d.get("timestamp")
    if not isinstance(ts, int) or isinstance(ts, bool):
        raise SerializationError("decode", detail="field 'timestamp' missing or not an int")
    atts_raw = d.get("attachments")
    if not isinstance(atts_raw, list):
        raise SerializationError("decode", detail="field 'attachments' missing or not a list")

    atts: List[Attachment] = []
    for i, a in enumerate(atts_raw):
        if not (
            isinstance(a, dict)
            and isinstance(a.get("filename"), str)
            and isinstance(a.get("url"), str)
        ):
            raise SerializationError("decode", detail=f"attachment {i} malformed")
        atts.append(Attachment(filename=a["filename"], url=a["url"]))

    return StoredMessage(
        id=d["id"],
        channel_id=d["channel_id"],
        content=d["content"],
        author=d["author"],
        pinned=d["pinned"],
        timestamp=ts,
        attachments=tuple(atts),
    )
