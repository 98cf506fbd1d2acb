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
import sqlite3
from typing import Iterator, List, Optional, Tuple

from common.constants import STORE_FILENAME
from common.errors import StorageError

logger = logging.getLogger("mergecord.db")


class WriteBatch:
    """
    Buffered set of key/value writes applied by :meth:`commit` in one
    transaction. A batch that is closed without committing writes nothing.
    """

    def __init__(self, store: "OrderedStore"):
        self._store = store
        self._ops: List[Tuple[bytes, bytes]] = []
        self._closed = False

    def __len__(self) -> int:
        return len(self._ops)

    def set(self, key: bytes, value: bytes) -> None:
        if self._closed:
            raise StorageError("batch", detail="set on closed batch")
        self._ops.append((bytes(key), bytes(value)))

    def commit(self) -> int:
        if self._closed:
            raise StorageError("commit", detail="commit on closed batch")
        n = self._store._apply(self._ops)
        self._ops = []
        return n

    def close(self) -> None:
        self._ops = []
        self._closed = True


class OrderedStore:
    """
    Sorted byte-key store on top of a single SQLite file.

    Keys live in a ``WITHOUT ROWID`` table with a BLOB primary key, so the
    table itself is the B-tree ordered by ``memcmp`` of the key bytes and a
    full scan returns rows in ascending key order.
    """

    def __init__(self, path: str, *, log: Optional[logging.Logger] = None):
        self.path = path
        self.file = os.path.join(path, STORE_FILENAME)
        self.log = log or logger
        try:
            os.makedirs(self.path, exist_ok=True)
            self.conn = sqlite3.connect(self.file, isolation_level=None)

            self.conn.execute("PRAGMA journal_mode = DELETE;")
            # fsync on every commit
            self.conn.execute("PRAGMA synchronous = FULL;")
            self.conn.execute("PRAGMA busy_timeout = 5000;")
            self._init_schema()
        except (sqlite3.Error, OSError) as e:
            raise StorageError("open", e, detail=self.file) from e
        self._closed = False
        self.log.debug("Opened ordered store at %s", self.file)

    def _init_schema(self):
        self.conn.execute(
            """
        CREATE TABLE IF NOT EXISTS records (
          k  BLOB PRIMARY KEY,
          v  BLOB NOT NULL
        ) WITHOUT ROWID;
        """
        )

    def _apply(self, ops: List[Tuple[bytes, bytes]]) -> int:
        try:
            self.conn.execute("BEGIN IMMEDIATE;")
            try:
                self.conn.executemany(
                    "INSERT OR REPLACE INTO records(k, v) VALUES(?, ?)", ops
                )
                self.conn.execute("COMMIT;")
            except Exception:
                self.conn.execute("ROLLBACK;")
                raise
        except sqlite3.Error as e:
            raise StorageError("commit", e, detail=f"{len(ops)} record(s)") from e
        return len(ops)

    @contextlib.contextmanager
    def batch(self) -> Iterator[WriteBatch]:
        b = WriteBatch(self)
        try:
            yield b
        finally:
            b.close()

    @contextlib.contextmanager
    def iterate(self) -> Iterator[Iterator[Tuple[bytes, bytes]]]:
        """
        Forward iterator over every key in ascending order.

        The scan runs inside one read transaction, so it sees the store as of
        the moment the iterator was opened.
        """
        try:
            self.conn.execute("BEGIN;")
            cur = self.conn.execute("SELECT k, v FROM records ORDER BY k ASC")
        except sqlite3.Error as e:
            if self.conn.in_transaction:
                self.conn.execute("ROLLBACK;")
            raise StorageError("iterate", e) from e

        def _rows():
            while True:
                try:
                    chunk = cur.fetchmany(256)
                except sqlite3.Error as e:
                    raise StorageError("iterate", e) from e
                if not chunk:
                    return
                for k, v in chunk:
                    yield bytes(k), bytes(v)

        try:
            yield _rows()
        finally:
            cur.close()
            if self.conn.in_transaction:
                self.conn.execute("ROLLBACK;")

    def count(self) -> int:
        try:
            return int(self.conn.execute("SELECT COUNT(*) FROM records").fetchone()[0])
        except sqlite3.Error as e:
            raise StorageError("count", e) from e

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self.conn.close()
        except sqlite3.Error:
            self.log.debug("Ordered store close failed", exc_info=True)


def _store_files() -> Tuple[str, ...]:
    return (STORE_FILENAME, STORE_FILENAME + "-journal")


def _remove_store(path: str, log: logging.Logger, *, strict: bool) -> None:
    """
    Remove a store directory, touching only the files a store creates.

    With ``strict`` a path holding anything else is refused before anything
    is deleted, and any failure raises :class:`StorageError`. Otherwise the
    store files go, foreign files and their directory stay, and failures
    are logged.
    """
    if not os.path.lexists(path):
        return
    try:
        if not os.path.isdir(path) or os.path.islink(path):
            raise StorageError("open", detail=f"{path} exists and is not a store directory")
        ours = set(_store_files())
        foreign = sorted(set(os.listdir(path)) - ours)
        if foreign and strict:
            raise StorageError(
                "open",
                detail=f"{path} holds files that are not part of a store: {', '.join(foreign[:5])}",
            )
        for name in ours:
            with contextlib.suppress(FileNotFoundError):
                os.remove(os.path.join(path, name))
        if foreign:
            log.warning("Left %s in place, it holds other files: %s", path, ", ".join(foreign[:5]))
            return
        os.rmdir(path)
    except (StorageError, OSError) as e:
        if strict:
            if isinstance(e, StorageError):
                raise
            raise StorageError("open", e, detail=f"stale store at {path}") from e
        log.warning("Could not remove store directory %s: %s", path, e)


@contextlib.contextmanager
def open_store(path: str, *, log: Optional[logging.Logger] = None) -> Iterator[OrderedStore]:
    """
    Open a fresh store at ``path`` and remove it again on exit.

    A store left at ``path`` by an earlier run is wiped first; a path that
    holds anything else is refused rather than emptied. The store is working
    state for one run only and is deleted whether the block exits normally
    or with an error.
    """
    log = log or logger
    if os.path.lexists(path):
        log.info("Removing leftover store at %s", path)
        _remove_store(path, log, strict=True)

    store: Optional[OrderedStore] = None
    try:
        store = OrderedStore(path, log=log)
        yield store
    finally:
        if store is not None:
            store.close()
        _remove_store(path, log, strict=False)
