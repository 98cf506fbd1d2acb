# =============================================================================
#  Mergecord
#  Copyright (C) 2025 github.com/Mergecord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

"""Error types shared by the ingest and replay phases."""

from __future__ import annotations
import contextlib
from typing import Iterator, Optional, Type


class MergecordError(Exception):
    """
    Base error for a failed pipeline operation.

    Carries the operation tag (``fetch``, ``commit``, ``send``...) and the
    underlying exception so the entry point can report both without string
    surgery.
    """

    def __init__(self, op: str, cause: Optional[BaseException] = None, detail: str = ""):
        self.op = op
        self.cause = cause
        self.detail = detail
        super().__init__(self._render())
        if cause is not None:
            self.__cause__ = cause

    def _render(self) -> str:
        parts = [self.op]
        if self.detail:
            parts.append(self.detail)
        if self.cause is not None:
            parts.append(f"{type(self.cause).__name__}: {self.cause}")
        return ": ".join(parts)


class TransportError(MergecordError):
    """Remote platform or attachment download failure."""


class StorageError(MergecordError):
    """Open/commit/iterate failure of the ordered store."""


class SerializationError(MergecordError):
    """Malformed record on encode or read-back."""


class ReplayCancelled(MergecordError):
    def __init__(self, replayed: int):
        self.replayed = replayed
        super().__init__("replay", detail=f"cancelled after {replayed} record(s)")


class ConfigError(ValueError):
    pass


@contextlib.contextmanager
def reraise_as(kind: Type[MergecordError], op: str, detail: str = "") -> Iterator[None]:
    """Wrap any non-Mergecord exception raised in the block as ``kind(op)``."""
    try:
        yield
    except MergecordError:
        raise
    except Exception as e:
        raise kind(op, e, detail=detail) from e
