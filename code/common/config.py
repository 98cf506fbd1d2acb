# =============================================================================
#  Mergecord
#  Copyright (C) 2025 github.com/Mergecord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

import argparse
import logging
import os
from typing import List, Mapping, Optional, Sequence

from common.constants import CURRENT_VERSION, DEFAULT_STORE_PATH
from common.errors import ConfigError

logger = logging.getLogger(__name__)

LOG_FORMATS = ("HUMAN", "JSON")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="mergecord",
        description=(
            "Copy the history of one or more Discord channels into a single "
            "channel, merged in chronological order."
        ),
    )
    p.add_argument(
        "--from",
        dest="from_channels",
        action="append",
        metavar="CHANNEL_ID",
        help="source channel id; repeat or comma-separate for several (env FROM)",
    )
    p.add_argument("--to", dest="to_channel", help="destination channel id (env TO)")
    p.add_argument("--token", dest="token", help="bot token (env TOKEN)")
    p.add_argument(
        "--store-path",
        dest="store_path",
        help=f"working store directory, removed on exit (env STORE_PATH, default {DEFAULT_STORE_PATH})",
    )
    p.add_argument("--version", action="version", version=f"mergecord {CURRENT_VERSION}")
    return p


def _split_ids(values: Sequence[str]) -> List[str]:
    out: List[str] = []
    for raw in values:
        for tok in str(raw).split(","):
            tok = tok.strip()
            if tok:
                out.append(tok)
    return out


class Config:
    """
    Resolved run configuration.

    Command-line flags win over environment variables. Built once by the
    entry point and handed to the pipeline; nothing reads the environment
    after this.
    """

    def __init__(
        self,
        argv: Optional[Sequence[str]] = None,
        env: Optional[Mapping[str, str]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        env = os.environ if env is None else env
        args = build_parser().parse_args(list(argv) if argv is not None else [])

        def _str(cli_value: Optional[str], key: str, env_default: Optional[str] = None) -> Optional[str]:
            v = cli_value
            if v is None or v.strip() == "":
                v = env.get(key, env_default)
            return v.strip() if isinstance(v, str) else v

        # --- Channels / credentials ---
        if args.from_channels:
            self.FROM = _split_ids(args.from_channels)
        else:
            self.FROM = _split_ids([env.get("FROM", "")])
        self.TO = _str(args.to_channel, "TO") or ""
        self.TOKEN = _str(args.token, "TOKEN") or ""

        # --- Storage ---
        self.STORE_PATH = _str(args.store_path, "STORE_PATH", DEFAULT_STORE_PATH) or DEFAULT_STORE_PATH

        # --- Logging ---
        self.LOG_LEVEL = (env.get("LOG_LEVEL", "INFO") or "INFO").strip().upper()
        self.LOG_FORMAT = (env.get("LOG_FORMAT", "HUMAN") or "HUMAN").strip().upper()

        self.logger = (logger or logging.getLogger(__name__)).getChild(
            self.__class__.__name__
        )
        self._validate()
        self.logger.debug("Resolved %r", self)

    def _validate(self) -> None:
        missing = []
        if not self.FROM:
            missing.append("from")
        if not self.TO:
            missing.append("to")
        if not self.TOKEN:
            missing.append("token")
        if missing:
            raise ConfigError(f"missing required option(s): {', '.join(missing)}")
        if self.LOG_FORMAT not in LOG_FORMATS:
            raise ConfigError(
                f"LOG_FORMAT must be one of {', '.join(LOG_FORMATS)}, got {self.LOG_FORMAT!r}"
            )

    def __repr__(self) -> str:
        return (
            f"Config(from={self.FROM!r}, to={self.TO!r}, token=***, "
            f"store_path={self.STORE_PATH!r})"
        )
