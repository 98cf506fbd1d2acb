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
import signal
import sys
from typing import Optional, Sequence

from common.config import Config
from common.constants import CURRENT_VERSION, EXIT_CONFIG, EXIT_FAILURE, EXIT_OK
from common.errors import ConfigError, MergecordError
from common.logging_setup import configure_app_logging
from mergecord import pipeline


async def _amain(config: Config, log) -> int:
    loop = asyncio.get_running_loop()
    cancel = asyncio.Event()
    main_task = asyncio.current_task()

    def _on_signal(signame: str):
        if cancel.is_set():
            log.warning("Second %s; aborting now", signame)
            main_task.cancel()
            return
        log.warning("%s received; replay will stop before the next record", signame)
        cancel.set()

    installed = []
    for sig in (signal.SIGTERM, signal.SIGINT):
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, _on_signal, sig.name)
            installed.append(sig)

    try:
        res = await pipeline.run(config, log, cancel=cancel)
    except MergecordError as e:
        log.error("Run failed: %s", e, extra={"op": e.op})
        return EXIT_FAILURE
    except asyncio.CancelledError:
        log.error("Run aborted")
        return EXIT_FAILURE
    except Exception:
        log.exception("Unexpected error")
        return EXIT_FAILURE
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)

    log.info(
        "Done: %d record(s) ingested from %d channel(s), %d replayed",
        res.total_ingested,
        len(res.ingested),
        res.replayed,
    )
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    try:
        config = Config(sys.argv[1:] if argv is None else argv)
    except ConfigError as e:
        print(f"mergecord: {e}", file=sys.stderr)
        return EXIT_CONFIG

    log = configure_app_logging(
        config.LOG_LEVEL, config.LOG_FORMAT, secrets=[config.TOKEN]
    )
    log.info("[✨] Starting Mergecord %s", CURRENT_VERSION)
    return asyncio.run(_amain(config, log))


if __name__ == "__main__":
    sys.exit(main())
