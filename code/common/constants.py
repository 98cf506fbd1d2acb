# =============================================================================
#  Mergecord
#  Copyright (C) 2025 github.com/Mergecord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

"""Shared constants used across Mergecord modules."""

CURRENT_VERSION = "v0.1.0"

# Discord caps history requests at 100 messages.
PAGE_SIZE = 100

DEFAULT_STORE_PATH = "msgs.db"
STORE_FILENAME = "store.sqlite3"

# Width of the zero-padded timestamp in a sort key; fits any signed int64.
KEY_TS_WIDTH = 20
KEY_SEP = "_"

REDACT_KEYS = {"TOKEN"}

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2
