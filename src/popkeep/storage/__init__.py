# =============================================================================
# Storage Module
# =============================================================================
# Local mirror storage in SQLite (async via aiosqlite).
#
# The database lives in the XDG data directory (~/.local/share/popkeep/).
# =============================================================================

from popkeep.storage.database import Database
from popkeep.storage.repository import Repository

__all__ = ["Database", "Repository"]
