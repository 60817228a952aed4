from sqlalchemy import BigInteger, Integer, JSON
from sqlalchemy.orm import declarative_base
from sqlalchemy.dialects.postgresql import JSONB
import enum

Base = declarative_base()

# BIGINT on PostgreSQL, INTEGER on SQLite so autoincrement keeps working
BigIntegerType = BigInteger().with_variant(Integer(), "sqlite")
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ============================================================================
# ENUMS
# ============================================================================

class SyncStatus(str, enum.Enum):
    """Sync run status"""
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not SyncStatus.RUNNING


class SyncAction(str, enum.Enum):
    """Classification of one catalog item within a run"""
    INSERT = "insert"
    UPDATE = "update"
    UNCHANGED = "unchanged"
    ERROR = "error"
