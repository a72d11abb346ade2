from runtrack.models.base import Base
from runtrack.models.kv_entry import KeyValueEntry

__all__ = [
    "Base",
    "KeyValueEntry",
]
