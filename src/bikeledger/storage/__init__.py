__all__ = [
    "Database",
    "MappingFailedError",
    "NotFoundError",
    "ParentNotFoundError",
    "StoreError",
    "WriteFailedError",
]

from bikeledger.storage.database import Database
from bikeledger.storage.errors import (
    MappingFailedError,
    NotFoundError,
    ParentNotFoundError,
    StoreError,
    WriteFailedError,
)
