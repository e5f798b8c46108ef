"""Record store exports."""

from .base import (  # noqa: F401
    DEFAULT_SORT,
    RecordPage,
    RecordStore,
    call_with_timeout,
    matches_snapshot,
)
from .errors import (  # noqa: F401
    ConflictError,
    NotFoundError,
    RecordStoreError,
    RecordValidationError,
    StoreReadError,
    StoreWriteError,
)
from .memory import InMemoryRecordStore, StoreWrite  # noqa: F401
from .rest import RestRecordStore  # noqa: F401
