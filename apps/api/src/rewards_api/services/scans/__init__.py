"""Scan ledger exports."""

from .ledger import (  # noqa: F401
    AmbiguousCodeError,
    CommitStep,
    InvalidScanCodeError,
    MemberNotFoundError,
    MemberTypeNotFoundError,
    PartialCommitError,
    ScanLedgerError,
    ScanLedgerService,
    ScanResult,
    apply_scan,
)
from .locks import MemberLockRegistry  # noqa: F401
