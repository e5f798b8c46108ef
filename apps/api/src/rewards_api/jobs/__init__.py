"""Job exports."""

from .pending_members import run_pending_member_sync  # noqa: F401

__all__ = ["run_pending_member_sync"]
