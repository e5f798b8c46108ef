"""Membership application reconciliation exports."""

from .airtable import (  # noqa: F401
    AirtableClient,
    ExternalFetchError,
    ExternalMemberRecord,
    ExternalMemberSource,
    map_airtable_record,
)
from .sync import (  # noqa: F401
    PendingMemberSyncFailure,
    PendingMemberSyncService,
    PendingMemberSyncSummary,
    build_pending_member,
)
