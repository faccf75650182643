"""Collaborator protocols for the trust engine.

The engine owns no storage. The surrounding system implements these and
injects them into TrustService. Implementations may return the Pydantic
models directly or raw row mappings; the service validates on read.
"""

from datetime import datetime
from typing import Any, List, Mapping, Optional, Protocol, Union

from trust_engine.models import DocumentDraft, DraftUpdate, PostDraftResult, VendorProfile


DraftRecord = Union[DocumentDraft, Mapping[str, Any]]
VendorRecord = Union[VendorProfile, Mapping[str, Any]]


class DraftRepository(Protocol):
    """Reads and partially updates document drafts."""

    async def find_draft(self, business_id: str, draft_id: str) -> Optional[DraftRecord]:
        """Return the draft, or None when it does not exist for this business."""
        ...

    async def list_posted_drafts(
        self,
        business_id: str,
        vendor_profile_id: str,
        since: datetime,
        limit: int,
    ) -> List[DraftRecord]:
        """Posted drafts for a vendor with parsed_date >= since, newest first, at most limit."""
        ...

    async def update_draft(self, draft_id: str, update: DraftUpdate) -> None:
        """Apply the non-None fields of update."""
        ...


class VendorProfileRepository(Protocol):
    """Reads vendor profiles."""

    async def find_vendor_profile(
        self,
        business_id: str,
        vendor_profile_id: str,
    ) -> Optional[VendorRecord]:
        ...


class PostDraft(Protocol):
    """Posting delegate: creates the ledger transaction and marks the draft posted.

    Errors raised here are hard failures and propagate to the caller.
    """

    async def __call__(
        self,
        business_id: str,
        draft_id: str,
        acting_user_id: str,
        *,
        auto_posted: bool,
    ) -> Union[PostDraftResult, Mapping[str, Any]]:
        ...
