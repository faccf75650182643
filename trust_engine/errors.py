"""Trust engine exceptions.

Business outcomes (ineligible drafts, missing drafts, unlinked vendors) are
returned as values; these are for callers that asked for something that
cannot be answered.
"""


class TrustEngineError(Exception):
    """Base exception for the trust engine."""
    pass


class VendorProfileNotFound(TrustEngineError):
    """Raised when a trust evaluation names a vendor that does not exist."""

    def __init__(self, business_id: str, vendor_profile_id: str):
        self.business_id = business_id
        self.vendor_profile_id = vendor_profile_id
        super().__init__(
            f"Vendor profile {vendor_profile_id} not found for business {business_id}"
        )
