"""Error kinds raised by the attribution core."""

from typing import Any, Optional


class AttributionError(Exception):
    """Base class for all attribution errors."""


class AlreadyLinked(AttributionError):
    """The (owned, owner) pair already has an association link."""
    
    def __init__(
        self,
        owned_id: Any,
        owned_kind: str,
        owner_id: Any,
        owner_kind: str,
        link_id: Optional[int] = None
    ):
        self.owned_id = str(owned_id)
        self.owned_kind = str(owned_kind)
        self.owner_id = str(owner_id)
        self.owner_kind = str(owner_kind)
        self.link_id = link_id
        super().__init__(
            f"{self.owned_kind} {self.owned_id} is already linked to "
            f"{self.owner_kind} {self.owner_id}"
        )


class UnresolvedIcpReference(AttributionError):
    """An ICP reference does not resolve against the current catalog."""
    
    def __init__(self, icp_id: Any, lead_id: Any = None):
        self.icp_id = icp_id
        self.lead_id = lead_id
        if icp_id is None:
            message = f"Lead {lead_id} has no ICP reference"
        else:
            message = f"ICP {icp_id} is not in the catalog"
            if lead_id is not None:
                message += f" (referenced by lead {lead_id})"
        super().__init__(message)


class InvalidDomainInput(AttributionError, ValueError):
    """A candidate domain string could not be normalized."""


class StoreError(AttributionError):
    """Backing store failure. Fatal for the current batch."""


class StoreUnavailable(StoreError):
    """The backing store could not be reached or timed out."""


class TransactionFailed(StoreError):
    """A store transaction failed and was rolled back."""
