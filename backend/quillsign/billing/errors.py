"""Entitlement error kinds, translated to HTTP responses by the routers."""


class EntitlementError(Exception):
    """Base class for entitlement sync failures."""


class UserNotFoundError(EntitlementError):
    """No user owns the referenced customer id / user id / email."""

    def __init__(self, reference: str):
        super().__init__(f"No user found for {reference}")
        self.reference = reference


class CustomerConflictError(EntitlementError):
    """A Stripe customer id is already linked to a different user."""

    def __init__(self, customer_id: str, owner_id: str):
        super().__init__(f"Stripe customer {customer_id} already belongs to user {owner_id}")
        self.customer_id = customer_id
        self.owner_id = owner_id


class ProviderAPIError(EntitlementError):
    """A call to the billing provider failed."""
