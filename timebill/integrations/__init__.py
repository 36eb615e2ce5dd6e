"""External collaborators of the recurring job scheduler."""

from .billing import BillingClient, get_billing_client, seconds_to_hours

__all__ = [
    "BillingClient",
    "get_billing_client",
    "seconds_to_hours",
]
