from .profile import Profile
from .subscription import Subscription, SUBSCRIPTION_STATUSES
from .processed_event import ProcessedStripeEvent

__all__ = ["Profile", "Subscription", "SUBSCRIPTION_STATUSES", "ProcessedStripeEvent"]
