"""Services package for the ER:LC client.

This package provides:
- Polling subscriptions that turn snapshots into change events
- Moderation and query helpers
"""

from erlc.services.helpers import PlayerName, PRCHelpers, ServerStats
from erlc.services.subscription import (
    ChangeEvent,
    EventConfig,
    EventType,
    Subscription,
    SubscriptionState,
)

__all__ = [
    "PlayerName",
    "PRCHelpers",
    "ServerStats",
    "ChangeEvent",
    "EventConfig",
    "EventType",
    "Subscription",
    "SubscriptionState",
]
