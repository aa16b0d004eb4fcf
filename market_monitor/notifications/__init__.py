"""Tiered multi-channel notification delivery.

Components:
- Subscriber / NotificationJob / DeliveryResult: Delivery data model
- SubscriberRepository: Subscribers, push endpoints and chat link state
- NotificationRouter: Premium-immediate / free-deferred routing
- DeferredDeliveryQueue: Delayed free-tier delivery (memory or Redis)
- MailChannel / PushChannel / ChatChannel: Provider adapters
- CircuitBreaker: Per-channel failure isolation
- NotificationDispatcher: Concurrent per-channel fan-out
- RetryPolicy: Backoff for transient provider errors
- ChatCommandProcessor: Chat bot command state machine
"""

from market_monitor.notifications.channels import (
    ChannelError,
    ChannelTimeoutError,
    ChatChannel,
    CircuitBreaker,
    CircuitState,
    EndpointExpiredError,
    MailChannel,
    NotificationChannel,
    PushChannel,
)
from market_monitor.notifications.chat_commands import (
    ChatCommandProcessor,
    ChatState,
    apply_command,
    parse_command,
)
from market_monitor.notifications.config import NotificationConfig
from market_monitor.notifications.deferred import DeferredDeliveryQueue
from market_monitor.notifications.dispatcher import NotificationDispatcher
from market_monitor.notifications.repository import SubscriberRepository
from market_monitor.notifications.retry import RetryPolicy, TransientError
from market_monitor.notifications.router import NotificationRouter, RoutingPlan, partition
from market_monitor.notifications.schemas import (
    DeliveryResult,
    NotificationJob,
    PushEndpoint,
    Subscriber,
)

__all__ = [
    "ChannelError",
    "ChannelTimeoutError",
    "ChatChannel",
    "ChatCommandProcessor",
    "ChatState",
    "CircuitBreaker",
    "CircuitState",
    "DeferredDeliveryQueue",
    "DeliveryResult",
    "EndpointExpiredError",
    "MailChannel",
    "NotificationChannel",
    "NotificationConfig",
    "NotificationDispatcher",
    "NotificationJob",
    "NotificationRouter",
    "PushChannel",
    "PushEndpoint",
    "RetryPolicy",
    "RoutingPlan",
    "Subscriber",
    "SubscriberRepository",
    "TransientError",
    "apply_command",
    "parse_command",
    "partition",
]
