"""Notification type keys and the default content each one produces."""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

NotificationType = Literal["info", "success", "error", "warning"]
NotificationChannel = Literal["email", "web", "both"]

BUDGET_THRESHOLD_80 = "BUDGET_THRESHOLD_80"
BUDGET_THRESHOLD_100 = "BUDGET_THRESHOLD_100"
SUBSCRIPTION_EXPIRING_3_DAYS = "SUBSCRIPTION_EXPIRING_3_DAYS"
SUBSCRIPTION_EXPIRING_1_DAY = "SUBSCRIPTION_EXPIRING_1_DAY"
SUBSCRIPTION_EXPIRED = "SUBSCRIPTION_EXPIRED"


@dataclass(frozen=True)
class NotificationContent:
    """What a notification says and where it goes."""

    type: NotificationType
    title: str
    message: str
    channel: NotificationChannel = "both"
    html: str | None = None


def _category(metadata: dict[str, Any] | None) -> str:
    return str((metadata or {}).get("category_name") or "category")


NOTIFICATION_CONFIGS: dict[str, Callable[[dict[str, Any] | None], NotificationContent]] = {
    BUDGET_THRESHOLD_80: lambda metadata: NotificationContent(
        type="warning",
        title="Budget Threshold Reached",
        message=f'Your budget for "{_category(metadata)}" has reached 80% of the allocated amount.',
    ),
    BUDGET_THRESHOLD_100: lambda metadata: NotificationContent(
        type="error",
        title="Budget Exceeded",
        message=f'Your budget for "{_category(metadata)}" has been exceeded.',
    ),
    SUBSCRIPTION_EXPIRING_3_DAYS: lambda metadata: NotificationContent(
        type="warning",
        title="Subscription Expiring Soon",
        message="Your subscription will expire in 3 days. Please renew to continue using all features.",
    ),
    SUBSCRIPTION_EXPIRING_1_DAY: lambda metadata: NotificationContent(
        type="error",
        title="Subscription Expiring Tomorrow",
        message=(
            "Your subscription will expire tomorrow. "
            "Please renew immediately to avoid service interruption."
        ),
    ),
    SUBSCRIPTION_EXPIRED: lambda metadata: NotificationContent(
        type="error",
        title="Subscription Expired",
        message="Your subscription has expired. Please renew to restore access to all features.",
    ),
}


def get_notification_content(
    type_key: str, metadata: dict[str, Any] | None = None
) -> NotificationContent:
    """Build the content for a notification type key. Raises KeyError if unknown."""
    return NOTIFICATION_CONFIGS[type_key](metadata)
