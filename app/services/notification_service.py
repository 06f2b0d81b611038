from __future__ import annotations

from app.core.logger import get_logger
from app.models import Subscription

logger = get_logger(__name__)


def send_notification(channel: str, message: str, metadata: dict | None = None) -> dict:
    logger.info('Notification channel=%s message=%s metadata=%s', channel, message, metadata or {})
    return {'success': True, 'channel': channel}


def notify_subscription_event(subscription: Subscription, event: str, metadata: dict | None = None) -> dict:
    """Record a customer-facing notice about a subscription lifecycle change."""
    return send_notification(
        'customer',
        f'Subscription {event}',
        {
            'subscription_id': str(subscription.id),
            'consumer_id': str(subscription.consumer_id),
            'status': subscription.status,
            **(metadata or {}),
        },
    )
