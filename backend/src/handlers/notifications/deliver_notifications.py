"""
Deliver Notifications Handler.
Triggered by the notification SQS queue.

Stores each dispatched notification as an unread in-app record that
expires after NOTIFICATION_TTL_DAYS (DynamoDB TTL on expiresAt). SQS
delivery is at-least-once, so a repeat of an already stored notification
is skipped.
"""
import json
from datetime import timedelta
from decimal import Decimal

from stitchline.config import config
from stitchline.logging import logger
from stitchline.services import get_services
from stitchline.store import Put, TransactionConflict
from stitchline.utils import utc_now


def inbox_item(notification: dict, now) -> dict:
    """Notification message body -> Notifications table item."""
    expires = now + timedelta(days=config.NOTIFICATION_TTL_DAYS)
    return {
        'notificationId': notification['notificationId'],
        'recipientId': notification['recipientId'],
        'recipientRole': notification.get('recipientRole'),
        'type': notification['type'],
        'title': notification.get('title', ''),
        'message': notification.get('message', ''),
        'priority': notification.get('priority', 'normal'),
        'data': notification.get('data') or {},
        'read': False,
        'createdAt': notification.get('createdAt') or now.isoformat(),
        'deliveredAt': now.isoformat(),
        'expiresAt': int(expires.timestamp()),
    }


def process_record(store, record, now) -> bool:
    """Store one SQS message. Returns False for duplicates."""
    notification = json.loads(record['body'], parse_float=Decimal)
    try:
        store.put(Put(config.NOTIFICATIONS_TABLE, inbox_item(notification, now), if_not_exists=True))
    except TransactionConflict:
        logger.info(f"Notification {notification['notificationId']} already delivered")
        return False
    return True


def handler(event, context):
    """
    Returns partial batch failures so only failed messages are redelivered.
    """
    if 'Records' not in event:
        return {'batchItemFailures': []}

    store = get_services().store
    now = utc_now()
    failures = []
    delivered = 0
    for record in event['Records']:
        try:
            if process_record(store, record, now):
                delivered += 1
        except Exception as e:
            logger.error(f"Error delivering notification {record.get('messageId')}: {e}")
            failures.append({'itemIdentifier': record.get('messageId')})

    logger.info(f"Delivered {delivered} of {len(event['Records'])} notifications")
    return {'batchItemFailures': failures}
