"""
Notification dispatch.

Notifications are pushed onto an SQS outbox and delivered by the
deliver_notifications handler. Sending is fire-and-forget: a failure is
logged and never changes the outcome of the transition that triggered it.
"""
import json
import uuid
from typing import Any, Dict, List, Optional

import boto3

from .config import config
from .logging import logger
from .utils import DecimalEncoder, utc_now

# SQS batch limit is 10 messages
SQS_BATCH_SIZE = 10


def build_notification(
    notification_type: str,
    recipient_id: str,
    recipient_role: str,
    title: str,
    message: str,
    priority: str = 'normal',
    data: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Assemble the outbound notification message body."""
    return {
        'notificationId': str(uuid.uuid4()),
        'type': notification_type,
        'recipientId': recipient_id,
        'recipientRole': recipient_role,
        'title': title,
        'message': message,
        'priority': priority,
        'data': data or {},
        'createdAt': utc_now().isoformat()
    }


class NotificationDispatcher:
    """Publishes notifications to the SQS outbox."""

    def __init__(self, queue_url: str = None, sqs_client=None):
        self.queue_url = queue_url if queue_url is not None else config.NOTIFICATION_QUEUE_URL
        self.sqs = sqs_client or boto3.client('sqs', region_name=config.AWS_REGION)

    def send(self, notification: Dict[str, Any]) -> bool:
        """
        Send a single notification.

        Args:
            notification: Message body as dict (see build_notification)

        Returns:
            True if sent successfully, False otherwise
        """
        if not self.queue_url:
            logger.warning(f"No NOTIFICATION_QUEUE_URL configured, dropping {notification.get('type')}")
            return False
        try:
            self.sqs.send_message(
                QueueUrl=self.queue_url,
                MessageBody=json.dumps(notification, cls=DecimalEncoder)
            )
            logger.info(f"Notification {notification.get('type')} queued for {notification.get('recipientId')}")
            return True
        except Exception as e:
            logger.error(f"Error sending notification to SQS: {e}")
            return False

    def send_batch(self, notifications: List[Dict[str, Any]]) -> bool:
        """
        Send multiple notifications (max 10 per SQS batch).

        Returns:
            True if all sent successfully, False otherwise
        """
        if not notifications:
            return True
        if not self.queue_url:
            logger.warning(f"No NOTIFICATION_QUEUE_URL configured, dropping {len(notifications)} notifications")
            return False
        ok = True
        for i in range(0, len(notifications), SQS_BATCH_SIZE):
            batch = notifications[i:i + SQS_BATCH_SIZE]
            entries = [
                {
                    'Id': str(idx),
                    'MessageBody': json.dumps(msg, cls=DecimalEncoder)
                }
                for idx, msg in enumerate(batch)
            ]
            try:
                response = self.sqs.send_message_batch(QueueUrl=self.queue_url, Entries=entries)
                if response.get('Failed'):
                    logger.warning(f"Some notifications failed: {response['Failed']}")
                    ok = False
            except Exception as e:
                logger.error(f"Error sending notification batch to SQS: {e}")
                ok = False
        return ok
