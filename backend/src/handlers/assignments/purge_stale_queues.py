"""
Purge Stale Queues Handler.
Triggered by EventBridge scheduler every few minutes.
"""
from stitchline.logging import logger
from stitchline.services import get_services


def handler(event, context):
    """Drop claim queues whose requests are all older than CLAIM_QUEUE_MAX_AGE_SECONDS."""
    logger.info("Running stale claim queue cleanup...")
    result = get_services().claim_queue.purge_stale()
    logger.info(f"Checked {result['checked']} queues, purged {result['purged']}")
    return result
