"""
Escalate Overdue Reports Handler.
Triggered by EventBridge scheduler every 5 minutes.

Reports still waiting on their supervisor past the urgency SLA
(urgent 1h, high 4h, normal 24h, low 72h) are escalated to admin.
"""
from stitchline.logging import logger
from stitchline.services import get_services


def handler(event, context):
    logger.info("Running damage report SLA check...")
    result = get_services().damage_reports.escalate_overdue()
    if not result['success']:
        raise RuntimeError(result['error'])

    logger.info(f"Escalation check complete: {len(result['escalated'])} of {result['checked']} escalated")
    return {
        'statusCode': 200,
        'checked': result['checked'],
        'escalated': result['escalated'],
    }
