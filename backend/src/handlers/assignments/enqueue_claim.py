"""
Enqueue Claim Handler.
POST /operator/work/{workId}/queue

Used instead of claim_work while a unit is heavily contended. The request
is resolved asynchronously by process_claim_queue and the outcome arrives
as a work_assignment notification.
"""
from stitchline.auth import get_user_name, get_user_sub
from stitchline.logging import log_event, logger
from stitchline.services import get_services
from stitchline.utils import format_response, get_path_param, parse_body, result_response

MIN_PRIORITY = 1
MAX_PRIORITY = 5


def handler(event, context):
    log_event(event)
    try:
        operator_id = get_user_sub(event)
        if not operator_id:
            return format_response(401, {'message': 'Unauthorized'})

        work_id = get_path_param(event, 'workId')
        if not work_id:
            return format_response(400, {'message': 'workId is required'})

        body = parse_body(event)
        try:
            priority = int(body.get('priority', MIN_PRIORITY))
        except (TypeError, ValueError):
            return format_response(400, {'message': 'priority must be a number'})
        if not MIN_PRIORITY <= priority <= MAX_PRIORITY:
            return format_response(400, {'message': f'priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}'})

        operator_info = {
            'name': body.get('operatorName') or get_user_name(event),
            'machineType': body.get('machineType'),
        }
        result = get_services().claim_queue.enqueue(work_id, operator_id, operator_info, priority)
        return result_response(result, success_code=202)

    except Exception as e:
        logger.error(f"Error queueing claim: {str(e)}")
        return format_response(500, {'message': 'Internal Server Error'})
