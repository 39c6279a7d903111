"""
Claim Work Handler.
POST /operator/work/{workId}/claim
"""
from stitchline.auth import get_user_name, get_user_sub
from stitchline.logging import log_event, logger
from stitchline.services import get_services
from stitchline.utils import format_response, get_path_param, parse_body, result_response


def handler(event, context):
    """
    Self-assign an available work unit.

    Exactly one of any number of concurrent callers succeeds; the rest get
    a 409 with a friendly conflict message.
    """
    log_event(event)
    try:
        operator_id = get_user_sub(event)
        if not operator_id:
            return format_response(401, {'message': 'Unauthorized'})

        work_id = get_path_param(event, 'workId')
        if not work_id:
            return format_response(400, {'message': 'workId is required'})

        body = parse_body(event)
        operator_info = {
            'name': body.get('operatorName') or get_user_name(event),
            'machineType': body.get('machineType'),
        }
        result = get_services().assignments.claim(work_id, operator_id, operator_info)
        return result_response(result)

    except Exception as e:
        logger.error(f"Error claiming work: {str(e)}")
        return format_response(500, {'message': 'Internal Server Error'})
