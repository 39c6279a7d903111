"""
Complete Work Handler.
POST /operator/work/{workId}/complete

Marks the operator's unit completed and credits pieces x rate to the wallet.
"""
from stitchline.auth import get_user_sub
from stitchline.logging import log_event, logger
from stitchline.services import get_services
from stitchline.utils import format_response, get_path_param, result_response


def handler(event, context):
    log_event(event)
    try:
        operator_id = get_user_sub(event)
        if not operator_id:
            return format_response(401, {'message': 'Unauthorized'})

        work_id = get_path_param(event, 'workId')
        if not work_id:
            return format_response(400, {'message': 'workId is required'})

        return result_response(get_services().assignments.complete_work(work_id, operator_id))

    except Exception as e:
        logger.error(f"Error completing work: {str(e)}")
        return format_response(500, {'message': 'Internal Server Error'})
