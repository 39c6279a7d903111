"""
Queue Stats Handler.
GET /supervisor/work/{workId}/queue
"""
from stitchline.auth import is_supervisor
from stitchline.logging import log_event, logger
from stitchline.services import get_services
from stitchline.utils import format_response, get_path_param, result_response


def handler(event, context):
    log_event(event)
    try:
        if not is_supervisor(event):
            return format_response(403, {'message': 'Supervisor access required'})

        work_id = get_path_param(event, 'workId')
        if not work_id:
            return format_response(400, {'message': 'workId is required'})

        return result_response(get_services().claim_queue.get_queue_stats(work_id))

    except Exception as e:
        logger.error(f"Error getting queue stats: {str(e)}")
        return format_response(500, {'message': 'Internal Server Error'})
