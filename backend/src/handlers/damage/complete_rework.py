"""
Complete Rework Handler.
POST /supervisor/damage-reports/{reportId}/complete

Body: partsReplaced, timeSpentMinutes, qualityCheckPassed, costEstimate, supervisorNotes
"""
from stitchline.auth import get_user_sub, is_supervisor
from stitchline.logging import log_event, logger
from stitchline.services import get_services
from stitchline.utils import format_response, get_path_param, parse_body, result_response


def handler(event, context):
    log_event(event)
    try:
        if not is_supervisor(event):
            return format_response(403, {'message': 'Supervisor access required'})

        report_id = get_path_param(event, 'reportId')
        if not report_id:
            return format_response(400, {'message': 'reportId is required'})

        result = get_services().damage_reports.complete_rework(
            report_id, get_user_sub(event), parse_body(event)
        )
        return result_response(result)

    except Exception as e:
        logger.error(f"Error completing rework: {str(e)}")
        return format_response(500, {'message': 'Internal Server Error'})
