"""
Cancel / Reject Damage Report Handler.
POST /operator/damage-reports/{reportId}/cancel
POST /supervisor/damage-reports/{reportId}/reject

Only allowed before rework starts. The payment hold is reversed.
"""
from stitchline.auth import get_user_sub, is_supervisor
from stitchline.logging import log_event, logger
from stitchline.services import get_services
from stitchline.utils import format_response, get_path_param, parse_body, result_response


def handler(event, context):
    log_event(event)
    try:
        user_id = get_user_sub(event)
        if not user_id:
            return format_response(401, {'message': 'Unauthorized'})

        report_id = get_path_param(event, 'reportId')
        if not report_id:
            return format_response(400, {'message': 'reportId is required'})

        reason = parse_body(event).get('reason', '')
        reports = get_services().damage_reports

        if event.get('resource', '').endswith('/reject'):
            if not is_supervisor(event):
                return format_response(403, {'message': 'Supervisor access required'})
            result = reports.reject_report(report_id, user_id, reason)
        else:
            result = reports.cancel_report(report_id, user_id, reason)
        return result_response(result)

    except Exception as e:
        logger.error(f"Error cancelling damage report: {str(e)}")
        return format_response(500, {'message': 'Internal Server Error'})
