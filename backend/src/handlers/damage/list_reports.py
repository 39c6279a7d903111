"""
List Damage Reports Handler.
GET /supervisor/damage-reports?status=...   - supervisor queue
GET /operator/damage-reports?view=pending   - operator reports / pending rework
GET /damage-reports/{reportId}              - single report
"""
from stitchline.auth import get_user_sub, is_admin, is_supervisor
from stitchline.logging import log_event, logger
from stitchline.services import get_services
from stitchline.utils import format_response, get_path_param, get_query_param, result_response

DEFAULT_LIMIT = 50


def handler(event, context):
    log_event(event)
    try:
        user_id = get_user_sub(event)
        if not user_id:
            return format_response(401, {'message': 'Unauthorized'})

        reports = get_services().damage_reports
        report_id = get_path_param(event, 'reportId')
        if report_id:
            result = reports.get_report(report_id)
            if result['success'] and not is_supervisor(event) and result['report'].get('operatorId') != user_id:
                return format_response(403, {'message': 'Not your report'})
            return result_response(result)

        if event.get('resource', '').startswith('/supervisor'):
            if not is_supervisor(event):
                return format_response(403, {'message': 'Supervisor access required'})
            # Admins may look at any supervisor's queue
            supervisor_id = (get_query_param(event, 'supervisorId') if is_admin(event) else None) or user_id
            return result_response(reports.get_supervisor_queue(supervisor_id, get_query_param(event, 'status')))

        if get_query_param(event, 'view') == 'pending':
            return result_response(reports.get_pending_rework_pieces(user_id))

        try:
            limit = int(get_query_param(event, 'limit', DEFAULT_LIMIT))
        except (TypeError, ValueError):
            limit = DEFAULT_LIMIT
        return result_response(reports.get_operator_reports(user_id, limit))

    except Exception as e:
        logger.error(f"Error listing damage reports: {str(e)}")
        return format_response(500, {'message': 'Internal Server Error'})
