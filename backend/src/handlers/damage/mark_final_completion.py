"""
Mark Final Completion Handler.
POST /operator/damage-reports/{reportId}/complete

The operator confirms the returned pieces are done. This closes the report
and releases the held payment; a second call is rejected with 409.
"""
from stitchline.auth import get_user_sub
from stitchline.logging import log_event, logger
from stitchline.services import get_services
from stitchline.utils import format_response, get_path_param, parse_body, result_response


def handler(event, context):
    log_event(event)
    try:
        operator_id = get_user_sub(event)
        if not operator_id:
            return format_response(401, {'message': 'Unauthorized'})

        report_id = get_path_param(event, 'reportId')
        if not report_id:
            return format_response(400, {'message': 'reportId is required'})

        result = get_services().damage_reports.mark_final_completion(
            report_id, operator_id, parse_body(event)
        )
        return result_response(result)

    except Exception as e:
        logger.error(f"Error marking final completion: {str(e)}")
        return format_response(500, {'message': 'Internal Server Error'})
