"""
Submit Damage Report Handler.
POST /operator/damage-reports

Creates the report and places the bundle's payment on hold in one
transaction. Returns 201 with the report id and held amount.
"""
from stitchline.auth import get_user_name, get_user_sub
from stitchline.logging import log_event, logger
from stitchline.services import get_services
from stitchline.utils import format_response, parse_body, result_response


def handler(event, context):
    log_event(event)
    try:
        operator_id = get_user_sub(event)
        if not operator_id:
            return format_response(401, {'message': 'Unauthorized'})

        body = parse_body(event)
        # Reports are always filed by the caller
        report_data = dict(body)
        report_data['operatorId'] = operator_id
        report_data.setdefault('operatorName', get_user_name(event))

        result = get_services().damage_reports.submit(report_data)
        return result_response(result, success_code=201)

    except Exception as e:
        logger.error(f"Error submitting damage report: {str(e)}")
        return format_response(500, {'message': 'Internal Server Error'})
