"""
Get Held Bundles Handler.
GET /operator/wallet/held
"""
from stitchline.auth import get_user_sub
from stitchline.logging import log_event, logger
from stitchline.services import get_services
from stitchline.utils import format_response, result_response


def handler(event, context):
    log_event(event)
    try:
        operator_id = get_user_sub(event)
        if not operator_id:
            return format_response(401, {'message': 'Unauthorized'})

        return result_response(get_services().wallet.get_held_bundle_details(operator_id))

    except Exception as e:
        logger.error(f"Error getting held bundles: {str(e)}")
        return format_response(500, {'message': 'Internal Server Error'})
