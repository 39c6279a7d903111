"""
Wage History Handler.
GET /operator/wallet/wages?limit=20
GET /operator/wallet/summary?days=30
"""
from stitchline.auth import get_user_sub
from stitchline.logging import log_event, logger
from stitchline.services import get_services
from stitchline.utils import format_response, get_query_param, result_response


def _int_param(event, name, default):
    try:
        value = int(get_query_param(event, name, default))
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def handler(event, context):
    log_event(event)
    try:
        operator_id = get_user_sub(event)
        if not operator_id:
            return format_response(401, {'message': 'Unauthorized'})

        wallet = get_services().wallet
        if event.get('resource', '').endswith('/summary'):
            return result_response(wallet.get_earning_summary(operator_id, _int_param(event, 'days', 30)))
        return result_response(wallet.get_wage_history(operator_id, _int_param(event, 'limit', 20)))

    except Exception as e:
        logger.error(f"Error getting wage history: {str(e)}")
        return format_response(500, {'message': 'Internal Server Error'})
