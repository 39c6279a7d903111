"""
Get Wallet Handler.
GET /operator/wallet
GET /supervisor/operators/{operatorId}/wallet
"""
from stitchline.auth import get_user_sub, is_supervisor
from stitchline.logging import log_event, logger
from stitchline.services import get_services
from stitchline.utils import format_response, get_path_param, result_response


def handler(event, context):
    """
    Handler to get an operator's wallet balance.
    A missing wallet reads as zero balances.
    """
    log_event(event)
    try:
        user_id = get_user_sub(event)
        if not user_id:
            return format_response(401, {'message': 'Unauthorized'})

        operator_id = get_path_param(event, 'operatorId') or user_id
        if operator_id != user_id and not is_supervisor(event):
            return format_response(403, {'message': 'Supervisor access required'})

        return result_response(get_services().wallet.get_balance(operator_id))

    except Exception as e:
        logger.error(f"Error getting wallet: {str(e)}")
        return format_response(500, {'message': 'Internal Server Error'})
