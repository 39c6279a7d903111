"""
Logging setup shared by services and handlers.
"""
import json
import logging

from .config import config

logger = logging.getLogger('stitchline')
logger.setLevel(config.LOG_LEVEL)

# Add handler if not already configured
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    logger.addHandler(handler)

# Routing fields of an API Gateway event; bodies and headers are never logged
EVENT_FIELDS = ('resource', 'httpMethod', 'path', 'pathParameters', 'queryStringParameters')


def log_event(event: dict) -> None:
    """Log the route and caller of an incoming Lambda event."""
    try:
        safe_event = {k: event[k] for k in EVENT_FIELDS if k in event}
        claims = ((event.get('requestContext') or {}).get('authorizer') or {}).get('claims') or {}
        if claims.get('sub'):
            safe_event['caller'] = claims['sub']
        logger.info(f"Lambda event: {json.dumps(safe_event, default=str)}")
    except Exception as e:
        logger.warning(f"Could not log event: {e}")
