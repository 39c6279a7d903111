"""
Authentication utilities for extracting user info from Cognito tokens.
"""
from typing import Optional


def get_user_sub(event: dict) -> Optional[str]:
    """
    Extract user sub (unique ID) from Cognito authorizer claims.

    Args:
        event: API Gateway Lambda proxy event

    Returns:
        User sub string or None if not authenticated
    """
    try:
        return event['requestContext']['authorizer']['claims']['sub']
    except (KeyError, TypeError):
        return None


def get_user_name(event: dict) -> Optional[str]:
    """Extract the display name from Cognito claims."""
    try:
        claims = event['requestContext']['authorizer']['claims']
        return claims.get('name') or claims.get('cognito:username')
    except (KeyError, TypeError):
        return None


def get_user_groups(event: dict) -> list:
    """Extract user groups (operator, supervisor, admin) from Cognito claims."""
    try:
        groups = event['requestContext']['authorizer']['claims'].get('cognito:groups', '')
        if isinstance(groups, str):
            return groups.split(',') if groups else []
        return groups or []
    except (KeyError, TypeError):
        return []


def is_admin(event: dict) -> bool:
    """Check if user belongs to admin group."""
    return 'admin' in get_user_groups(event)


def is_supervisor(event: dict) -> bool:
    """Supervisors and admins may drive rework transitions."""
    return 'supervisor' in get_user_groups(event) or is_admin(event)
