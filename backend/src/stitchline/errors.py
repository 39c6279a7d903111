"""
Error taxonomy for the piecework backend.

Services raise these internally and convert them into structured
``{'success': False, ...}`` results at their public boundary.
"""
from typing import List, Optional


class StitchlineError(Exception):
    """Base class for expected, user-facing failures."""
    error_type = 'error'

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.user_message = user_message

    def to_result(self) -> dict:
        result = {
            'success': False,
            'error': self.message,
            'errorType': self.error_type,
        }
        if self.user_message:
            result['message'] = self.user_message
        return result


class ConflictError(StitchlineError):
    """A compare-and-swap was lost to another writer."""
    error_type = 'conflict'


class ValidationError(StitchlineError):
    """Input rejected before any write."""
    error_type = 'validation'

    def __init__(self, errors: List[str], warnings: Optional[List[str]] = None):
        super().__init__(f"Validation failed: {', '.join(errors)}")
        self.errors = errors
        self.warnings = warnings or []

    def to_result(self) -> dict:
        result = super().to_result()
        result['errors'] = self.errors
        if self.warnings:
            result['warnings'] = self.warnings
        return result


class NotFoundError(StitchlineError):
    error_type = 'not_found'


class ConsistencyError(StitchlineError):
    """Transition attempted from an invalid current state."""
    error_type = 'consistency'


class InfrastructureError(StitchlineError):
    """The store or a downstream service is unavailable."""
    error_type = 'infrastructure'

    def __init__(self, message: str):
        super().__init__(message, user_message='Temporary system problem, please try again')
