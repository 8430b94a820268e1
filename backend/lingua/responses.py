from typing import Any, Dict

from sqlalchemy.exc import SQLAlchemyError

from lingua.errors import PersistenceError


def success(message: Any = None) -> Dict[str, Any]:
    return {'success': True, 'message': message}


def failure(reason: Any) -> Dict[str, Any]:
    """Build a failed envelope from an exception or a plain reason string.

    Database errors are reported as a ``PersistenceError`` so driver
    messages and SQL never reach the client.
    """
    if isinstance(reason, SQLAlchemyError):
        reason = PersistenceError.from_exc(reason)
    return {'success': False, 'message': str(reason)}
