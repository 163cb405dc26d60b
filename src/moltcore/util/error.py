"""Error formatting helpers shared by the session layer and logging."""

import json
import traceback
from typing import Any, Dict, Optional


def format_error(error: Any) -> Optional[str]:
    """Return a user-facing message for known moltcore errors, else None."""
    from ..permission.permission import DeniedError, RejectedError
    from ..provider.errors import FailoverError, ModelNotFoundError

    if isinstance(error, ModelNotFoundError):
        return str(error)
    if isinstance(error, FailoverError):
        return f"{error} (provider={error.provider}, model={error.model})"
    if isinstance(error, (DeniedError, RejectedError)):
        return str(error)
    return None


def format_unknown_error(error: Any) -> str:
    """Format any error value, including a traceback when one is attached."""
    if isinstance(error, BaseException):
        if error.__traceback__:
            return "".join(traceback.format_exception(type(error), error, error.__traceback__))
        return f"{error.__class__.__name__}: {error}"

    if isinstance(error, (dict, list)):
        try:
            return json.dumps(error, indent=2)
        except (TypeError, ValueError):
            return "Unexpected error (unserializable)"

    return str(error)


def describe_error(error: BaseException) -> str:
    """Single-line message used for pattern based error classification."""
    text = str(error).strip()
    return text or error.__class__.__name__


def error_info(error: BaseException, name: Optional[str] = None) -> Dict[str, Any]:
    """Serialize an exception as ``{name, message}`` for messages and events."""
    message = format_error(error) or describe_error(error)
    return {"name": name or error.__class__.__name__, "message": message}
