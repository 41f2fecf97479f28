"""
Command/query messages from the popup, interstitial and website.

Every message is a dict with a "type" and a type-specific payload, handled
by one dispatcher. Responses are plain dicts so they can go straight back
over the bridge as JSON.
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, Mapping

logger = logging.getLogger(__name__)


class MessageType(str, Enum):
    """Request kinds the engine understands."""

    GET_STATUS = "GET_STATUS"
    LOGIN_SUCCESS = "LOGIN_SUCCESS"  # {identity, email} from the website
    SET_IDENTITY = "SET_IDENTITY"  # {identity, email} from the popup
    USER_LOGGED_OUT = "USER_LOGGED_OUT"
    TOGGLE_BLOCKING = "TOGGLE_BLOCKING"  # {enabled}
    REQUEST_EMERGENCY_ACCESS = "REQUEST_EMERGENCY_ACCESS"  # {site, reason}


def _identity_from(message: Mapping[str, Any]) -> str:
    # The website historically sent "userId"
    return str(message.get("identity") or message.get("userId") or "")


def _handle_get_status(engine, message: Mapping[str, Any]) -> Dict[str, Any]:
    return {"success": True, **engine.get_status()}


def _handle_login(engine, message: Mapping[str, Any]) -> Dict[str, Any]:
    identity = _identity_from(message)
    if not identity:
        return {"success": False, "error": "identity is required"}
    engine.login(identity, message.get("email"))
    return {"success": True}


def _handle_logout(engine, message: Mapping[str, Any]) -> Dict[str, Any]:
    engine.logout()
    return {"success": True}


def _handle_toggle_blocking(engine, message: Mapping[str, Any]) -> Dict[str, Any]:
    if "enabled" not in message:
        return {"success": False, "error": "enabled is required"}
    engine.set_blocking(bool(message["enabled"]))
    return {"success": True, "is_blocking": engine.is_blocking}


def _handle_emergency_access(engine, message: Mapping[str, Any]) -> Dict[str, Any]:
    evaluation = engine.request_emergency_access(message.get("site", ""), message.get("reason"))
    return {"success": True, **evaluation.to_dict()}


_HANDLERS: Dict[MessageType, Callable[[Any, Mapping[str, Any]], Dict[str, Any]]] = {
    MessageType.GET_STATUS: _handle_get_status,
    MessageType.LOGIN_SUCCESS: _handle_login,
    MessageType.SET_IDENTITY: _handle_login,
    MessageType.USER_LOGGED_OUT: _handle_logout,
    MessageType.TOGGLE_BLOCKING: _handle_toggle_blocking,
    MessageType.REQUEST_EMERGENCY_ACCESS: _handle_emergency_access,
}


def handle_message(engine, message: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Dispatch one message to the engine.

    Args:
        engine: DetoxEngine instance.
        message: {"type": "<MessageType>", ...payload}

    Returns:
        Response dict. Always has "success"; failures carry "error".
    """
    try:
        message_type = MessageType(message.get("type"))
    except ValueError:
        logger.warning(f"Unknown message type: {message.get('type')!r}")
        return {"success": False, "error": "Unknown message type"}

    logger.debug(f"Handling message {message_type.value}")
    return _HANDLERS[message_type](engine, message)
