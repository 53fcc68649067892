"""Checks raw client payloads before they reach the registry."""

from typing import Any

from pydantic import ValidationError

from errors import ErrorCode, ProtocolError
from logging_config import get_logger
from result import Err, Ok, Result
from schemas.events import ChatMessagePayload, JoinRoomPayload

logger = get_logger(__name__)


def _describe(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"])
        parts.append(f"{location}: {error['msg']}" if location else error["msg"])
    return "; ".join(parts)


def validate_join(raw: Any) -> Result[JoinRoomPayload, ProtocolError]:
    try:
        return Ok(JoinRoomPayload.model_validate(raw))
    except ValidationError as e:
        logger.debug(f"Rejected joinRoom payload: {e.errors()}")
        return Err(ProtocolError(ErrorCode.INVALID_INPUT, _describe(e)))


def validate_chat_message(raw: Any) -> Result[str, ProtocolError]:
    """Accepts either a bare string or ``{"text": ...}`` and returns escaped text."""
    if isinstance(raw, str):
        raw = {"text": raw}
    try:
        return Ok(ChatMessagePayload.model_validate(raw).text)
    except ValidationError as e:
        logger.debug(f"Rejected chatMessage payload: {e.errors()}")
        return Err(ProtocolError(ErrorCode.INVALID_INPUT, _describe(e)))
