"""Tunnel protocol message decoding."""

import base64
import binascii
import json

from ..common.constants import DEFAULT_BODY_ENCODING
from ..common.log_base import get_logger
from .message import Envelope, MessageType, payload_class_for

logger = get_logger(__name__)


def parse_message(data: str | bytes | bytearray | memoryview) -> Envelope | None:
    """
    Parse a raw frame into an envelope.

    Args:
        data: JSON text, or UTF-8 encoded JSON bytes

    Returns:
        The envelope, or None if the frame is not a JSON object with a known
        ``type`` and a payload matching that type. Never raises.
    """
    try:
        if isinstance(data, (bytes, bytearray, memoryview)):
            data = bytes(data).decode("utf-8")
        parsed = json.loads(data)
    except (TypeError, ValueError) as e:
        logger.debug("Discarding non-JSON frame", error=str(e))
        return None
    except RecursionError:
        logger.warning("Discarding frame nested too deeply to decode", size=len(data))
        return None

    if not isinstance(parsed, dict) or not parsed.get("type"):
        return None

    try:
        message_type = MessageType(parsed["type"])
    except (TypeError, ValueError):
        logger.warning("Unknown message type", message_type=str(parsed["type"]))
        return None

    payload_data = parsed.get("payload")
    if payload_data is None:
        payload_data = {}
    if not isinstance(payload_data, dict):
        return None

    try:
        payload_cls = payload_class_for(message_type, payload_data)
        payload = payload_cls.from_dict(payload_data)
    except TypeError as e:
        logger.warning(
            "Payload does not match message type",
            message_type=message_type.value,
            error=str(e),
        )
        return None

    return Envelope(type=message_type, payload=payload)


def decode_body(
    body: str | None, encoding: str | None = DEFAULT_BODY_ENCODING
) -> bytes | None:
    """
    Decode an envelope body field back into bytes.

    Args:
        body: Encoded body, or None
        encoding: ``"base64"`` (the default, also used when None) or a text
            encoding tag, in which case the body is taken as UTF-8 text

    Returns:
        Decoded bytes, or None for an absent body

    Raises:
        ValueError: If the body is not a string or is malformed base64
    """
    if body is None:
        return None
    if not isinstance(body, str):
        raise ValueError(f"Body must be a string, got {type(body).__name__}")

    if (encoding or DEFAULT_BODY_ENCODING) == "base64":
        try:
            return base64.b64decode(body, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Malformed base64 body: {e}") from e

    return body.encode("utf-8")
