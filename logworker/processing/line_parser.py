"""Log line grammar: ``[<timestamp>] <LEVEL> <message>[ <json-payload>]``."""

import json
import re
from typing import Any, Dict, Optional

from pydantic import BaseModel

LOG_PATTERN = re.compile(r"\[(.*?)\]\s+(\w+)\s+(.*?)(?:\s+(\{.*\}))?$")


class LogRecord(BaseModel):
    timestamp: str
    level: str
    message: str
    structured_payload: Optional[Dict[str, Any]] = None


def parse_line(line: str) -> Optional[LogRecord]:
    """Parse one raw line. Returns None for lines outside the grammar.

    A trailing JSON object that fails to decode is dropped; the text message
    is still returned.
    """
    if not isinstance(line, str):
        return None

    match = LOG_PATTERN.search(line.rstrip("\r\n"))
    if match is None:
        return None

    timestamp, level, message, json_text = match.groups()

    payload = None
    if json_text:
        try:
            decoded = json.loads(json_text)
        except ValueError:
            decoded = None
        if isinstance(decoded, dict):
            payload = decoded

    return LogRecord(
        timestamp=timestamp,
        level=level,
        message=message.rstrip(),
        structured_payload=payload,
    )


def is_ip_address(value: Any) -> bool:
    """True for a dotted-quad IPv4 address with every segment in 0..255."""
    if not isinstance(value, str):
        return False
    parts = value.split(".")
    if len(parts) != 4:
        return False
    for part in parts:
        if not (part.isascii() and part.isdigit()):
            return False
        if int(part) > 255:
            return False
    return True
