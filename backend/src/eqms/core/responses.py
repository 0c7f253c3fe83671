"""
Response envelope used by every endpoint
"""
from typing import Any, Optional


def envelope(data: Any = None, message: Optional[str] = None, **extra: Any) -> dict:
    """{success, message, data} body; message is omitted on plain reads"""
    body: dict = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    body.update(extra)
    return body


def error_body(message: str, **extra: Any) -> dict:
    return {"success": False, "message": message, **extra}
