from typing import Any


def success(data: Any = None, message: str | None = None, **extra: Any) -> dict:
    """Success envelope shared by every route."""
    body: dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    body.update(extra)
    if data is not None:
        body["data"] = data
    return body


def failure(message: str, code: str | None = None, error: Any = None) -> dict:
    """Error envelope; `error` carries diagnostics and is left out in production."""
    body: dict[str, Any] = {"success": False, "message": message}
    if code:
        body["code"] = code
    if error is not None:
        body["error"] = error
    return body
