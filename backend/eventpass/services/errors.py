"""HTTP error helpers — every API error body carries a taxonomy ``code``."""
from typing import Any

from fastapi import HTTPException, status


def api_error(status_code: int, code: str, message: str, **extra: Any) -> HTTPException:
    """Build an HTTPException whose detail is ``{"code", "message", **extra}``."""
    return HTTPException(status_code=status_code, detail={"code": code, "message": message, **extra})


def not_found(what: str) -> HTTPException:
    return api_error(status.HTTP_404_NOT_FOUND, "NOT_FOUND", f"{what} not found")


def validation_error(message: str, **extra: Any) -> HTTPException:
    return api_error(status.HTTP_400_BAD_REQUEST, "VALIDATION", message, **extra)


def not_owned(message: str) -> HTTPException:
    return api_error(status.HTTP_403_FORBIDDEN, "NOT_OWNED", message)
