"""
网关错误映射。

HTTP 错误统一使用 ErrorResponse 结构：
{
    "error": "not_found",
    "message": "session not found: agent:main:main",
    "code": 404,
    "details": {...}
}

RPC 错误使用 JSON-RPC 风格的整数错误码。
会话层异常（SessionError 子类）到两种错误形式的映射集中在这里。
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status
from pydantic import BaseModel, Field

from highclaw.session.errors import (
    AgentTimeoutError,
    InvalidInputError,
    PolicyViolationError,
    SessionError,
    SessionNotFoundError,
)

# JSON-RPC 错误码
RPC_INVALID_REQUEST = -32600
RPC_METHOD_NOT_FOUND = -32601
RPC_INVALID_PARAMS = -32602
RPC_INTERNAL_ERROR = -32603
RPC_NOT_FOUND = -32001
RPC_POLICY_VIOLATION = -32003
RPC_TIMEOUT = -32004


class ErrorResponse(BaseModel):
    """HTTP 错误响应体。"""

    error: str = Field(..., description="Machine-readable error type")
    message: str = Field(..., description="Human-readable error message")
    code: int = Field(..., description="HTTP status code for this error")
    details: Optional[Dict[str, Any]] = Field(
        default=None, description="Optional structured error details"
    )


def http_error(
    status_code: int,
    *,
    error: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> HTTPException:
    payload = ErrorResponse(error=error, message=message, code=status_code, details=details)
    return HTTPException(status_code=status_code, detail=payload.model_dump())


def bad_request(message: str, *, details: Optional[Dict[str, Any]] = None) -> HTTPException:
    return http_error(
        status.HTTP_400_BAD_REQUEST, error="bad_request", message=message, details=details
    )


def not_found(message: str, *, details: Optional[Dict[str, Any]] = None) -> HTTPException:
    return http_error(
        status.HTTP_404_NOT_FOUND, error="not_found", message=message, details=details
    )


def conflict(message: str, *, details: Optional[Dict[str, Any]] = None) -> HTTPException:
    return http_error(
        status.HTTP_409_CONFLICT, error="conflict", message=message, details=details
    )


def gateway_timeout(message: str, *, details: Optional[Dict[str, Any]] = None) -> HTTPException:
    return http_error(
        status.HTTP_504_GATEWAY_TIMEOUT, error="timeout", message=message, details=details
    )


def internal_error(message: str, *, details: Optional[Dict[str, Any]] = None) -> HTTPException:
    return http_error(
        status.HTTP_500_INTERNAL_SERVER_ERROR, error="internal", message=message, details=details
    )


def to_http_error(exc: SessionError) -> HTTPException:
    """会话层异常 → HTTPException。"""
    message = str(exc)
    details = {"type": exc.code}
    if isinstance(exc, SessionNotFoundError):
        return not_found(message, details=details)
    if isinstance(exc, InvalidInputError):
        return bad_request(message, details=details)
    if isinstance(exc, PolicyViolationError):
        return conflict(message, details=details)
    if isinstance(exc, AgentTimeoutError):
        return gateway_timeout(message, details=details)
    return internal_error(message, details=details)


def to_rpc_code(exc: SessionError) -> int:
    """会话层异常 → RPC 错误码。"""
    if isinstance(exc, SessionNotFoundError):
        return RPC_NOT_FOUND
    if isinstance(exc, InvalidInputError):
        return RPC_INVALID_PARAMS
    if isinstance(exc, PolicyViolationError):
        return RPC_POLICY_VIOLATION
    if isinstance(exc, AgentTimeoutError):
        return RPC_TIMEOUT
    return RPC_INTERNAL_ERROR


__all__ = [
    "ErrorResponse",
    "RPC_INTERNAL_ERROR",
    "RPC_INVALID_PARAMS",
    "RPC_INVALID_REQUEST",
    "RPC_METHOD_NOT_FOUND",
    "RPC_NOT_FOUND",
    "RPC_POLICY_VIOLATION",
    "RPC_TIMEOUT",
    "bad_request",
    "conflict",
    "gateway_timeout",
    "http_error",
    "internal_error",
    "not_found",
    "to_http_error",
    "to_rpc_code",
]
