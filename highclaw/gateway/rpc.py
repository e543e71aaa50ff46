"""
RPC 分发器 - WebSocket 上的 JSON-RPC 风格协议。

请求：{"id": "1", "method": "sessions.get", "params": {"key": "agent:main:main"}}
响应：{"id": "1", "result": {...}} 或 {"id": "1", "error": {"code": -32001, "message": "..."}}

方法一览：
- health
- sessions.list / sessions.get / sessions.create / sessions.delete
- sessions.reset / sessions.patch / sessions.prune
- sessions.bind / sessions.unbind / sessions.bindings
- chat.send

参数使用 camelCase（sessionKey、idempotencyKey），由 pydantic 模型校验，
校验失败返回 -32602；会话层异常按 errors.to_rpc_code 映射。

【Java 开发者类比】
- RPCDispatcher 相当于一个按 method 名路由的 DispatcherServlet
- 参数模型相当于带 @Valid 注解的 DTO
"""

import json
import time
from typing import Any, Awaitable, Callable

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from highclaw import __version__
from highclaw.gateway.errors import (
    RPC_INTERNAL_ERROR,
    RPC_INVALID_PARAMS,
    RPC_INVALID_REQUEST,
    RPC_METHOD_NOT_FOUND,
    to_rpc_code,
)
from highclaw.session.errors import SessionError
from highclaw.session.service import SessionService, session_to_dict


# ==============================================================================
# 协议模型
# ==============================================================================


class RPCRequest(BaseModel):
    id: str | int = ""
    method: str
    params: dict[str, Any] = Field(default_factory=dict)


class RPCError(BaseModel):
    code: int
    message: str


class RPCResponse(BaseModel):
    id: str | int = ""
    result: Any = None
    error: RPCError | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.error is not None:
            return {"id": self.id, "error": self.error.model_dump()}
        return {"id": self.id, "result": self.result}


class _Params(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class KeyParams(_Params):
    key: str


class CreateParams(_Params):
    key: str
    channel: str = ""


class PatchParams(_Params):
    key: str
    model: str | None = None
    thinking_level: str | None = Field(default=None, alias="thinkingLevel")
    verbose_level: str | None = Field(default=None, alias="verboseLevel")
    agent_id: str | None = Field(default=None, alias="agentId")
    group_activation: str | None = Field(default=None, alias="groupActivation")


class BindParams(_Params):
    channel: str
    conversation: str
    session_key: str = Field(alias="sessionKey")


class UnbindParams(_Params):
    channel: str
    conversation: str


class PruneParams(_Params):
    max_age_days: int = Field(default=30, alias="maxAgeDays", ge=0)
    max_count: int = Field(default=500, alias="maxCount", ge=0)


class ChatSendParams(_Params):
    session_key: str = Field(default="", alias="sessionKey")
    message: str
    idempotency_key: str | None = Field(default=None, alias="idempotencyKey")
    channel: str = "rpc"


# ==============================================================================
# 分发器
# ==============================================================================


class RPCDispatcher:
    """
    按 method 名把请求分发给 SessionService。

    属性:
        service: 会话服务
        prune_max_age_days / prune_max_count: sessions.prune 未指定参数时的默认值
    """

    def __init__(
        self,
        service: SessionService,
        prune_max_age_days: int = 30,
        prune_max_count: int = 500,
    ):
        self.service = service
        self.prune_max_age_days = prune_max_age_days
        self.prune_max_count = prune_max_count
        self._started = time.monotonic()
        self._methods: dict[str, Callable[[dict[str, Any]], Awaitable[Any]]] = {
            "health": self._health,
            "sessions.list": self._sessions_list,
            "sessions.get": self._sessions_get,
            "sessions.create": self._sessions_create,
            "sessions.delete": self._sessions_delete,
            "sessions.reset": self._sessions_reset,
            "sessions.patch": self._sessions_patch,
            "sessions.bind": self._sessions_bind,
            "sessions.unbind": self._sessions_unbind,
            "sessions.bindings": self._sessions_bindings,
            "sessions.prune": self._sessions_prune,
            "chat.send": self._chat_send,
        }

    @property
    def methods(self) -> list[str]:
        return sorted(self._methods)

    async def handle_text(self, raw: str) -> str:
        """处理一帧 WebSocket 文本，返回响应 JSON。"""
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Invalid RPC message: not JSON")
            return json.dumps(_error("", RPC_INVALID_REQUEST, "invalid JSON").to_dict())
        response = await self.dispatch(payload)
        return json.dumps(response.to_dict(), ensure_ascii=False)

    async def dispatch(self, payload: Any) -> RPCResponse:
        """
        分发一个已解析的请求。

        参数:
            payload: 请求字典

        返回:
            RPCResponse（成功或错误）
        """
        try:
            request = RPCRequest.model_validate(payload)
        except ValidationError as e:
            req_id = payload.get("id") if isinstance(payload, dict) else None
            if not isinstance(req_id, (str, int)):
                req_id = ""
            return _error(req_id, RPC_INVALID_REQUEST, f"invalid request: {e.errors()[0]['msg']}")

        handler = self._methods.get(request.method)
        if handler is None:
            return _error(request.id, RPC_METHOD_NOT_FOUND, f"unknown method: {request.method}")

        logger.debug(f"RPC request {request.id}: {request.method}")
        try:
            result = await handler(request.params)
        except ValidationError as e:
            return _error(request.id, RPC_INVALID_PARAMS, f"invalid params: {_first_error(e)}")
        except SessionError as e:
            return _error(request.id, to_rpc_code(e), str(e))
        except Exception as e:
            logger.error(f"RPC method {request.method} failed: {e}")
            return _error(request.id, RPC_INTERNAL_ERROR, str(e))
        return RPCResponse(id=request.id, result=result)

    # ------------------------------------------------------------------
    # 方法实现
    # ------------------------------------------------------------------

    async def _health(self, params: dict[str, Any]) -> dict[str, Any]:
        return {
            "status": "ok",
            "version": __version__,
            "uptime": round(time.monotonic() - self._started, 3),
            "sessions": self.service.count(),
            "current": self.service.current(),
        }

    async def _sessions_list(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        return [s.to_dict() for s in self.service.list()]

    async def _sessions_get(self, params: dict[str, Any]) -> dict[str, Any]:
        p = KeyParams.model_validate(params)
        return session_to_dict(self.service.get(p.key))

    async def _sessions_create(self, params: dict[str, Any]) -> dict[str, Any]:
        p = CreateParams.model_validate(params)
        return session_to_dict(self.service.create(p.key, p.channel))

    async def _sessions_delete(self, params: dict[str, Any]) -> dict[str, Any]:
        p = KeyParams.model_validate(params)
        return {"ok": True, "deleted": self.service.delete(p.key)}

    async def _sessions_reset(self, params: dict[str, Any]) -> dict[str, Any]:
        p = KeyParams.model_validate(params)
        self.service.reset(p.key)
        return {"ok": True, "key": p.key}

    async def _sessions_patch(self, params: dict[str, Any]) -> dict[str, Any]:
        p = PatchParams.model_validate(params)
        summary = self.service.patch(
            p.key,
            model=p.model,
            thinking_level=p.thinking_level,
            verbose_level=p.verbose_level,
            agent_id=p.agent_id,
            group_activation=p.group_activation,
        )
        return summary.to_dict()

    async def _sessions_bind(self, params: dict[str, Any]) -> dict[str, Any]:
        p = BindParams.model_validate(params)
        return self.service.bind(p.channel, p.conversation, p.session_key).to_dict()

    async def _sessions_unbind(self, params: dict[str, Any]) -> dict[str, Any]:
        p = UnbindParams.model_validate(params)
        return {"ok": True, "removed": self.service.unbind(p.channel, p.conversation)}

    async def _sessions_bindings(self, params: dict[str, Any]) -> list[dict[str, str]]:
        return [b.to_dict() for b in self.service.list_bindings()]

    async def _sessions_prune(self, params: dict[str, Any]) -> dict[str, int]:
        defaults = {"maxAgeDays": self.prune_max_age_days, "maxCount": self.prune_max_count}
        p = PruneParams.model_validate({**defaults, **params})
        return self.service.prune_stale(p.max_age_days, p.max_count).to_dict()

    async def _chat_send(self, params: dict[str, Any]) -> dict[str, Any]:
        p = ChatSendParams.model_validate(params)
        logger.info(f"chat.send session={p.session_key or '-'} len={len(p.message)}")
        result = await self.service.chat(
            p.message,
            session_key=p.session_key or None,
            channel=p.channel or "rpc",
            idempotency_key=p.idempotency_key,
        )
        return result.to_dict()


def _error(req_id: str | int, code: int, message: str) -> RPCResponse:
    return RPCResponse(id=req_id, error=RPCError(code=code, message=message))


def _first_error(e: ValidationError) -> str:
    err = e.errors()[0]
    loc = ".".join(str(part) for part in err.get("loc", ()))
    return f"{loc}: {err['msg']}" if loc else err["msg"]
