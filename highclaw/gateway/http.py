"""
HTTP / WebSocket 网关 - 基于 FastAPI，由 uvicorn 提供服务。

路由：
- GET    /health
- GET    /api/sessions                  会话摘要列表
- POST   /api/sessions                  新建会话 {key, channel?}
- GET    /api/sessions/{key}            会话详情（含消息）
- PATCH  /api/sessions/{key}            修改元数据
- DELETE /api/sessions/{key}
- POST   /api/sessions/{key}/reset
- GET    /api/bindings
- POST   /api/bindings                  {channel, conversation, sessionKey}
- DELETE /api/bindings?channel=&conversation=
- POST   /api/chat                      一轮聊天，支持 X-Idempotency-Key 请求头
- WS     /ws                            RPC 协议（见 rpc.py）

会话层异常统一由异常处理器转换为 {"detail": {error, message, code, details}}。
"""

from typing import Any, Optional

from fastapi import APIRouter, FastAPI, Header, Request, WebSocket, WebSocketDisconnect, status
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from highclaw import __version__
from highclaw.channels.manager import ChannelManager
from highclaw.gateway.errors import to_http_error
from highclaw.gateway.rpc import RPCDispatcher
from highclaw.session.errors import SessionError
from highclaw.session.keys import PeerContext
from highclaw.session.service import SessionService, session_to_dict


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SessionCreateRequest(_Body):
    key: str
    channel: str = ""


class SessionPatchRequest(_Body):
    model: Optional[str] = None
    thinking_level: Optional[str] = Field(default=None, alias="thinkingLevel")
    verbose_level: Optional[str] = Field(default=None, alias="verboseLevel")
    agent_id: Optional[str] = Field(default=None, alias="agentId")
    group_activation: Optional[str] = Field(default=None, alias="groupActivation")


class BindingRequest(_Body):
    channel: str
    conversation: str
    session_key: str = Field(alias="sessionKey")


class ChatRequest(_Body):
    """
    POST /api/chat 请求体。session 为空时按 channel + 对端信息路由。

    未提供 peerId 时以客户端 IP 作为对端，匿名的网页聊天按来源地址各自成会话。
    """

    message: str
    session: str = ""
    channel: str = "web"
    conversation: str = ""
    peer_id: str = Field(default="", alias="peerId")
    peer_kind: str = Field(default="", alias="peerKind")
    group_id: str = Field(default="", alias="groupId")
    account_id: str = Field(default="", alias="accountId")

    def peer_context(self, client_ip: str = "") -> Optional[PeerContext]:
        peer_id = self.peer_id or client_ip
        if not (peer_id or self.group_id):
            return None
        return PeerContext(
            channel=self.channel,
            peer_id=peer_id,
            peer_kind=self.peer_kind,
            group_id=self.group_id,
            account_id=self.account_id,
            conversation=self.conversation or client_ip,
        )


def create_router(service: SessionService, channels: Optional[ChannelManager] = None) -> APIRouter:
    router = APIRouter()

    @router.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "version": __version__,
            "sessions": service.count(),
            "current": service.current(),
            "channels": channels.get_status() if channels else {},
        }

    # ------------------------------------------------------------------
    # 会话
    # ------------------------------------------------------------------

    @router.get("/api/sessions", tags=["sessions"])
    def list_sessions() -> dict[str, Any]:
        return {"sessions": [s.to_dict() for s in service.list()]}

    @router.post("/api/sessions", tags=["sessions"], status_code=status.HTTP_201_CREATED)
    def create_session(payload: SessionCreateRequest) -> dict[str, Any]:
        return session_to_dict(service.create(payload.key, payload.channel))

    @router.get("/api/sessions/{key}", tags=["sessions"])
    def get_session(key: str) -> dict[str, Any]:
        return session_to_dict(service.get(key))

    @router.patch("/api/sessions/{key}", tags=["sessions"])
    def patch_session(key: str, payload: SessionPatchRequest) -> dict[str, Any]:
        summary = service.patch(
            key,
            model=payload.model,
            thinking_level=payload.thinking_level,
            verbose_level=payload.verbose_level,
            agent_id=payload.agent_id,
            group_activation=payload.group_activation,
        )
        return summary.to_dict()

    @router.delete("/api/sessions/{key}", tags=["sessions"])
    def delete_session(key: str) -> dict[str, Any]:
        return {"ok": True, "deleted": service.delete(key)}

    @router.post("/api/sessions/{key}/reset", tags=["sessions"])
    def reset_session(key: str) -> dict[str, Any]:
        service.reset(key)
        return {"ok": True, "key": key}

    # ------------------------------------------------------------------
    # 绑定
    # ------------------------------------------------------------------

    @router.get("/api/bindings", tags=["bindings"])
    def list_bindings() -> dict[str, Any]:
        return {"bindings": [b.to_dict() for b in service.list_bindings()]}

    @router.post("/api/bindings", tags=["bindings"], status_code=status.HTTP_201_CREATED)
    def create_binding(payload: BindingRequest) -> dict[str, str]:
        return service.bind(payload.channel, payload.conversation, payload.session_key).to_dict()

    @router.delete("/api/bindings", tags=["bindings"])
    def delete_binding(channel: str, conversation: str) -> dict[str, Any]:
        return {"ok": True, "removed": service.unbind(channel, conversation)}

    # ------------------------------------------------------------------
    # 聊天
    # ------------------------------------------------------------------

    @router.post("/api/chat", tags=["chat"])
    async def chat(
        payload: ChatRequest,
        request: Request,
        x_idempotency_key: Optional[str] = Header(default=None),
    ) -> dict[str, Any]:
        client_ip = request.client.host if request.client else ""
        result = await service.chat(
            payload.message,
            session_key=payload.session or None,
            channel=payload.channel or "web",
            sender=payload.peer_id or client_ip or None,
            conversation=payload.conversation or client_ip,
            peer=payload.peer_context(client_ip),
            idempotency_key=x_idempotency_key,
        )
        return result.to_dict()

    return router


def create_app(
    service: SessionService,
    dispatcher: Optional[RPCDispatcher] = None,
    channels: Optional[ChannelManager] = None,
) -> FastAPI:
    """
    组装 FastAPI 应用。

    参数:
        service: 会话服务
        dispatcher: WebSocket 使用的 RPC 分发器，为空时按 service 新建
        channels: 渠道管理器（仅用于 /health 中的渠道状态）

    返回:
        FastAPI 应用实例
    """
    app = FastAPI(title="highclaw gateway", version=__version__)
    dispatcher = dispatcher if dispatcher is not None else RPCDispatcher(service)

    @app.exception_handler(SessionError)
    async def _session_error_handler(request: Request, exc: SessionError) -> JSONResponse:
        err = to_http_error(exc)
        return JSONResponse(status_code=err.status_code, content={"detail": err.detail})

    app.include_router(create_router(service, channels))

    @app.websocket("/ws")
    async def rpc_socket(websocket: WebSocket) -> None:
        await websocket.accept()
        client = f"{websocket.client.host}:{websocket.client.port}" if websocket.client else "-"
        logger.info(f"RPC client connected: {client}")
        try:
            while True:
                raw = await websocket.receive_text()
                await websocket.send_text(await dispatcher.handle_text(raw))
        except WebSocketDisconnect:
            logger.info(f"RPC client disconnected: {client}")

    return app
