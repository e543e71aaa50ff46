"""网关模块：RPC 分发器与 HTTP/WebSocket 应用。"""

from highclaw.gateway.http import create_app
from highclaw.gateway.rpc import RPCDispatcher

__all__ = ["RPCDispatcher", "create_app"]
