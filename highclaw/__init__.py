"""
highclaw - 个人 AI Agent 网关

模块概述：
    本文件是 highclaw 包的入口文件（__init__.py），定义了包的元信息。
    highclaw 是一个常驻的本地 Agent 网关：把多个聊天渠道、JSON-RPC/HTTP 接口
    和终端 TUI 统一接到同一个逻辑 Agent 上，并负责会话的路由与持久化。

    整个网关的核心功能包括：
    - 会话路由（按渠道/对端/群组派生稳定的会话键）
    - 会话持久化（每个会话一个 JSON 快照文件，写穿式保存）
    - 幂等去重与过期会话清理
    - 多渠道消息接入、JSON-RPC over WebSocket 与 REST 接口
"""

# 版本号，遵循语义化版本规范（主版本.次版本.修订号）
__version__ = "0.1.0"

# 项目 logo 表情符号，用于 CLI 输出等场景的品牌标识
__logo__ = "🦀"
