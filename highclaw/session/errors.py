"""
会话层异常定义。

所有会话操作抛出的异常都继承自 SessionError，上层（RPC/HTTP/TUI）
只需按类型映射到各自的错误码即可：

SessionError
├── SessionNotFoundError      会话键不存在（内存与磁盘都没有）
├── InvalidInputError         输入不合法
│   ├── InvalidRoleError      消息角色不在 user/assistant/system 之内
│   └── EmptyContentError     消息内容去除空白后为空
├── PolicyViolationError      违反策略（如删除当前活跃会话）
├── SessionIOError            磁盘读写失败
└── AgentRunError             Agent 调用失败（用户消息已落盘）
    └── AgentTimeoutError     Agent 调用超时

重复请求（幂等键已出现过）不是异常，而是正常返回的 duplicate 状态。

【Java 开发者类比】
- 相当于一组继承自同一个 RuntimeException 的业务异常
- 上层的错误码映射类似 Spring 的 @ExceptionHandler
"""


class SessionError(Exception):
    """会话层异常基类。code 为对外暴露的机器可读错误类型。"""

    code = "session-error"


class SessionNotFoundError(SessionError):
    code = "not-found"

    def __init__(self, key: str):
        super().__init__(f"session not found: {key}")
        self.key = key


class InvalidInputError(SessionError):
    code = "invalid-input"


class InvalidRoleError(InvalidInputError):
    def __init__(self, role: str):
        super().__init__(f"invalid role: {role!r}")
        self.role = role


class EmptyContentError(InvalidInputError):
    def __init__(self, message: str = "content is empty"):
        super().__init__(message)


class PolicyViolationError(SessionError):
    code = "policy-violation"


class SessionIOError(SessionError):
    code = "io-error"


class AgentRunError(SessionError):
    """Agent 调用失败。抛出时用户消息已经写入会话，助手消息未写入。"""

    code = "agent-error"


class AgentTimeoutError(AgentRunError):
    code = "agent-timeout"
