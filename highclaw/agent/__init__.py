"""
Agent 模块 —— 网关背后的"大脑"。

- runner.py：AgentRunner 抽象与基于 LLM 的默认实现（会话服务的向下钩子）
- loop.py：AgentLoop，消费消息总线上的渠道消息，经会话服务处理后回复

AgentLoop 依赖会话服务，而会话服务依赖 runner，因此本包只导出 runner 中的类型；
需要 AgentLoop 时请从 highclaw.agent.loop 导入。
"""

from highclaw.agent.runner import AgentReply, AgentRequest, AgentRunner, LLMAgentRunner

__all__ = ["AgentReply", "AgentRequest", "AgentRunner", "LLMAgentRunner"]
