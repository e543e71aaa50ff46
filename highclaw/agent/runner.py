"""
Agent 运行器模块 —— 会话层与 LLM 之间的"向下钩子"。

会话服务只认识 AgentRunner 这个抽象：给它一份裁剪过的对话历史，
拿回一条助手回复和 token 用量。具体怎么调用模型由实现类决定：

- LLMAgentRunner：基于 LLMProvider（LiteLLM）的默认实现
- 测试中使用脚本化的假实现，不发起任何网络请求

【Java 开发者类比】
- AgentRunner 相当于一个 Java interface（SPI）
- AgentRequest / AgentReply 相当于请求/响应 DTO
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from highclaw.providers.base import LLMProvider

DEFAULT_SYSTEM_PROMPT = "You are highclaw, a helpful personal assistant. Be concise, accurate, and friendly."


@dataclass
class AgentRequest:
    """
    一次 Agent 调用的输入。

    属性:
        session_key: 会话键
        message: 本轮用户消息
        history: 裁剪后的历史 [{"role", "content"}]，最后一条即本轮用户消息
        channel: 来源渠道
        model: 会话指定的模型（为空时由运行器决定）
    """

    session_key: str
    message: str
    history: list[dict[str, str]] = field(default_factory=list)
    channel: str = ""
    model: str = ""


@dataclass
class AgentReply:
    """Agent 回复：文本 + 输入/输出 token 数。"""

    reply: str
    tokens_in: int = 0
    tokens_out: int = 0
    model: str = ""

    def usage(self) -> dict[str, int]:
        return {"inputTokens": self.tokens_in, "outputTokens": self.tokens_out}


class AgentRunner(ABC):
    """Agent 运行器抽象基类。"""

    @abstractmethod
    async def run(self, request: AgentRequest) -> AgentReply:
        """执行一轮对话。失败时直接抛出异常，由会话服务统一包装为 AgentRunError。"""
        pass


class LLMAgentRunner(AgentRunner):
    """
    基于 LLMProvider 的默认运行器。

    构造参数:
        provider: LLM 提供者
        model: 默认模型（会话未指定模型时使用）
        system_prompt: 系统提示词
        max_tokens: 单次回复的最大 token 数
        temperature: 采样温度
    """

    def __init__(
        self,
        provider: LLMProvider,
        model: str | None = None,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ):
        self.provider = provider
        self.model = model or provider.get_default_model()
        self.system_prompt = system_prompt
        self.max_tokens = max_tokens
        self.temperature = temperature

    def build_messages(self, request: AgentRequest) -> list[dict[str, Any]]:
        """系统提示词 + 历史；历史为空时补上本轮用户消息。"""
        messages: list[dict[str, Any]] = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.extend(request.history)
        if not request.history:
            messages.append({"role": "user", "content": request.message})
        return messages

    async def run(self, request: AgentRequest) -> AgentReply:
        model = request.model or self.model
        response = await self.provider.chat(
            messages=self.build_messages(request),
            model=model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        if response.finish_reason == "error":
            raise RuntimeError(response.content or "LLM call failed")

        usage = response.usage or {}
        logger.debug(f"LLM usage for {request.session_key}: {usage}")
        return AgentReply(
            reply=response.content or "",
            tokens_in=usage.get("prompt_tokens", 0),
            tokens_out=usage.get("completion_tokens", 0),
            model=model,
        )
