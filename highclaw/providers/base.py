"""
LLM 提供者基类定义模块。

本模块定义了与大语言模型交互的核心抽象接口：
- LLMResponse : LLM 的统一响应格式（文本内容、结束原因、token 用量）
- LLMProvider : 抽象基类，定义了所有 LLM 提供者必须实现的接口

架构角色：
  会话服务 → AgentRunner → LLMProvider.chat() → LLM API → LLMResponse

类比 Java：
  - LLMProvider 相当于一个 interface，定义了 chat() 和 getDefaultModel() 方法
  - LLMResponse 相当于一个不可变的 DTO（Data Transfer Object）
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class LLMResponse:
    """
    LLM 的统一响应数据结构。

    属性：
        content: LLM 返回的文本内容
        finish_reason: 结束原因（"stop"=正常结束, "length"=达到上限, "error"=出错）
        usage: token 用量统计（prompt_tokens, completion_tokens, total_tokens）
    """
    content: str | None
    finish_reason: str = "stop"
    usage: dict[str, int] = field(default_factory=dict)


class LLMProvider(ABC):
    """
    LLM 提供者抽象基类（类似 Java 的 interface）。

    当前项目中唯一的实现类是 LiteLLMProvider（在 litellm_provider.py 中）。

    属性：
        api_key: API 密钥
        api_base: API 基础 URL（用于自定义端点或代理）
    """

    def __init__(self, api_key: str | None = None, api_base: str | None = None):
        self.api_key = api_key
        self.api_base = api_base

    @abstractmethod
    async def chat(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """
        发送对话补全请求。

        参数：
            messages: 消息列表，每条消息是 {"role": "user/assistant/system", "content": "..."} 格式
            model: 模型标识符（如 'anthropic/claude-sonnet-4-5'）
            max_tokens: 响应的最大 token 数
            temperature: 采样温度

        返回：
            LLMResponse
        """
        pass

    @abstractmethod
    def get_default_model(self) -> str:
        """获取该提供者的默认模型名称。"""
        pass
