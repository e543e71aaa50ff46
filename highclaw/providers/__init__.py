"""
LLM 提供者抽象层模块（providers 包）。

- base.py：LLMProvider 抽象基类和 LLMResponse 数据结构
- litellm_provider.py：基于 LiteLLM 的唯一实现，对接所有主流 LLM 服务商
"""

from highclaw.providers.base import LLMProvider, LLMResponse
from highclaw.providers.litellm_provider import LiteLLMProvider

__all__ = ["LLMProvider", "LLMResponse", "LiteLLMProvider"]
