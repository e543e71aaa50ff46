"""
LiteLLM 提供者实现模块 —— 多 LLM 服务商的统一调用层。

LiteLLM 将 100+ 家 LLM 服务商（OpenAI、Anthropic、DeepSeek、OpenRouter 等）
的 API 统一为 OpenAI 兼容格式。模型名的前缀决定路由目标，
例如 "anthropic/claude-sonnet-4-5"、"deepseek/deepseek-chat"、"openrouter/..."。

错误容错：LLM 调用失败时返回 finish_reason="error" 的响应而非抛出异常，
由上层（AgentRunner）决定如何向用户报告。

数据流：
  AgentRunner.run() → LiteLLMProvider.chat() → litellm.acompletion() → LLM API
"""

from typing import Any

import litellm
from litellm import acompletion
from loguru import logger

from highclaw.providers.base import LLMProvider, LLMResponse


class LiteLLMProvider(LLMProvider):
    """
    基于 LiteLLM 的 LLM 提供者实现类。

    构造参数：
        api_key: API 密钥
        api_base: 自定义 API 基础 URL（用于代理/网关/本地部署）
        default_model: 默认模型名称
        extra_headers: 额外的 HTTP 请求头
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        default_model: str = "anthropic/claude-sonnet-4-5",
        extra_headers: dict[str, str] | None = None,
    ):
        super().__init__(api_key, api_base)
        self.default_model = default_model
        self.extra_headers = extra_headers or {}

        # 禁用 LiteLLM 的调试日志输出
        litellm.suppress_debug_info = True
        # 自动丢弃服务商不支持的参数
        litellm.drop_params = True

    async def chat(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> LLMResponse:
        kwargs: dict[str, Any] = {
            "model": model or self.default_model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if self.extra_headers:
            kwargs["extra_headers"] = self.extra_headers

        try:
            response = await acompletion(**kwargs)
            return self._parse_response(response)
        except Exception as e:
            logger.error(f"LLM call failed ({kwargs['model']}): {e}")
            return LLMResponse(
                content=f"Error calling LLM: {str(e)}",
                finish_reason="error",
            )

    def _parse_response(self, response: Any) -> LLMResponse:
        """将 LiteLLM 的 OpenAI 格式响应解析为 LLMResponse。"""
        choice = response.choices[0]

        usage = {}
        if hasattr(response, "usage") and response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return LLMResponse(
            content=choice.message.content,
            finish_reason=choice.finish_reason or "stop",
            usage=usage,
        )

    def get_default_model(self) -> str:
        return self.default_model
