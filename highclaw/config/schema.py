"""
配置数据模型定义 (config/schema.py)
=================================
本模块使用 Pydantic 定义 highclaw 的完整配置结构。
所有配置项都有默认值，用户只需在 config.json 中覆盖需要修改的部分。

整体配置结构（树形）：
Config (根配置)
├── agents        - Agent 配置（Agent ID、模型、温度、系统提示词）
├── session       - 会话路由与持久化配置（DM Scope、身份链接、幂等 TTL、淘汰策略等）
├── gateway       - HTTP/WebSocket 网关配置（主机、端口、Agent 超时）
├── providers     - LLM 提供商配置（API Key、API Base URL 等）
└── channels      - 消息渠道配置（WhatsApp）

对于 Java 开发者：
- Pydantic 的 BaseModel 类似于 Java 的 POJO/Record，但自带字段验证和默认值
- BaseSettings 类似于 Spring 的 @ConfigurationProperties，额外支持从环境变量读取配置
- Field(default_factory=...) 类似于 Java 中用工厂方法创建可变默认值，避免共享引用问题
"""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings

from highclaw.session.keys import DMScope
from highclaw.utils.helpers import get_data_path


# ==============================================================================
# 渠道配置模型
# ==============================================================================


class WhatsAppConfig(BaseModel):
    """WhatsApp 渠道配置。通过 WebSocket 连接到 WhatsApp Bridge 服务。"""
    enabled: bool = False  # 是否启用该渠道
    bridge_url: str = "ws://localhost:3001"  # WhatsApp Bridge 的 WebSocket 地址
    bridge_token: str = ""  # Bridge 认证令牌（可选但推荐设置）
    account_id: str = ""  # 多账号部署时区分机器人账号（参与 per-account-channel-peer 路由）
    allow_from: list[str] = Field(default_factory=list)  # 允许的手机号码白名单


class ChannelsConfig(BaseModel):
    """消息渠道的聚合配置。每个渠道都是可选的，默认全部关闭。"""
    whatsapp: WhatsAppConfig = Field(default_factory=WhatsAppConfig)


# ==============================================================================
# Agent 配置
# ==============================================================================


class AgentDefaults(BaseModel):
    """Agent 默认配置。"""
    agent_id: str = "main"  # Agent ID，出现在每个会话键中（agent:<id>:...）
    model: str = "anthropic/claude-sonnet-4-5"  # 默认使用的 LLM 模型（格式: provider/model）
    max_tokens: int = 4096  # 单次 LLM 调用的最大输出 token 数
    temperature: float = 0.7  # 生成温度
    system_prompt: str = ""  # 自定义系统提示词（为空时使用内置提示词）


class AgentsConfig(BaseModel):
    """Agent 配置容器。"""
    defaults: AgentDefaults = Field(default_factory=AgentDefaults)


# ==============================================================================
# 会话配置
# ==============================================================================


class SessionConfig(BaseModel):
    """
    会话路由与持久化配置。

    dm_scope 决定私聊会话的隔离级别：
    - main：所有私聊共享主会话
    - per-peer：按人隔离（配合 identity_links 做跨渠道身份合并）
    - per-channel-peer：按 渠道 + 人 隔离（默认）
    - per-account-channel-peer：按 渠道 + 机器人账号 + 人 隔离
    """
    dm_scope: DMScope = DMScope.PER_CHANNEL_PEER  # 私聊隔离级别
    main_key: str = "main"  # 主会话键
    identity_links: dict[str, list[str]] = Field(default_factory=dict)  # {规范ID: ["渠道:对端ID", ...]}
    idempotency_ttl_s: float = 300  # 幂等键有效期（秒）
    history_limit: int = 16  # 每次交给 Agent 的历史条数上限
    history_max_chars: int = 3000  # 单条历史内容的字符上限
    auto_save_interval_s: int = 60  # 自动保存间隔（秒），0 表示关闭
    prune_interval_s: int = 3600  # 过期淘汰间隔（秒），0 表示关闭
    prune_max_age_days: int = 30  # 闲置超过该天数的会话被淘汰，0 表示不限
    prune_max_count: int = 500  # 最多保留的会话数，0 表示不限
    file_mode: int = 0o644  # 会话快照文件权限位

    @field_validator("dm_scope", mode="before")
    @classmethod
    def _parse_dm_scope(cls, value):
        # 同时接受 "per-channel-peer" 与 "perChannelPeer"
        return DMScope.parse(value)

    @field_validator("file_mode", mode="before")
    @classmethod
    def _parse_file_mode(cls, value):
        # JSON 中可以写成八进制字符串 "0644"
        if isinstance(value, str):
            return int(value, 8)
        return value


# ==============================================================================
# LLM 提供商配置
# ==============================================================================


class ProviderConfig(BaseModel):
    """单个 LLM 提供商的配置。"""
    api_key: str = ""  # API 密钥（留空表示未配置该提供商）
    api_base: str | None = None  # 自定义 API 基础 URL（用于私有部署或代理）
    extra_headers: dict[str, str] | None = None  # 额外请求头


class ProvidersConfig(BaseModel):
    """所有 LLM 提供商的聚合配置（用户只需配置使用的那个）。"""
    anthropic: ProviderConfig = Field(default_factory=ProviderConfig)
    openai: ProviderConfig = Field(default_factory=ProviderConfig)
    openrouter: ProviderConfig = Field(default_factory=ProviderConfig)
    deepseek: ProviderConfig = Field(default_factory=ProviderConfig)


# ==============================================================================
# 网关配置
# ==============================================================================


class GatewayConfig(BaseModel):
    """HTTP/WebSocket 网关服务配置。"""
    host: str = "127.0.0.1"  # 监听地址
    port: int = 18790  # 监听端口
    agent_timeout_s: float = 120  # 单次 Agent 调用超时（秒）


# ==============================================================================
# 根配置类
# ==============================================================================


class Config(BaseSettings):
    """
    highclaw 根配置类。

    继承自 Pydantic 的 BaseSettings，除了支持从 JSON 文件加载外，
    还支持从环境变量读取配置：
    - 环境变量前缀: HIGHCLAW_
    - 嵌套分隔符: __ (双下划线)
    - 示例: HIGHCLAW_SESSION__DM_SCOPE=per-peer 可覆盖 session.dm_scope
    """
    agents: AgentsConfig = Field(default_factory=AgentsConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)
    data_dir: str = ""  # 数据根目录，为空时使用 ~/.highclaw

    @property
    def data_path(self) -> Path:
        """展开后的数据根目录。"""
        if self.data_dir:
            return Path(self.data_dir).expanduser()
        return get_data_path()

    def _match_provider(self, model: str | None = None) -> tuple[ProviderConfig | None, str | None]:
        """
        根据模型名称匹配提供商配置。

        1. 模型名以 "<提供商>/" 开头或包含提供商关键词，且该提供商已配置 api_key
        2. 兜底：返回第一个已配置 api_key 的提供商
        """
        model_lower = (model or self.agents.defaults.model).lower()
        keywords = {
            "anthropic": ("anthropic", "claude"),
            "openai": ("openai", "gpt"),
            "openrouter": ("openrouter",),
            "deepseek": ("deepseek",),
        }
        for name, words in keywords.items():
            p = getattr(self.providers, name)
            if p.api_key and any(w in model_lower for w in words):
                return p, name
        for name in keywords:
            p = getattr(self.providers, name)
            if p.api_key:
                return p, name
        return None, None

    def get_provider(self, model: str | None = None) -> ProviderConfig | None:
        p, _ = self._match_provider(model)
        return p

    def get_provider_name(self, model: str | None = None) -> str | None:
        _, name = self._match_provider(model)
        return name

    # Pydantic Settings 配置：支持 HIGHCLAW_ 前缀的环境变量，嵌套用 __ 分隔
    model_config = ConfigDict(
        env_prefix="HIGHCLAW_",
        env_nested_delimiter="__"
    )
