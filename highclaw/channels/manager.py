"""
渠道管理器模块 - 统一管理所有消息渠道的生命周期和出站消息路由。

本模块负责：
1. 根据配置初始化所有已启用的渠道（也支持手动 register）
2. 统一启动/停止所有渠道
3. 运行出站消息分发器，把 Agent 的回复路由到正确的渠道

【Java 开发者类比】
- ChannelManager 相当于 Spring 的 ApplicationContext + MessageRouter
- _dispatch_outbound() 相当于 JMS/Kafka 的 MessageListener 消费循环
- 延迟导入（lazy import）相当于 Spring 的懒加载（@Lazy）
"""

from __future__ import annotations

import asyncio
from typing import Any

from loguru import logger

from highclaw.bus.queue import MessageBus
from highclaw.channels.base import BaseChannel
from highclaw.config.schema import Config


class ChannelManager:
    """
    渠道管理器。

    属性:
        config: 全局配置对象
        bus: 消息总线实例
        channels: 已注册的渠道字典 {渠道名: 渠道实例}
        _dispatch_task: 出站消息分发器的异步任务句柄
    """

    def __init__(self, config: Config, bus: MessageBus):
        self.config = config
        self.bus = bus
        self.channels: dict[str, BaseChannel] = {}
        self._dispatch_task: asyncio.Task | None = None

        self._init_channels()

    def _init_channels(self) -> None:
        """根据配置初始化已启用的渠道（延迟导入渠道模块）。"""
        if self.config.channels.whatsapp.enabled:
            try:
                from highclaw.channels.whatsapp import WhatsAppChannel
                self.register(WhatsAppChannel(self.config.channels.whatsapp, self.bus))
            except ImportError as e:
                logger.warning(f"WhatsApp channel not available: {e}")

    def register(self, channel: BaseChannel) -> None:
        """注册一个渠道实例（同名渠道会被替换）。"""
        self.channels[channel.name] = channel
        logger.info(f"{channel.name} channel enabled")

    async def _start_channel(self, name: str, channel: BaseChannel) -> None:
        try:
            await channel.start()
        except Exception as e:
            logger.error(f"Failed to start channel {name}: {e}")

    async def start_all(self) -> None:
        """
        启动出站分发器和所有渠道。

        渠道的 start() 是长期运行的任务，本方法会一直等待到它们全部结束。
        """
        if not self.channels:
            logger.warning("No channels enabled")
            return

        self._dispatch_task = asyncio.create_task(self._dispatch_outbound())

        tasks = []
        for name, channel in self.channels.items():
            logger.info(f"Starting {name} channel...")
            tasks.append(asyncio.create_task(self._start_channel(name, channel)))

        await asyncio.gather(*tasks, return_exceptions=True)

    async def stop_all(self) -> None:
        """停止分发器和所有渠道。"""
        logger.info("Stopping all channels...")

        if self._dispatch_task:
            self._dispatch_task.cancel()
            try:
                await self._dispatch_task
            except asyncio.CancelledError:
                pass
            self._dispatch_task = None

        for name, channel in self.channels.items():
            try:
                await channel.stop()
                logger.info(f"Stopped {name} channel")
            except Exception as e:
                logger.error(f"Error stopping {name}: {e}")

    async def _dispatch_outbound(self) -> None:
        """出站消息分发循环：按 msg.channel 找到渠道并投递。"""
        logger.info("Outbound dispatcher started")

        while True:
            try:
                msg = await asyncio.wait_for(self.bus.consume_outbound(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break

            channel = self.channels.get(msg.channel)
            if channel is None:
                logger.warning(f"Unknown channel: {msg.channel}")
                continue
            try:
                await channel.deliver(msg)
            except Exception as e:
                logger.error(f"Error sending to {msg.channel}: {e}")

    def get_channel(self, name: str) -> BaseChannel | None:
        return self.channels.get(name)

    def get_status(self) -> dict[str, Any]:
        """所有渠道的状态与能力 {渠道名: describe()}。"""
        return {name: channel.describe() for name, channel in self.channels.items()}

    @property
    def enabled_channels(self) -> list[str]:
        return list(self.channels.keys())
