"""消息渠道模块：渠道基类与渠道管理器。"""

from highclaw.channels.base import BaseChannel
from highclaw.channels.manager import ChannelManager

__all__ = ["BaseChannel", "ChannelManager"]
