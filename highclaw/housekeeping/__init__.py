"""会话维护服务：定期自动保存与过期淘汰。"""

from highclaw.housekeeping.service import HousekeepingService

__all__ = ["HousekeepingService"]
