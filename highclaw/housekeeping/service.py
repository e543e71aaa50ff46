"""
会话维护服务 - 定期自动保存与过期淘汰。

本模块实现了两个周期任务：
- 自动保存：每隔 auto_save_interval_s 秒把内存中所有会话写回磁盘
- 过期淘汰：每隔 prune_interval_s 秒删除闲置过久的会话，并把会话总数压到上限以内

间隔为 0 表示关闭对应任务。两个任务都是独立的 asyncio.Task，
任意一次执行失败只记录日志，不影响后续周期。

二开提示：
- run_autosave_now() / run_prune_now() 支持手动触发，适合调试和 CLI 命令
"""

import asyncio
from typing import Awaitable, Callable

from loguru import logger

from highclaw.session.maintenance import PruneResult
from highclaw.session.service import SessionService


class HousekeepingService:
    """
    会话维护服务。

    工作流程：
    1. start() 为每个启用的任务创建一个循环
    2. 每个循环先等待一个间隔，再执行一次任务
    3. stop() 取消所有循环，并做最后一次自动保存
    """

    def __init__(
        self,
        service: SessionService,
        auto_save_interval_s: int = 60,
        prune_interval_s: int = 3600,
        prune_max_age_days: int = 30,
        prune_max_count: int = 500,
    ):
        """
        参数:
            service: 会话服务
            auto_save_interval_s: 自动保存间隔（秒），0 表示关闭
            prune_interval_s: 淘汰间隔（秒），0 表示关闭
            prune_max_age_days: 闲置天数上限，0 表示不限
            prune_max_count: 会话数量上限，0 表示不限
        """
        self.service = service
        self.auto_save_interval_s = auto_save_interval_s
        self.prune_interval_s = prune_interval_s
        self.prune_max_age_days = prune_max_age_days
        self.prune_max_count = prune_max_count
        self._running = False
        self._tasks: list[asyncio.Task] = []

    @classmethod
    def from_config(cls, service: SessionService, config) -> "HousekeepingService":
        sc = config.session
        return cls(
            service,
            auto_save_interval_s=sc.auto_save_interval_s,
            prune_interval_s=sc.prune_interval_s,
            prune_max_age_days=sc.prune_max_age_days,
            prune_max_count=sc.prune_max_count,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        self._running = True
        if self.auto_save_interval_s > 0:
            self._tasks.append(asyncio.create_task(
                self._run_loop("autosave", self.auto_save_interval_s, self._autosave_tick)
            ))
            logger.info(f"Session autosave started (every {self.auto_save_interval_s}s)")
        else:
            logger.info("Session autosave disabled")

        if self.prune_interval_s > 0:
            self._tasks.append(asyncio.create_task(
                self._run_loop("prune", self.prune_interval_s, self._prune_tick)
            ))
            logger.info(f"Session pruning started (every {self.prune_interval_s}s)")
        else:
            logger.info("Session pruning disabled")

    def stop(self) -> None:
        """停止所有周期任务，并同步做一次最终保存。"""
        self._running = False
        for task in self._tasks:
            task.cancel()
        self._tasks = []
        self.run_autosave_now()

    async def _run_loop(self, name: str, interval_s: int, tick: Callable[[], Awaitable[None]]) -> None:
        while self._running:
            try:
                await asyncio.sleep(interval_s)
                if self._running:
                    await tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Housekeeping {name} error: {e}")

    async def _autosave_tick(self) -> None:
        self.run_autosave_now()

    async def _prune_tick(self) -> None:
        self.run_prune_now()

    async def trigger_now(self) -> PruneResult:
        """手动触发一次完整维护（先保存再淘汰）。"""
        self.run_autosave_now()
        return self.run_prune_now()

    def run_autosave_now(self) -> int:
        """立即保存所有内存会话，返回失败数（失败明细已由 autosave 记录）。"""
        return len(self.service.autosave())

    def run_prune_now(self) -> PruneResult:
        """立即执行一次过期淘汰。"""
        result = self.service.prune_stale(self.prune_max_age_days, self.prune_max_count)
        if not result.total:
            logger.debug("Housekeeping: nothing to prune")
        return result
