"""
services/timer.py

시험 카운트다운 타이머.
1초 간격으로 Tick 을 발행하고, 설정된 남은 시간 지점마다 TimeWarning 을 한 번씩 발행한다.
0에 도달하면 영구 정지 — 이후에는 어떤 이벤트도 발행하지 않는다.
벽시계와의 오차(drift)는 허용한다. 마감 후 수 초 이내 자동 제출이 목표.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Optional

from config import LOW_TIME_SECONDS, TICK_INTERVAL
from cbt_session.services.events import EventBus, Tick, TimeWarning

logger = logging.getLogger(__name__)


def format_time(seconds: int) -> str:
    """남은 시간을 MM:SS 로 표시. 60분 이상이면 분이 두 자리를 넘을 수 있다."""
    seconds = max(0, int(seconds))
    minutes, secs = divmod(seconds, 60)
    return f"{minutes:02d}:{secs:02d}"


def is_low_time(seconds: int, threshold: int = LOW_TIME_SECONDS) -> bool:
    """10분 미만이면 빨간색 경고 표시 대상."""
    return seconds < threshold


class CountdownTimer:
    """
    세션당 하나의 카운트다운.

    Args:
        bus:              이벤트 채널. 타이머는 발행만 한다.
        duration_seconds: 시작 시점 남은 시간 (초).
        warnings:         경고 지점 (초). 예: [300, 60]
        interval:         tick 간격 (초).
        sleep:            테스트에서 교체 가능한 대기 함수.
    """

    def __init__(
        self,
        bus: EventBus,
        duration_seconds: int,
        warnings: Iterable[int] = (),
        interval: float = TICK_INTERVAL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._bus = bus
        self._remaining = max(0, int(duration_seconds))
        # 이미 지난 경고 지점은 발행하지 않는다
        self._pending_warnings = sorted(
            {int(w) for w in warnings if 0 < int(w) < self._remaining}, reverse=True
        )
        self._interval = interval
        self._sleep = sleep
        self._expired = self._remaining == 0
        self._task: Optional[asyncio.Task] = None

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def expired(self) -> bool:
        return self._expired

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def advance(self, seconds: int = 1) -> None:
        """한 간격 진행. 만료 후 호출은 무시된다."""
        if self._expired:
            return

        self._remaining = max(0, self._remaining - seconds)
        self._bus.publish(Tick(seconds=seconds))

        while self._pending_warnings and self._remaining <= self._pending_warnings[0]:
            threshold = self._pending_warnings.pop(0)
            logger.info(f"남은 시간 경고: {format_time(self._remaining)} (기준 {threshold}초)")
            self._bus.publish(TimeWarning(threshold=threshold, remaining_seconds=self._remaining))

        if self._remaining == 0:
            self._expired = True

    def start(self) -> None:
        if self.running or self._expired:
            return
        self._task = asyncio.create_task(self._run(), name="exam-countdown")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while not self._expired:
            await self._sleep(self._interval)
            self.advance(1)
        logger.info("카운트다운 종료")
