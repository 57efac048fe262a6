"""
services/events.py

세션 내부 이벤트 채널 (타입 기반 pub/sub).
타이머와 감독 모니터는 이벤트를 발행만 하고, 세션 상태를 직접 읽거나 바꾸지 않는다.
단일 이벤트 루프에서 동기적으로 전달된다.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Type, TypeVar

from cbt_session.models.session_state import SessionStatus, Violation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Event:
    pass


@dataclass(frozen=True)
class Tick(Event):
    seconds: int = 1


@dataclass(frozen=True)
class TimeWarning(Event):
    threshold: int
    remaining_seconds: int


@dataclass(frozen=True)
class TimeExpired(Event):
    session_id: Optional[str]


@dataclass(frozen=True)
class ViolationDetected(Event):
    violation: Violation


@dataclass(frozen=True)
class MonitorStatusChanged(Event):
    status: str
    previous: str


@dataclass(frozen=True)
class SessionStatusChanged(Event):
    status: SessionStatus
    previous: SessionStatus


E = TypeVar("E", bound=Event)
Handler = Callable[[E], None]


class EventBus:
    """
    이벤트 타입별 구독자 목록. 하위 타입 이벤트는 상위 타입 구독자에게도 전달된다.
    구독자 예외는 발행자에게 그대로 전파된다.
    """

    def __init__(self):
        self._handlers: Dict[Type[Event], List[Callable]] = defaultdict(list)

    def subscribe(self, event_type: Type[E], handler: Handler) -> Callable[[], None]:
        self._handlers[event_type].append(handler)

        def _unsubscribe() -> None:
            try:
                self._handlers[event_type].remove(handler)
            except ValueError:
                pass

        return _unsubscribe

    def publish(self, event: Event) -> None:
        logger.debug(f"event: {event}")
        for event_type in type(event).__mro__:
            for handler in list(self._handlers.get(event_type, ())):
                handler(event)

    def clear(self) -> None:
        self._handlers.clear()
