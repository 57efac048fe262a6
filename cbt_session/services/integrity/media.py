"""
services/integrity/media.py

카메라/마이크/화면 캡처 추상화. 코덱/캡처 세부사항은 다루지 않는다 (opaque).

- MediaProvider: 장치별 스트림 획득. 실패 시 CapabilityUnavailable.
- MediaScope:    획득한 스트림을 AsyncExitStack 으로 묶어 모든 종료 경로에서 해제.
- PushMediaProvider: 브라우저가 캡처해서 보내주는 샘플을 스트림처럼 노출 (로컬 UI 서버용).
"""

import logging
from contextlib import AsyncExitStack
from typing import Any, Dict, Iterable, List, Optional, Protocol

from cbt_session.errors import CapabilityUnavailable

logger = logging.getLogger(__name__)

CAMERA = "camera"
MICROPHONE = "microphone"
SCREEN = "screen"

MEDIA_KINDS = (CAMERA, MICROPHONE, SCREEN)


class MediaStream(Protocol):
    kind: str

    async def read(self) -> Any:
        """마지막 read 이후의 데이터. 카메라/화면은 bytes, 마이크는 레벨(float)."""
        ...

    def close(self) -> None:
        ...


class MediaProvider(Protocol):
    async def acquire(self, kind: str) -> MediaStream:
        ...


class NullMediaProvider:
    """장치가 없는 환경. 모든 획득 요청이 실패한다."""

    async def acquire(self, kind: str) -> MediaStream:
        raise CapabilityUnavailable(kind, "연결된 장치 없음")


class PushStream:
    """
    외부(브라우저)에서 push 한 샘플을 read 로 꺼내는 스트림.
    bytes 샘플은 누적했다가 read 시 한 번에 반환, 숫자 샘플은 최신 값만 유지.
    """

    def __init__(self, kind: str):
        self.kind = kind
        self.closed = False
        self._chunks: List[bytes] = []
        self._level: Optional[float] = None

    def push(self, sample: Any) -> None:
        if self.closed:
            return
        if isinstance(sample, (bytes, bytearray)):
            self._chunks.append(bytes(sample))
        else:
            self._level = float(sample)

    async def read(self) -> Any:
        if self.kind == MICROPHONE:
            level, self._level = self._level, None
            return level if level is not None else 0.0
        data = b"".join(self._chunks)
        self._chunks.clear()
        return data

    def close(self) -> None:
        self.closed = True
        self._chunks.clear()


class PushMediaProvider:
    """
    브라우저 시스템 점검 결과로 사용 가능한 장치를 정한다.
    acquire 한 스트림은 push() 로 샘플을 받는다.
    """

    def __init__(self, available: Optional[Dict[str, bool]] = None):
        self._available = dict(available or {})
        self._streams: Dict[str, List[PushStream]] = {}

    def set_available(self, kind: str, available: bool) -> None:
        self._available[kind] = available

    async def acquire(self, kind: str) -> MediaStream:
        if not self._available.get(kind):
            raise CapabilityUnavailable(kind, "브라우저 권한 없음")
        stream = PushStream(kind)
        self._streams.setdefault(kind, []).append(stream)
        return stream

    def push(self, kind: str, sample: Any) -> int:
        """열린 스트림 전부에 샘플 전달. 전달된 스트림 수 반환."""
        live = [s for s in self._streams.get(kind, []) if not s.closed]
        self._streams[kind] = live
        for stream in live:
            stream.push(sample)
        return len(live)


class MediaScope:
    """
    스트림 생명주기 관리. close() 는 성공/오류/이탈 어느 경로에서든 한 번 호출되면 전부 해제한다.

        scope = MediaScope(provider)
        camera = await scope.acquire(CAMERA)
        ...
        await scope.close()
    """

    def __init__(self, provider: MediaProvider):
        self._provider = provider
        self._stack = AsyncExitStack()
        self._streams: Dict[str, MediaStream] = {}

    @property
    def keys(self) -> Iterable[str]:
        return tuple(self._streams)

    def get(self, key: str) -> Optional[MediaStream]:
        return self._streams.get(key)

    async def acquire(self, kind: str, key: Optional[str] = None) -> MediaStream:
        """
        같은 key 로 다시 요청하면 기존 스트림을 돌려준다.
        녹화처럼 감지기와 데이터를 나눠 쓰면 안 되는 경우 별도 key 로 독립 스트림을 연다.
        """
        key = key or kind
        if key in self._streams:
            return self._streams[key]
        stream = await self._provider.acquire(kind)
        self._stack.callback(self._release, key, stream)
        self._streams[key] = stream
        logger.info(f"미디어 스트림 획득: {key}")
        return stream

    def _release(self, key: str, stream: MediaStream) -> None:
        stream.close()
        self._streams.pop(key, None)
        logger.info(f"미디어 스트림 해제: {key}")

    async def close(self) -> None:
        await self._stack.aclose()


async def probe(provider: MediaProvider, kind: str) -> bool:
    """시스템 점검: 잠깐 획득했다가 바로 해제."""
    scope = MediaScope(provider)
    try:
        await scope.acquire(kind)
        return True
    except CapabilityUnavailable as e:
        logger.warning(f"장치 점검 실패: {e}")
        return False
    finally:
        await scope.close()
