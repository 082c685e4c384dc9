"""
services/timer.py

시간제 시험의 카운트다운 타이머.
세션마다 데몬 스레드 하나가 interval 초마다 on_tick 을 부른다.
cancel() 은 여러 번 불러도 되고, 콜백 안에서 불러도 된다.
"""

import logging
import threading
import traceback
from typing import Callable, Optional

from config import TIMER_INTERVAL

logger = logging.getLogger(__name__)


def format_countdown(ms: Optional[int]) -> str:
    """남은 시간 표시. 1시간 미만은 MM:SS, 이상은 HH:MM:SS (올림)."""
    total_seconds = max(0, -(-int(ms or 0) // 1000))
    hours, rem = divmod(total_seconds, 3600)
    minutes, seconds = divmod(rem, 60)
    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
    return f"{minutes:02d}:{seconds:02d}"


class ExamTimer:
    def __init__(self, on_tick: Callable[[], None], interval: float = TIMER_INTERVAL, name: str = "exam-timer"):
        self._on_tick = on_tick
        self._interval = interval
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._loop, name=name, daemon=True)

    @property
    def active(self) -> bool:
        return self._thread.is_alive() and not self._stop.is_set()

    def start(self) -> None:
        if self._thread.is_alive() or self._stop.is_set():
            return
        self._thread.start()

    def cancel(self) -> None:
        # join 하지 않는다: 콜백이 세션 잠금을 기다리는 중일 수 있다
        self._stop.set()

    def _loop(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self._on_tick()
            except Exception:
                logger.error(f"타이머 콜백 오류:\n{traceback.format_exc()}")
