"""
api/session.py — 멀티유저 인메모리 세션 (쿠키 기반)

각 사용자에게 UUID 세션 ID를 발급하고, 세션마다 응시 실행기(ExamRunner) 하나를 둔다.
TTL 경과 시 자동 만료되며, 만료/초기화 시 실행기의 타이머를 해제한다.
"""

import threading
import time
import uuid
from typing import Any, Optional

from config import SESSION_TTL
from study_exam_cbt.services.runner import ExamRunner

_lock = threading.Lock()
_sessions: dict[str, dict[str, Any]] = {}
_timestamps: dict[str, float] = {}


def _new_state() -> dict[str, Any]:
    return {
        "runner": None,
    }


def _dispose_state(state: dict[str, Any]) -> None:
    runner = state.get("runner")
    if runner is not None:
        runner.dispose()


def create_session() -> str:
    """새 세션을 생성하고 세션 ID를 반환."""
    sid = uuid.uuid4().hex
    with _lock:
        _sessions[sid] = _new_state()
        _timestamps[sid] = time.time()
    return sid


def get_session(sid: str) -> dict[str, Any] | None:
    """세션 ID로 세션 데이터를 가져옴. 만료되었거나 없으면 None."""
    with _lock:
        if sid not in _sessions:
            return None
        if time.time() - _timestamps[sid] > SESSION_TTL:
            _dispose_state(_sessions.pop(sid))
            del _timestamps[sid]
            return None
        _timestamps[sid] = time.time()  # 접근 시 갱신
        return _sessions[sid]


def get(sid: str, key: str, default=None):
    """세션에서 값 읽기."""
    session = get_session(sid)
    if session is None:
        return default
    return session.get(key, default)


def put(sid: str, key: str, value) -> None:
    """세션에 값 쓰기."""
    with _lock:
        if sid in _sessions:
            _sessions[sid][key] = value
            _timestamps[sid] = time.time()


def get_runner(sid: str) -> Optional[ExamRunner]:
    runner = get(sid, "runner")
    if runner is not None and runner.disposed:
        return None
    return runner


def set_runner(sid: str, runner: Optional[ExamRunner]) -> None:
    """실행기를 교체한다. 이전 실행기는 해제. 세션이 이미 없으면 새 실행기도 해제한다."""
    with _lock:
        state = _sessions.get(sid)
        if state is None:
            if runner is not None:
                runner.dispose()
            return
        previous = state.get("runner")
        if previous is not None and previous is not runner:
            previous.dispose()
        state["runner"] = runner
        _timestamps[sid] = time.time()


def reset(sid: str) -> None:
    """세션 초기화."""
    with _lock:
        if sid in _sessions:
            _dispose_state(_sessions[sid])
            _sessions[sid] = _new_state()
            _timestamps[sid] = time.time()


def cleanup_expired() -> int:
    """만료된 세션을 정리. 제거된 수 반환."""
    now = time.time()
    removed = 0
    with _lock:
        expired = [sid for sid, ts in _timestamps.items() if now - ts > SESSION_TTL]
        for sid in expired:
            _dispose_state(_sessions.pop(sid))
            del _timestamps[sid]
            removed += 1
    return removed
