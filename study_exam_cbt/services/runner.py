"""
services/runner.py

세션 하나와 그 타이머, 저장소를 묶어 소유하는 실행기.

타이머 스레드와 사용자 요청이 같은 세션을 바꾸므로 모든 조작은 하나의 재진입 잠금 안에서 한다.
세션이 taking 상태를 벗어나는 모든 전이(제출, 저장 후 종료, 폐기)에서 타이머를 해제한다.
"""

import logging
import threading
from typing import Callable, List, Optional

from config import TIMER_INTERVAL
from study_exam_cbt.models.exam_model import Exam, ExamResult
from study_exam_cbt.models.session_state import ExamSession, MediaState, SessionSnapshot
from study_exam_cbt.services import session_engine as engine
from study_exam_cbt.services.finalizer import ConfirmUnanswered, finalize
from study_exam_cbt.services.normalizer import normalize_snapshot
from study_exam_cbt.services.storage import JsonExamRepository, StorageError
from study_exam_cbt.services.timer import ExamTimer

logger = logging.getLogger(__name__)


class ExamRunner:
    def __init__(
        self,
        session: ExamSession,
        repository: JsonExamRepository,
        timer_interval: float = TIMER_INTERVAL,
    ):
        self.lock = threading.RLock()
        self._timer: Optional[ExamTimer] = None
        self._timer_interval = timer_interval
        self.session = session
        self.repository = repository
        self.status_message = ""
        self.disposed = False

    # ── 생성 ────────────────────────────────────────────────────────────────

    @classmethod
    def start_exam(
        cls,
        exam: Exam,
        repository: JsonExamRepository,
        timer_interval: float = TIMER_INTERVAL,
        arm_timer: bool = True,
    ) -> "ExamRunner":
        runner = cls(engine.create_taking_session(exam), repository, timer_interval)
        if arm_timer:
            runner.start()
        return runner

    @classmethod
    def resume(
        cls,
        repository: JsonExamRepository,
        exam_id: str,
        fallback_exam: Optional[Exam],
        timer_interval: float = TIMER_INTERVAL,
        arm_timer: bool = True,
    ) -> Optional["ExamRunner"]:
        """
        저장된 스냅샷으로 이어풀기. 스냅샷이 없으면 None.
        보정해도 읽을 수 없는 스냅샷은 지우고 없는 것으로 본다.
        """
        raw = repository.load_exam_session(exam_id)
        if raw is None:
            return None
        repaired = normalize_snapshot(raw)
        if repaired is None:
            logger.warning(f"읽을 수 없는 진행 스냅샷 삭제: {exam_id}")
            repository.delete_exam_session_progress(exam_id)
            return None
        snapshot = SessionSnapshot.model_validate(repaired)
        runner = cls(engine.hydrate_saved_session(snapshot, fallback_exam), repository, timer_interval)
        if arm_timer:
            runner.start()
        return runner

    # ── 타이머 ──────────────────────────────────────────────────────────────

    @property
    def timer_active(self) -> bool:
        return self._timer is not None and self._timer.active

    def start(self) -> None:
        """taking 상태의 시간제 시험일 때만 타이머를 건다."""
        with self.lock:
            session = self.session
            if self.disposed or session.mode != "taking":
                return
            if not session.exam.is_timed or not session.exam.questions:
                return
            if self._timer is not None and self._timer.active:
                return
            self._timer = ExamTimer(self.tick, self._timer_interval, name=f"exam-timer-{session.exam.id}")
            self._timer.start()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def tick(self, now: Optional[int] = None) -> bool:
        """타이머 콜백. 시간이 다 되면 정확히 한 번 자동 제출한다."""
        with self.lock:
            if self.disposed or self.session.mode != "taking":
                self._cancel_timer()
                return False
            expired = engine.tick(self.session, now)
            if expired:
                try:
                    finalize(self.session, self.repository, auto_submit=True, now=now)
                except StorageError:
                    # 다음 틱에서 다시 시도
                    engine.resume_clock(self.session, now)
                    self.status_message = "자동 제출 결과를 저장하지 못했습니다. 다시 시도합니다."
                    raise
                self._cancel_timer()
                self.status_message = "시간이 종료되어 자동 제출되었습니다."
            return expired

    # ── 응시 조작 ───────────────────────────────────────────────────────────

    def navigate(
        self,
        idx: int,
        scroll_offset: Optional[float] = None,
        media: Optional[MediaState] = None,
        now: Optional[int] = None,
    ) -> float:
        with self.lock:
            return engine.navigate(self.session, idx, scroll_offset, media, now)

    def answer(self, option_id: str, now: Optional[int] = None) -> None:
        with self.lock:
            engine.answer_question(self.session, option_id, now=now)

    def flag(self) -> bool:
        with self.lock:
            return engine.toggle_flag(self.session)

    def check(self) -> bool:
        with self.lock:
            return engine.toggle_check(self.session)

    def unanswered(self) -> List[int]:
        with self.lock:
            return engine.unanswered_question_numbers(self.session)

    # ── 종료 전이 ───────────────────────────────────────────────────────────

    def submit(self, confirm: Optional[ConfirmUnanswered] = None, now: Optional[int] = None) -> Optional[ExamResult]:
        """
        수동 제출. 미응답이 있고 confirm 이 승인하지 않으면 None (세션 그대로).
        저장 실패 시 시계를 다시 돌리고 StorageError 를 그대로 올린다.
        """
        with self.lock:
            try:
                result = finalize(self.session, self.repository, confirm=confirm, now=now)
            except StorageError:
                engine.resume_clock(self.session)
                raise
            if result is not None:
                self._cancel_timer()
            return result

    def save_and_exit(self, now: Optional[int] = None) -> SessionSnapshot:
        """
        진행 상태를 저장하고 세션을 내려놓는다.
        저장이 끝나기 전에는 성공을 알리지 않으며, 실패하면 세션과 타이머를 되살린다.
        """
        with self.lock:
            if self.session.mode != "taking":
                raise engine.ExamStateError(f"save_and_exit: '{self.session.mode}' 상태에서는 할 수 없습니다.")
            self._cancel_timer()
            engine.pause_clock(self.session, now)
            snapshot = engine.snapshot_session(self.session, now)
            try:
                self.repository.save_exam_session_progress(snapshot)
            except StorageError as e:
                logger.error(f"진행 저장 실패 ({snapshot.exam_id}): {e}")
                engine.resume_clock(self.session)
                self.start()
                raise
            self.status_message = "진행 상황을 저장했습니다. 나중에 이어서 풀 수 있습니다."
            logger.info(f"진행 저장 후 종료: {snapshot.exam_id} ({len(snapshot.answers)}문항 응답)")
            self.dispose()
            return snapshot

    def discard(self) -> None:
        """진행 중 응시를 버린다. 저장된 진행 스냅샷도 함께 지운다."""
        with self.lock:
            self._cancel_timer()
            if self.session.mode == "taking":
                exam_id = self.session.owning_exam.id
                try:
                    self.repository.delete_exam_session_progress(exam_id)
                except StorageError as e:
                    logger.warning(f"진행 스냅샷 삭제 실패 ({exam_id}): {e}")
            self.dispose()

    def transition(self, step: Callable[..., Optional[ExamSession]], *args) -> Optional[ExamSession]:
        """
        summary/review 전이 함수를 현재 세션에 적용한다.
        전이 함수가 None 을 돌려주면 (예: 틀린 문항 없음) 세션을 바꾸지 않는다.
        """
        with self.lock:
            next_session = step(self.session, *args)
            if next_session is not None:
                self.replace_session(next_session)
            return next_session

    def replace_session(self, session: ExamSession) -> None:
        """summary/review 전이 등으로 세션을 바꾼다. 기존 타이머는 해제."""
        with self.lock:
            self._cancel_timer()
            self.session = session
            self.start()

    def dispose(self) -> None:
        with self.lock:
            self._cancel_timer()
            self.disposed = True
