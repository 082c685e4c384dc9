"""
api/routes.py — FastAPI 엔드포인트

렌더링 계층이 부르는 JSON 경계. 응시 상태는 쿠키 세션마다 ExamRunner 하나가 들고 있다.
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from config import QBANK_EXAM_ID
import api.session as session
from study_exam_cbt.models.exam_model import Exam
from study_exam_cbt.models.selection_model import QBankSelection
from study_exam_cbt.models.session_state import ExamSession, MediaState
from study_exam_cbt.services import session_engine as engine
from study_exam_cbt.services.exam_service import (
    best_result, evaluate_question_answer, format_duration, format_score,
    is_passed, latest_result, score_percentage,
)
from study_exam_cbt.services.normalizer import normalize_exam
from study_exam_cbt.services.overview import (
    delete_exam_with_progress, load_exam_overview, qbank_eligible_indices, start_qbank_session,
)
from study_exam_cbt.services.runner import ExamRunner
from study_exam_cbt.services.selection_filter import clamp_question_count
from study_exam_cbt.services.session_engine import ExamStateError
from study_exam_cbt.services.storage import JsonExamRepository, StorageError
from study_exam_cbt.services.timer import format_countdown
from study_exam_cbt.services.timing import now_ms

logger = logging.getLogger(__name__)

router = APIRouter()

# ── Pydantic request bodies ──────────────────────────────────────────────────

class NavigateBody(BaseModel):
    index: int = 0
    scroll_offset: Optional[float] = None
    media: Optional[MediaState] = None

class AnswerBody(BaseModel):
    option_id: str

class SubmitBody(BaseModel):
    confirm: bool = False

class QBankStartBody(BaseModel):
    selection: QBankSelection = QBankSelection()
    count: Optional[int] = None


# ── 헬퍼 ─────────────────────────────────────────────────────────────────────

def _repository(request: Request) -> JsonExamRepository:
    return request.app.state.repository


def _sid(request: Request) -> str:
    return request.state.session_id


def _require_runner(request: Request) -> ExamRunner:
    runner = session.get_runner(_sid(request))
    if runner is None:
        raise HTTPException(status_code=404, detail="진행 중인 시험 세션이 없습니다.")
    return runner


def _storage_failed(e: StorageError) -> HTTPException:
    logger.error(f"저장소 오류: {e}")
    return HTTPException(status_code=503, detail="저장소 오류가 발생했습니다. 잠시 후 다시 시도해 주세요.")


def _result_to_dict(result) -> Optional[dict]:
    if result is None:
        return None
    pct = score_percentage(result)
    d = result.to_payload()
    d.update({
        "percentage": pct,
        "passed": is_passed(pct),
        "scoreText": format_score(result),
        "durationText": format_duration(result.duration_ms),
    })
    return d


def _exam_to_summary(exam: Exam, has_progress: bool) -> dict:
    latest = latest_result(exam)
    best = best_result(exam)
    return {
        "id": exam.id,
        "examTitle": exam.exam_title,
        "timerMode": exam.timer_mode,
        "secondsPerQuestion": exam.seconds_per_question,
        "questionCount": len(exam.questions),
        "updatedAt": exam.updated_at,
        "attempts": len(exam.results),
        "latestResult": _result_to_dict(latest),
        "bestResult": _result_to_dict(best),
        "hasProgress": has_progress,
    }


def _session_to_dict(runner: ExamRunner) -> dict:
    with runner.lock:
        s: ExamSession = runner.session
        return {
            "mode": s.mode,
            "examId": s.exam.id,
            "examTitle": s.exam.exam_title,
            "timerMode": s.exam.timer_mode,
            "index": s.idx,
            "total": s.question_count,
            "answers": {str(k): v for k, v in s.answers.items()},
            "flagged": sorted(k for k, v in s.flagged.items() if v),
            "checked": sorted(k for k, v in s.checked.items() if v),
            "answeredCount": len(s.answers),
            "unanswered": engine.unanswered_question_numbers(s) if s.mode == "taking" else [],
            "elapsedMs": engine.current_elapsed_ms(s),
            "remainingMs": s.remaining_ms,
            "remainingText": format_countdown(s.remaining_ms) if s.remaining_ms is not None else None,
            "latestResult": _result_to_dict(s.latest_result),
            "result": _result_to_dict(s.result),
            "fromSummary": s.from_summary is not None,
            "statusMessage": runner.status_message,
        }


def _question_to_dict(runner: ExamRunner) -> dict:
    """
    현재 문항. taking 모드에서는 즉시 채점 표시 전까지 정답/해설을 숨긴다.
    review 모드는 결과의 응답과 판정을 함께 싣는다.
    """
    with runner.lock:
        s: ExamSession = runner.session
        if not s.exam.questions:
            raise HTTPException(status_code=404, detail="문제를 찾을 수 없습니다.")
        q = s.exam.questions[s.idx]
        d = q.to_payload()
        if s.mode == "review" and s.result is not None:
            user_answer = s.result.answers.get(s.idx)
            reveal = True
        else:
            user_answer = s.answers.get(s.idx)
            reveal = s.mode != "taking" or engine.is_instant_check(s)
        if not reveal:
            d.pop("answer", None)
            d.pop("explanation", None)
        if s.mode == "taking":
            flagged = bool(s.flagged.get(s.idx))
        else:
            flagged = s.result is not None and s.idx in s.result.flagged
        media = s.media_state.get(s.idx)
        d.update({
            "index": s.idx,
            "total": s.question_count,
            "savedAnswer": user_answer,
            "flagged": flagged,
            "evaluation": evaluate_question_answer(q, user_answer) if reveal else None,
            "scrollOffset": engine.get_stored_scroll(s, s.idx) or 0.0,
            "media": media.to_payload() if media is not None else None,
        })
        return d


def _load_overview(request: Request):
    try:
        return load_exam_overview(_repository(request))
    except StorageError as e:
        raise _storage_failed(e)


def _find_exam(request: Request, exam_id: str) -> Exam:
    overview = _load_overview(request)
    exam = overview.find_exam(exam_id)
    if exam is None:
        raise HTTPException(status_code=404, detail="시험을 찾을 수 없습니다.")
    return exam


# ── 시험 목록 ────────────────────────────────────────────────────────────────

@router.get("/api/exams")
async def list_exams(request: Request):
    overview = await asyncio.to_thread(_load_overview, request)
    return {
        "exams": [_exam_to_summary(e, e.id in overview.saved_sessions) for e in overview.exams],
        "qbank": _exam_to_summary(overview.qbank, overview.qbank.id in overview.saved_sessions)
        if overview.qbank is not None else None,
        "catalog": overview.catalog.to_payload(),
    }


@router.put("/api/exams")
async def upsert_exam(request: Request, body: dict):
    """시험 문서 저장. 형식이 어긋난 부분은 거부하지 않고 고쳐서 저장한다."""
    exam, _ = normalize_exam(body)
    exam.updated_at = now_ms()
    try:
        await asyncio.to_thread(_repository(request).upsert_exam, exam)
    except StorageError as e:
        raise _storage_failed(e)
    return {"ok": True, "exam": exam.to_payload()}


@router.delete("/api/exams/{exam_id}")
async def delete_exam(request: Request, exam_id: str):
    runner = session.get_runner(_sid(request))
    if runner is not None and runner.session.owning_exam.id == exam_id:
        session.set_runner(_sid(request), None)
    try:
        await asyncio.to_thread(delete_exam_with_progress, _repository(request), exam_id)
    except StorageError as e:
        raise _storage_failed(e)
    return {"ok": True}


# ── 응시 시작 / 이어풀기 / 폐기 ──────────────────────────────────────────────

@router.post("/api/exams/{exam_id}/start")
async def start_exam(request: Request, exam_id: str):
    """새로 시작. 저장된 진행 스냅샷이 있으면 지운다 (처음부터 다시)."""
    exam = await asyncio.to_thread(_find_exam, request, exam_id)
    repository = _repository(request)
    try:
        await asyncio.to_thread(repository.delete_exam_session_progress, exam_id)
        runner = ExamRunner.start_exam(exam, repository)
    except ExamStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageError as e:
        raise _storage_failed(e)
    session.set_runner(_sid(request), runner)
    return {"ok": True, "session": _session_to_dict(runner)}


@router.post("/api/exams/{exam_id}/resume")
async def resume_exam(request: Request, exam_id: str):
    exam = await asyncio.to_thread(_find_exam, request, exam_id)
    try:
        runner = await asyncio.to_thread(ExamRunner.resume, _repository(request), exam_id, exam)
    except ExamStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageError as e:
        raise _storage_failed(e)
    if runner is None:
        raise HTTPException(status_code=404, detail="저장된 진행 상황이 없습니다.")
    session.set_runner(_sid(request), runner)
    return {"ok": True, "session": _session_to_dict(runner)}


@router.delete("/api/exams/{exam_id}/progress")
async def discard_progress(request: Request, exam_id: str):
    runner = session.get_runner(_sid(request))
    if runner is not None and runner.session.owning_exam.id == exam_id:
        await asyncio.to_thread(runner.discard)
        session.set_runner(_sid(request), None)
    try:
        await asyncio.to_thread(_repository(request).delete_exam_session_progress, exam_id)
    except StorageError as e:
        raise _storage_failed(e)
    return {"ok": True}


@router.post("/api/exams/{exam_id}/results/{result_id}/review")
async def review_result(request: Request, exam_id: str, result_id: str):
    exam = await asyncio.to_thread(_find_exam, request, exam_id)
    result = next((r for r in exam.results if r.id == result_id), None)
    if result is None:
        raise HTTPException(status_code=404, detail="응시 기록을 찾을 수 없습니다.")
    runner = ExamRunner(engine.enter_review(exam, result), _repository(request))
    session.set_runner(_sid(request), runner)
    return {"ok": True, "session": _session_to_dict(runner)}


# ── QBank ────────────────────────────────────────────────────────────────────

@router.post("/api/qbank/availability")
async def qbank_availability(request: Request, selection: QBankSelection):
    overview = await asyncio.to_thread(_load_overview, request)
    eligible = qbank_eligible_indices(overview, selection)
    return {
        "available": len(eligible),
        "count": clamp_question_count(selection.question_count, len(eligible)),
    }


@router.post("/api/qbank/start")
async def qbank_start(request: Request, body: QBankStartBody):
    overview = await asyncio.to_thread(_load_overview, request)
    try:
        exam_session = start_qbank_session(overview, body.selection, body.count)
    except ExamStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if exam_session is None:
        raise HTTPException(status_code=400, detail="선택한 조건에 맞는 문항이 없습니다.")
    repository = _repository(request)
    # 새로 뽑으면 이전 QBank 진행 스냅샷은 이어풀 수 없다
    try:
        await asyncio.to_thread(repository.delete_exam_session_progress, QBANK_EXAM_ID)
    except StorageError as e:
        raise _storage_failed(e)
    runner = ExamRunner(exam_session, repository)
    runner.start()
    session.set_runner(_sid(request), runner)
    return {"ok": True, "session": _session_to_dict(runner)}


# ── 진행 중 세션 ─────────────────────────────────────────────────────────────

@router.get("/api/session")
async def get_session_state(request: Request):
    return _session_to_dict(_require_runner(request))


@router.get("/api/session/question")
async def get_question(request: Request):
    return _question_to_dict(_require_runner(request))


@router.post("/api/session/navigate")
async def navigate(request: Request, body: NavigateBody):
    runner = _require_runner(request)
    scroll = await asyncio.to_thread(runner.navigate, body.index, body.scroll_offset, body.media)
    return {"ok": True, "index": runner.session.idx, "scrollOffset": scroll}


@router.post("/api/session/answer")
async def answer(request: Request, body: AnswerBody):
    runner = _require_runner(request)
    try:
        runner.answer(body.option_id)
    except ExamStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"ok": True, "answeredCount": len(runner.session.answers)}


@router.post("/api/session/flag")
async def flag(request: Request):
    runner = _require_runner(request)
    try:
        flagged = runner.flag()
    except ExamStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"ok": True, "flagged": flagged}


@router.post("/api/session/check")
async def check(request: Request):
    runner = _require_runner(request)
    try:
        checked = runner.check()
    except ExamStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"ok": True, "checked": checked, "question": _question_to_dict(runner)}


@router.post("/api/session/submit")
async def submit(request: Request, body: SubmitBody):
    runner = _require_runner(request)
    try:
        result = await asyncio.to_thread(runner.submit, lambda unanswered: body.confirm)
    except ExamStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageError as e:
        raise _storage_failed(e)
    if result is None:
        raise HTTPException(
            status_code=409,
            detail={"message": "응답하지 않은 문항이 있습니다.", "unanswered": runner.unanswered()},
        )
    return {"ok": True, "result": _result_to_dict(result), "session": _session_to_dict(runner)}


@router.post("/api/session/save-exit")
async def save_and_exit(request: Request):
    runner = _require_runner(request)
    try:
        snapshot = await asyncio.to_thread(runner.save_and_exit)
    except ExamStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageError as e:
        raise _storage_failed(e)
    session.set_runner(_sid(request), None)
    return {"ok": True, "examId": snapshot.exam_id, "message": runner.status_message}


def _apply_transition(request: Request, step, empty_detail: str) -> dict:
    runner = _require_runner(request)
    try:
        next_session = runner.transition(step)
    except ExamStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if next_session is None:
        raise HTTPException(status_code=400, detail=empty_detail)
    return {"ok": True, "session": _session_to_dict(runner)}


@router.post("/api/session/review")
async def review_attempt(request: Request):
    return _apply_transition(request, engine.review_attempt, "복습할 결과가 없습니다.")


@router.post("/api/session/review-incorrect")
async def review_incorrect(request: Request):
    return _apply_transition(request, engine.review_incorrect, "틀린 문항이 없습니다.")


@router.post("/api/session/retake")
async def retake(request: Request):
    return _apply_transition(request, engine.retake, "다시 풀 문항이 없습니다.")


@router.post("/api/session/retake-incorrect")
async def retake_incorrect(request: Request):
    return _apply_transition(request, engine.retake_incorrect, "틀린 문항이 없습니다.")


@router.post("/api/session/back-to-summary")
async def back_to_summary(request: Request):
    return _apply_transition(request, engine.back_to_summary, "돌아갈 결과 요약이 없습니다.")


@router.post("/api/session/exit")
async def exit_session(request: Request):
    """summary/review 화면을 닫는다. 응시 중에는 저장 후 종료나 폐기를 써야 한다."""
    runner = _require_runner(request)
    if runner.session.mode == "taking":
        raise HTTPException(status_code=400, detail="응시 중에는 저장 후 종료하거나 진행을 폐기해 주세요.")
    session.set_runner(_sid(request), None)
    return {"ok": True}


@router.post("/api/reset")
async def reset_session(request: Request):
    session.reset(_sid(request))
    return {"ok": True}
