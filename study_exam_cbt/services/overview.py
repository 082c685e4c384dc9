"""
services/overview.py

시험 목록 화면이 쓰는 저장소 단위 조작.
저장된 시험을 정규화하고, QBank 를 최신으로 맞추고, 주인 없는 진행 스냅샷을 정리한다.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from config import QBANK_SESSION_TITLE
from study_exam_cbt.models.exam_model import Exam
from study_exam_cbt.models.selection_model import BlockCatalog, QBankSelection
from study_exam_cbt.models.session_state import ExamSession
from study_exam_cbt.services.normalizer import normalize_exam
from study_exam_cbt.services.qbank import build_qbank, is_qbank
from study_exam_cbt.services.selection_filter import (
    build_answer_history, draw_indices, eligible_indices, prune_selection,
)
from study_exam_cbt.services.session_engine import create_taking_session
from study_exam_cbt.services.storage import JsonExamRepository, StorageError
from study_exam_cbt.services.subset_builder import build_subset

logger = logging.getLogger(__name__)


@dataclass
class ExamOverview:
    exams: List[Exam] = field(default_factory=list)
    qbank: Optional[Exam] = None
    saved_sessions: Dict[str, dict] = field(default_factory=dict)
    catalog: BlockCatalog = field(default_factory=BlockCatalog)

    def find_exam(self, exam_id: str) -> Optional[Exam]:
        if self.qbank is not None and self.qbank.id == exam_id:
            return self.qbank
        for exam in self.exams:
            if exam.id == exam_id:
                return exam
        return None


def load_exam_overview(repository: JsonExamRepository, now: Optional[int] = None) -> ExamOverview:
    """
    시험 목록을 불러온다.

    1. 모든 시험을 정규화하고, 고쳐진 시험은 다시 저장한다 (실패는 경고만).
    2. updatedAt 내림차순으로 정렬한다.
    3. QBank 시그니처가 바뀌었으면 다시 만들어 저장하고, 낡은 QBank 스냅샷을 지운다.
    4. 시험이 사라진 진행 스냅샷을 지운다.
    """
    exams: List[Exam] = []
    stored_qbank: Optional[Exam] = None
    for raw in repository.list_exams():
        exam, changed = normalize_exam(raw)
        if changed:
            try:
                repository.upsert_exam(exam)
            except StorageError as e:
                logger.warning(f"정규화된 시험 저장 실패 ({exam.id}): {e}")
        if is_qbank(exam):
            stored_qbank = exam
        else:
            exams.append(exam)
    exams.sort(key=lambda e: e.updated_at or 0, reverse=True)

    qbank, rebuilt = build_qbank(exams, stored_qbank, now)
    if rebuilt:
        repository.upsert_exam(qbank)
        try:
            repository.delete_exam_session_progress(qbank.id)
        except StorageError as e:
            logger.warning(f"QBank 진행 스냅샷 삭제 실패: {e}")

    known_ids = {exam.id for exam in exams} | {qbank.id}
    saved_sessions: Dict[str, dict] = {}
    for snapshot in repository.list_exam_sessions():
        exam_id = snapshot.get("examId")
        if exam_id in known_ids:
            saved_sessions[exam_id] = snapshot
            continue
        logger.info(f"주인 없는 진행 스냅샷 삭제: {exam_id}")
        try:
            repository.delete_exam_session_progress(exam_id)
        except StorageError as e:
            logger.warning(f"진행 스냅샷 삭제 실패 ({exam_id}): {e}")

    return ExamOverview(
        exams=exams,
        qbank=qbank,
        saved_sessions=saved_sessions,
        catalog=repository.load_block_catalog(),
    )


def delete_exam_with_progress(repository: JsonExamRepository, exam_id: str) -> None:
    """시험과 그 진행 스냅샷을 함께 지운다."""
    repository.delete_exam(exam_id)
    repository.delete_exam_session_progress(exam_id)
    logger.info(f"시험 삭제: {exam_id}")


def qbank_eligible_indices(overview: ExamOverview, selection: QBankSelection) -> List[int]:
    if overview.qbank is None:
        return []
    # 카탈로그가 비어 있으면 (아직 받지 못함) 선택을 그대로 쓴다
    if overview.catalog.blocks or overview.catalog.lecture_lists:
        selection = prune_selection(selection, overview.catalog)
    history = build_answer_history(overview.exams, overview.qbank)
    return eligible_indices(overview.qbank, selection, history)


def start_qbank_session(
    overview: ExamOverview,
    selection: QBankSelection,
    requested: Optional[int] = None,
    rng: Optional[random.Random] = None,
    now: Optional[int] = None,
) -> Optional[ExamSession]:
    """
    조건에 맞는 문항을 무작위로 뽑아 QBank 응시 세션을 만든다.
    출제 가능한 문항이 없으면 None.
    """
    qbank = overview.qbank
    if qbank is None:
        return None
    eligible = qbank_eligible_indices(overview, selection)
    count = requested if requested is not None else selection.question_count
    picked = draw_indices(eligible, count, rng)
    subset = build_subset(qbank, picked)
    if subset is None:
        logger.info("QBank: 조건에 맞는 문항이 없습니다.")
        return None

    exam = subset.exam
    exam.exam_title = QBANK_SESSION_TITLE
    exam.timer_mode = "untimed"
    logger.info(f"QBank 출제: 후보 {len(eligible)}문항 중 {len(picked)}문항")
    return create_taking_session(exam, now, base_exam=qbank, subset_indices=picked)
