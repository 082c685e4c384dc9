"""
services/normalizer.py

저장소에서 읽은 시험 데이터를 로드 시점에 보정한다.
잘못된 데이터는 거부하지 않고 "쓸 수 있는 상태"로 고친다 (ID 기본값, 정답 보정, 배열 강제).

Public API:
  - normalize_exam(raw) -> (Exam, changed)
  - ensure_array_tags(tags) -> List[str]
  - normalize_lecture_refs(lectures) -> List[dict]
  - normalize_question_stat(stat) -> Optional[dict]
  - normalize_snapshot(raw) -> Optional[dict]
"""

import copy
import logging
import re
import time
import uuid
from typing import Any, Dict, List, Optional, Tuple

from config import DEFAULT_SECONDS
from study_exam_cbt.models.exam_model import Exam

logger = logging.getLogger(__name__)

_TAG_SPLIT = re.compile(r"[|,]")


def new_id() -> str:
    return uuid.uuid4().hex


def normalize_text(value: Any) -> str:
    """리치 텍스트 필드를 문자열로 강제. 서식 자체는 건드리지 않는다."""
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def ensure_array_tags(tags: Any) -> List[str]:
    """
    태그를 문자열 리스트로 정규화.
    "a|b, c" 형태의 문자열은 분리하고, 빈 항목은 버린다.
    """
    if tags is None:
        return []
    if isinstance(tags, str):
        return [t.strip() for t in _TAG_SPLIT.split(tags) if t.strip()]
    if not isinstance(tags, list):
        return []
    return [str(t).strip() for t in tags if t is not None and str(t).strip()]


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _as_bool(value: Any) -> Optional[bool]:
    return value if isinstance(value, bool) else None


def _as_str(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    return value if isinstance(value, str) else str(value)


def _index_map(raw: Any, coerce) -> Dict[int, Any]:
    """{인덱스: 값} 맵 정규화. 키가 정수가 아니거나 값이 쓸 수 없는 항목은 버린다."""
    if not isinstance(raw, dict):
        return {}
    out: Dict[int, Any] = {}
    for key, value in raw.items():
        idx = _as_int(key)
        if idx is None or idx < 0:
            continue
        value = coerce(value)
        if value is None:
            continue
        out[idx] = value
    return out


def _int_list(raw: Any) -> List[int]:
    if not isinstance(raw, list):
        return []
    out: List[int] = []
    for value in raw:
        idx = _as_int(value)
        if idx is not None and idx >= 0 and idx not in out:
            out.append(idx)
    return out


def _normalize_change(raw: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(raw, dict):
        return None
    at = _as_int(raw.get("at"))
    if at is None:
        return None
    return {
        "at": at,
        "from": _as_str(raw.get("from")),
        "to": _as_str(raw.get("to")),
        "fromCorrect": _as_bool(raw.get("fromCorrect")),
        "toCorrect": _as_bool(raw.get("toCorrect")),
    }


def normalize_question_stat(raw: Any) -> Optional[Dict[str, Any]]:
    """
    문항 통계 1건 정규화. dict 가 아니면 None.
    잘못된 필드는 기본값으로, 잘못된 변경 이벤트는 버린다. 열린 계측 구간은 닫는다.
    """
    if not isinstance(raw, dict):
        return None
    time_ms = _as_int(raw.get("timeMs"))
    changes = raw.get("changes") if isinstance(raw.get("changes"), list) else []
    return {
        "timeMs": max(0, time_ms) if time_ms is not None else 0,
        "changes": [c for c in (_normalize_change(c) for c in changes) if c is not None],
        "initialAnswer": _as_str(raw.get("initialAnswer")),
        "initialAnswerAt": _as_int(raw.get("initialAnswerAt")),
        "enteredAt": None,
    }


def _normalize_change_summary(raw: Any) -> Optional[Dict[str, int]]:
    if not isinstance(raw, dict):
        return None
    fields = (
        "rightToWrong", "wrongToRight", "switched",
        "endedDifferent", "returnedToOriginal", "totalChanges",
    )
    summary = {}
    for name in fields:
        value = _as_int(raw.get(name))
        summary[name] = max(0, value) if value is not None else 0
    return summary


def normalize_lecture_refs(lectures: Any) -> List[Dict[str, Any]]:
    """
    강의 참조 정규화.
    blockId / id 가 없거나 잘못된 항목은 제거하고, (blockId, id) 중복은 첫 항목만 남긴다.
    """
    if not isinstance(lectures, list):
        return []
    seen = set()
    refs: List[Dict[str, Any]] = []
    for ref in lectures:
        if not isinstance(ref, dict):
            continue
        raw_block = ref.get("blockId")
        lecture_id = _as_int(ref.get("id"))
        if raw_block is None or lecture_id is None:
            continue
        block_id = str(raw_block).strip()
        if not block_id:
            continue
        key = (block_id, lecture_id)
        if key in seen:
            continue
        seen.add(key)
        name = ref.get("name")
        refs.append({
            "blockId": block_id,
            "id": lecture_id,
            "name": str(name) if name is not None else "",
            "week": _as_int(ref.get("week")),
        })
    return refs


def _normalize_option(raw: Any) -> Tuple[Dict[str, Any], bool]:
    option = dict(raw) if isinstance(raw, dict) else {}
    changed = not isinstance(raw, dict)
    if not option.get("id"):
        option["id"] = new_id()
        changed = True
    elif not isinstance(option["id"], str):
        option["id"] = str(option["id"])
        changed = True
    text = normalize_text(option.get("text"))
    if option.get("text") != text:
        changed = True
    option["text"] = text
    return option, changed


def _normalize_question(raw: Any) -> Tuple[Dict[str, Any], bool]:
    question = dict(raw) if isinstance(raw, dict) else {}
    changed = not isinstance(raw, dict)

    if not question.get("id"):
        question["id"] = new_id()
        changed = True
    elif not isinstance(question["id"], str):
        question["id"] = str(question["id"])
        changed = True

    for field in ("stem", "explanation", "media"):
        text = normalize_text(question.get(field))
        if question.get(field) != text:
            changed = True
        question[field] = text

    options = question.get("options")
    if not isinstance(options, list):
        options = []
        changed = True
    normalized_options = []
    for opt in options:
        option, opt_changed = _normalize_option(opt)
        changed = changed or opt_changed
        normalized_options.append(option)
    question["options"] = normalized_options

    # 정답이 보기에 없으면 첫 번째 보기로 보정
    option_ids = [opt["id"] for opt in normalized_options]
    answer = question.get("answer")
    if not answer or answer not in option_ids:
        repaired = option_ids[0] if option_ids else ""
        if answer != repaired:
            changed = True
        question["answer"] = repaired

    tags = ensure_array_tags(question.get("tags"))
    if question.get("tags") != tags:
        changed = True
    question["tags"] = tags

    lectures = normalize_lecture_refs(question.get("lectures"))
    if question.get("lectures") != lectures:
        changed = True
    question["lectures"] = lectures

    for field in ("sourceExamId", "sourceExamTitle"):
        if field in question:
            value = _as_str(question[field])
            if question[field] != value:
                changed = True
            question[field] = value
    if "originalIndex" in question:
        original = _as_int(question["originalIndex"])
        if original is not None and original < 0:
            original = None
        if question["originalIndex"] != original:
            changed = True
        question["originalIndex"] = original

    return question, changed


def _normalize_result(raw: Any, question_count: int) -> Tuple[Dict[str, Any], bool]:
    result = dict(raw) if isinstance(raw, dict) else {}
    changed = not isinstance(raw, dict)

    if not result.get("id"):
        result["id"] = new_id()
        changed = True
    elif not isinstance(result["id"], str):
        result["id"] = str(result["id"])
        changed = True
    if not isinstance(result.get("when"), int) or isinstance(result.get("when"), bool):
        when = _as_int(result.get("when"))
        result["when"] = when if when is not None else int(time.time() * 1000)
        changed = True
    for field, default in (("correct", 0), ("total", question_count), ("durationMs", 0)):
        value = result.get(field)
        if not isinstance(value, int) or isinstance(value, bool):
            coerced = _as_int(value)
            result[field] = coerced if coerced is not None else default
            changed = True

    # 인덱스 키는 JSON 에서 문자열이므로 비교는 정규화된 문자열 키 형태로 한다
    answers = _index_map(result.get("answers"), _as_str)
    if result.get("answers") != {str(k): v for k, v in answers.items()}:
        changed = True
    result["answers"] = answers
    flagged = _int_list(result.get("flagged"))
    if result.get("flagged") != flagged:
        changed = True
    result["flagged"] = flagged
    answered = result.get("answered")
    if not isinstance(answered, int) or isinstance(answered, bool):
        result["answered"] = len(answers)
        changed = True

    # 구버전 결과는 questionStats 를 구멍 난 배열(null 포함)로 저장했다
    raw_stats = result.get("questionStats")
    if isinstance(raw_stats, list):
        raw_stats = {str(idx): stat for idx, stat in enumerate(raw_stats)}
        changed = True
    stats = _index_map(raw_stats, normalize_question_stat)
    if raw_stats is not None and raw_stats != {str(k): v for k, v in stats.items()}:
        changed = True
    result["questionStats"] = stats

    if result.get("changeSummary") is not None:
        summary = _normalize_change_summary(result["changeSummary"])
        if result["changeSummary"] != summary:
            changed = True
        result["changeSummary"] = summary
    if result.get("subsetIndices") is not None:
        subset = _int_list(result["subsetIndices"]) or None
        if result["subsetIndices"] != subset:
            changed = True
        result["subsetIndices"] = subset
    return result, changed


def normalize_exam(raw: Any) -> Tuple[Exam, bool]:
    """
    시험 데이터를 보정하여 (Exam, changed) 를 반환한다.

    changed 는 보정이 한 번이라도 일어났을 때만 True 이다.
    이미 정규화된 시험을 다시 넣으면 같은 값과 changed=False 가 나온다 (멱등).

    Args:
        raw: 저장소에서 읽은 시험 dict 또는 Exam 모델.

    Returns:
        (정규화된 Exam, 보정 여부)
    """
    if isinstance(raw, Exam):
        raw = raw.to_payload()
    data: Dict[str, Any] = copy.deepcopy(raw) if isinstance(raw, dict) else {}
    changed = not isinstance(raw, dict)

    if not data.get("id"):
        data["id"] = new_id()
        changed = True
    elif not isinstance(data["id"], str):
        data["id"] = str(data["id"])
        changed = True
    if not data.get("examTitle"):
        data["examTitle"] = "Untitled Exam"
        changed = True
    elif not isinstance(data["examTitle"], str):
        data["examTitle"] = normalize_text(data["examTitle"])
        changed = True
    for field, coerce in (("updatedAt", _as_int), ("qbankSignature", _as_str)):
        if data.get(field) is not None:
            value = coerce(data[field])
            if data[field] != value:
                changed = True
            data[field] = value
    if data.get("timerMode") != "timed":
        if data.get("timerMode") != "untimed":
            changed = True
        data["timerMode"] = "untimed"
    seconds = data.get("secondsPerQuestion")
    if not isinstance(seconds, (int, float)) or isinstance(seconds, bool) or seconds <= 0:
        data["secondsPerQuestion"] = DEFAULT_SECONDS
        changed = True
    elif not isinstance(seconds, int):
        data["secondsPerQuestion"] = int(seconds) if seconds >= 1 else DEFAULT_SECONDS
        changed = True

    questions = data.get("questions")
    if not isinstance(questions, list):
        questions = []
        changed = True
    normalized_questions = []
    for q in questions:
        question, q_changed = _normalize_question(q)
        changed = changed or q_changed
        normalized_questions.append(question)
    data["questions"] = normalized_questions

    results = data.get("results")
    if not isinstance(results, list):
        results = []
        changed = True
    normalized_results = []
    for r in results:
        result, r_changed = _normalize_result(r, len(normalized_questions))
        changed = changed or r_changed
        normalized_results.append(result)
    data["results"] = normalized_results

    exam = Exam.model_validate(data)
    if changed:
        logger.info(f"normalize_exam: 시험 '{exam.exam_title}'({exam.id}) 데이터 보정")
    return exam, changed


def normalize_snapshot(raw: Any) -> Optional[Dict[str, Any]]:
    """
    저장된 진행 스냅샷을 SessionSnapshot 으로 읽을 수 있는 형태로 보정한다.
    examId 가 없으면 쓸 수 없는 스냅샷이므로 None.
    """
    if not isinstance(raw, dict):
        return None
    exam_id = _as_str(raw.get("examId"))
    if not exam_id:
        return None

    idx = _as_int(raw.get("idx"))
    elapsed = _as_int(raw.get("elapsedMs"))
    stats = raw.get("questionStats") if isinstance(raw.get("questionStats"), list) else []
    snapshot: Dict[str, Any] = {
        "examId": exam_id,
        "idx": max(0, idx) if idx is not None else 0,
        "answers": _index_map(raw.get("answers"), _as_str),
        "flagged": _index_map(raw.get("flagged"), _as_bool),
        "checked": _index_map(raw.get("checked"), _as_bool),
        "remainingMs": _as_int(raw.get("remainingMs")),
        "elapsedMs": max(0, elapsed) if elapsed is not None else 0,
        "mode": "taking",
        # 위치가 곧 문항 인덱스이므로 잘못된 항목은 빈 통계로 바꾼다
        "questionStats": [normalize_question_stat(s) or {} for s in stats],
        "savedAt": _as_int(raw.get("savedAt")),
    }
    for field in ("exam", "baseExam"):
        value = raw.get(field)
        snapshot[field] = normalize_exam(value)[0].to_payload() if isinstance(value, dict) else None
    if raw.get("subsetIndices") is not None:
        snapshot["subsetIndices"] = _int_list(raw["subsetIndices"]) or None
    return snapshot
