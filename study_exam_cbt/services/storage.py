"""
services/storage.py

시험/진행 스냅샷/블록 카탈로그 JSON 저장소.

엔진 입장에서 페이로드는 불투명한 dict 이다. 모델은 camelCase JSON 으로 덤프해서 넣는다.
쓰기는 임시 파일 + os.replace 로 원자적으로 처리하고, 프로세스 안에서는 잠금으로 직렬화한다.
입출력/디코딩 실패는 StorageError 로 올린다.
"""

import json
import logging
import os
import tempfile
import threading
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ValidationError

from study_exam_cbt.models.selection_model import BlockCatalog

logger = logging.getLogger(__name__)

EXAMS_FILE = "exams.json"
SESSIONS_FILE = "exam_sessions.json"
CATALOG_FILE = "block_catalog.json"

Payload = Union[BaseModel, Dict[str, Any]]


class StorageError(RuntimeError):
    """저장소 읽기/쓰기 실패."""


def _to_payload(value: Payload) -> Dict[str, Any]:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    return dict(value)


class JsonExamRepository:
    def __init__(self, data_dir: str):
        self.data_dir = data_dir
        self._lock = threading.Lock()
        try:
            os.makedirs(data_dir, exist_ok=True)
        except OSError as e:
            raise StorageError(f"데이터 디렉토리를 만들 수 없습니다: {data_dir} ({e})") from e

    # ── 파일 입출력 ─────────────────────────────────────────────────────────

    def _path(self, name: str) -> str:
        return os.path.join(self.data_dir, name)

    def _read(self, name: str) -> Dict[str, Any]:
        path = self._path(name)
        if not os.path.exists(path):
            return {}
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"{name} 읽기 실패: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"{name} 형식 오류: 최상위가 객체가 아닙니다.")
        return data

    def _write(self, name: str, data: Dict[str, Any]) -> None:
        path = self._path(name)
        tmp_path = None
        try:
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=self.data_dir, suffix=".tmp", delete=False
            ) as tmp:
                tmp_path = tmp.name
                json.dump(data, tmp, ensure_ascii=False)
            os.replace(tmp_path, path)
        except OSError as e:
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise StorageError(f"{name} 쓰기 실패: {e}") from e

    # ── 시험 ────────────────────────────────────────────────────────────────

    def list_exams(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._read(EXAMS_FILE).values())

    def get_exam(self, exam_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._read(EXAMS_FILE).get(exam_id)

    def upsert_exam(self, exam: Payload) -> None:
        payload = _to_payload(exam)
        exam_id = payload.get("id")
        if not exam_id:
            raise StorageError("시험 ID 가 없습니다.")
        with self._lock:
            exams = self._read(EXAMS_FILE)
            exams[exam_id] = payload
            self._write(EXAMS_FILE, exams)

    def delete_exam(self, exam_id: str) -> None:
        with self._lock:
            exams = self._read(EXAMS_FILE)
            if exams.pop(exam_id, None) is not None:
                self._write(EXAMS_FILE, exams)

    # ── 진행 스냅샷 ─────────────────────────────────────────────────────────

    def list_exam_sessions(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [s for s in self._read(SESSIONS_FILE).values() if isinstance(s, dict)]

    def load_exam_session(self, exam_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._read(SESSIONS_FILE).get(exam_id)

    def save_exam_session_progress(self, snapshot: Payload) -> None:
        """examId 기준 upsert. 같은 스냅샷을 두 번 저장해도 결과는 같다."""
        payload = _to_payload(snapshot)
        exam_id = payload.get("examId")
        if not exam_id:
            raise StorageError("스냅샷에 examId 가 없습니다.")
        with self._lock:
            sessions = self._read(SESSIONS_FILE)
            sessions[exam_id] = payload
            self._write(SESSIONS_FILE, sessions)

    def delete_exam_session_progress(self, exam_id: str) -> None:
        """스냅샷이 없어도 성공 (no-op)."""
        with self._lock:
            sessions = self._read(SESSIONS_FILE)
            if sessions.pop(exam_id, None) is not None:
                self._write(SESSIONS_FILE, sessions)

    # ── 블록 카탈로그 ───────────────────────────────────────────────────────

    def load_block_catalog(self) -> BlockCatalog:
        """카탈로그가 없거나 읽을 수 없으면 빈 카탈로그."""
        try:
            with self._lock:
                data = self._read(CATALOG_FILE)
            return BlockCatalog.model_validate(data)
        except (StorageError, ValidationError) as e:
            logger.warning(f"블록 카탈로그 로드 실패, 빈 카탈로그 사용: {e}")
            return BlockCatalog()

    def save_block_catalog(self, catalog: Payload) -> None:
        with self._lock:
            self._write(CATALOG_FILE, _to_payload(catalog))
