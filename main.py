"""
main.py — Study Exam CBT 서버 실행기

  python main.py                       # 127.0.0.1 의 빈 포트, 브라우저 자동 열기
  python main.py --port 8000 --no-browser
  python main.py --data-dir ./my-data  # 시험/진행 스냅샷 저장 위치 지정
"""

import argparse
import logging
import os
import socket
import sys
import threading
import time
import webbrowser
from typing import List, Optional

_BASE_DIR = os.path.dirname(os.path.abspath(__file__))
if _BASE_DIR not in sys.path:
    sys.path.insert(0, _BASE_DIR)

from config import DATA_DIR, DEFAULT_HOST, DEFAULT_PORT, DEFAULT_TIMEOUT, LOG_FILE

logger = logging.getLogger(__name__)


# ── 로깅 설정 ────────────────────────────────────────────────────────────────

def _setup_logging(log_file: Optional[str]) -> None:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        try:
            handlers.insert(0, logging.FileHandler(log_file, encoding="utf-8"))
        except PermissionError:
            # 로그 파일 점유 시 콘솔 출력만 사용
            pass
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


# ── 인자 ─────────────────────────────────────────────────────────────────────

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Study Exam CBT 서버")
    parser.add_argument("--data-dir", default=DATA_DIR, help="시험/진행 스냅샷 JSON 저장 폴더")
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="0 이면 빈 포트를 고른다")
    parser.add_argument("--log-file", default=LOG_FILE, help="빈 문자열이면 콘솔에만 기록")
    parser.add_argument("--no-browser", action="store_true", help="브라우저를 열지 않는다")
    return parser.parse_args(argv)


# ── 서버 및 네트워크 유틸 ───────────────────────────────────────────────────

def _find_free_port(host: str) -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((host, 0))
        return s.getsockname()[1]


def _wait_for_server(host: str, port: int, timeout: float = DEFAULT_TIMEOUT) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        try:
            with socket.create_connection((host, port), timeout=0.5):
                return True
        except OSError:
            time.sleep(0.1)
    return False


def _open_browser_when_ready(host: str, port: int) -> None:
    if _wait_for_server(host, port):
        logger.info("서버 준비 완료. 브라우저를 엽니다.")
        webbrowser.open(f"http://{host}:{port}")
    else:
        logger.error("서버 시작 제한 시간을 초과했습니다.")


def build_app(data_dir: str):
    """저장 폴더를 지정해 앱을 만든다."""
    from api.app import create_app
    from study_exam_cbt.services.storage import JsonExamRepository

    return create_app(JsonExamRepository(data_dir))


# ── 메인 실행 ────────────────────────────────────────────────────────────────

def main(argv: Optional[List[str]] = None) -> None:
    import uvicorn

    args = parse_args(argv)
    _setup_logging(args.log_file)
    port = args.port or _find_free_port(args.host)

    logger.info(f"=== Study Exam CBT 시작 - {args.host}:{port}, 데이터: {args.data_dir} ===")
    app = build_app(args.data_dir)
    if not args.no_browser:
        threading.Thread(
            target=_open_browser_when_ready, args=(args.host, port), daemon=True,
        ).start()
    uvicorn.run(app, host=args.host, port=port, log_level="warning")
    logger.info("서버가 종료되었습니다.")


if __name__ == "__main__":
    main()
