import os

# 기본 디렉토리 설정
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# 경로 설정
STATIC_DIR = os.path.join(BASE_DIR, "static")
LOG_FILE = os.path.join(BASE_DIR, "launch.log")
DATA_DIR = os.getenv("CBT_DATA_DIR", os.path.join(BASE_DIR, "data"))

# 서버 설정
DEFAULT_HOST = os.getenv("HOST", "127.0.0.1")
DEFAULT_PORT = int(os.getenv("PORT", "8000"))
DEFAULT_TIMEOUT = 15.0
SESSION_TTL = int(os.getenv("SESSION_TTL", "3600"))   # 쿠키 세션 만료 (초)

# 시험 설정
DEFAULT_SECONDS = int(os.getenv("EXAM_DEFAULT_SECONDS", "60"))   # 문항당 기본 제한 시간 (초)
TIMER_INTERVAL = 1.0                                              # 타이머 틱 간격 (초)
PASS_SCORE = 60.0

# QBank 설정
QBANK_EXAM_ID = "__qbank__"
QBANK_TITLE = "QBank"
QBANK_SESSION_TITLE = "QBank • Custom Study"
QBANK_DEFAULT_COUNT = int(os.getenv("QBANK_DEFAULT_COUNT", "20"))
