import os

# 기본 디렉토리 설정
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# 경로 설정
STATIC_DIR = os.path.join(BASE_DIR, "static")
LOG_FILE = os.path.join(BASE_DIR, "launch.log")

# 로컬 UI 서버 설정
DEFAULT_HOST = os.getenv("HOST", "127.0.0.1")
DEFAULT_PORT = int(os.getenv("PORT", "0"))   # 0 이면 빈 포트 자동 선택
SESSION_TTL = int(os.getenv("SESSION_TTL", "3600"))   # 1시간

# 시험 백엔드 설정
BACKEND_BASE_URL = os.getenv("EXAM_BACKEND_URL", "http://127.0.0.1:5000")
BACKEND_TOKEN = os.getenv("EXAM_BACKEND_TOKEN", "")
REQUEST_TIMEOUT = float(os.getenv("EXAM_REQUEST_TIMEOUT", "30"))   # 제출 타임아웃 (초)
UPLOAD_TIMEOUT = float(os.getenv("EXAM_UPLOAD_TIMEOUT", "60"))     # 녹화/스크린샷 업로드

# 타이머 설정
TICK_INTERVAL = 1.0             # 카운트다운 간격 (초)
LOW_TIME_SECONDS = 600          # 10분 미만이면 UI 경고 표시

# 자동 제출 재시도
AUTO_SUBMIT_MAX_ATTEMPTS = 3
AUTO_SUBMIT_BACKOFF = 2.0       # 초, 시도마다 배수 증가

# 부정행위 감지 설정
VIOLATION_RATE_WINDOW = 2.0     # 감지기별 위반 기록 최소 간격 (초)
LOW_SEVERITY_COOLDOWN = 3.0     # low 위반 후 Monitoring 복귀까지 (초)
FACE_CHECK_INTERVAL = 2.0       # 얼굴 감지 샘플링 주기 (초)
AUDIO_CHECK_INTERVAL = 1.0      # 오디오 레벨 샘플링 주기 (초)
AUDIO_LEVEL_THRESHOLD = 100.0   # 평균 주파수 에너지 (0~255) 초과 시 위반
AI_CHUNK_INTERVAL = 5.0         # AI 분석용 영상 청크 길이 (초)
