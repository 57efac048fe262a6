"""
main.py — CBT 시험 세션 로컬 서버 진입점

로컬 FastAPI 서버를 띄우고 브라우저(앱 모드)로 시험 화면을 연다.
OPEN_BROWSER=0 이면 서버만 실행한다.
"""

import logging
import os
import socket
import subprocess
import sys
import threading
import time
import traceback
import webbrowser

from config import BACKEND_BASE_URL, BASE_DIR, DEFAULT_HOST, DEFAULT_PORT, LOG_FILE

# ── 로깅 설정 ────────────────────────────────────────────────────────────────

try:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        handlers=[
            logging.FileHandler(LOG_FILE, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )
except PermissionError:
    # 로그 파일 점유 시 콘솔 출력만 사용
    logging.basicConfig(level=logging.INFO)

logger = logging.getLogger(__name__)

# ── 서버 및 네트워크 유틸 ───────────────────────────────────────────────────

def _find_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((DEFAULT_HOST, 0))
        return s.getsockname()[1]

def _wait_for_server(port: int, timeout: float = 15.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        try:
            with socket.create_connection((DEFAULT_HOST, port), timeout=0.5):
                return True
        except OSError:
            time.sleep(0.1)
    return False

def _open_browser(url: str) -> None:
    # 시험 화면은 주소창 없는 앱 모드가 기본
    candidates = [
        r"C:\Program Files\Google\Chrome\Application\chrome.exe",
        r"C:\Program Files (x86)\Google\Chrome\Application\chrome.exe",
        r"C:\Program Files\Microsoft\Edge\Application\msedge.exe",
        "/usr/bin/google-chrome",
        "/usr/bin/chromium",
    ]
    flags = [f"--app={url}", "--no-first-run", "--window-size=1280,800"]

    for path in candidates:
        if os.path.exists(path):
            logger.info(f"브라우저 실행 시도: {path}")
            subprocess.Popen([path] + flags)
            return

    webbrowser.open(url)

def _start_server(port: int) -> None:
    try:
        import uvicorn
        from api.app import create_app
        logger.info(f"Uvicorn 서버 시작 - Port: {port}, Backend: {BACKEND_BASE_URL}")
        uvicorn.run(create_app(), host=DEFAULT_HOST, port=port, log_level="warning")
    except Exception:
        logger.error(f"서버 오류 발생:\n{traceback.format_exc()}")

# ── 메인 실행 ────────────────────────────────────────────────────────────────

def main() -> None:
    logger.info("=== CBT Exam Session Server Started ===")
    os.chdir(BASE_DIR)

    port = DEFAULT_PORT or _find_free_port()
    server_thread = threading.Thread(target=_start_server, args=(port,), daemon=True)
    server_thread.start()

    if not _wait_for_server(port):
        logger.error("서버 시작 제한 시간을 초과했습니다. 이미 사용 중인 포트인지 확인해 보세요.")
        sys.exit(1)

    url = f"http://{DEFAULT_HOST}:{port}"
    logger.info(f"서버 준비 완료: {url}")
    if os.getenv("OPEN_BROWSER", "1") != "0":
        _open_browser(url)

    # 메인 스레드 유지
    try:
        while server_thread.is_alive():
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("사용자에 의해 종료되었습니다.")


if __name__ == "__main__":
    main()
