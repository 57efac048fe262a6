"""
services/integrity/connectivity.py

네트워크 점검. 시험 백엔드에 TCP 연결을 시도하고, 실패하면 공용 DNS 로 폴백한다.
"""

import socket
from typing import List, Tuple
from urllib.parse import urlsplit


def _endpoints(base_url: str) -> List[Tuple[str, int]]:
    parts = urlsplit(base_url)
    endpoints = []
    if parts.hostname:
        default_port = 443 if parts.scheme == "https" else 80
        endpoints.append((parts.hostname, parts.port or default_port))
    # 폴백: Cloudflare / Google DNS
    endpoints.extend([("1.1.1.1", 53), ("8.8.8.8", 53)])
    return endpoints


def check_network_connectivity(base_url: str, timeout: float = 2.0) -> bool:
    """
    시험 백엔드(실패 시 인터넷) 연결 여부.

    Args:
        base_url: 시험 백엔드 base URL
        timeout:  엔드포인트별 연결 타임아웃 (초)

    Returns:
        하나라도 TCP 연결에 성공하면 True
    """
    for host, port in _endpoints(base_url):
        try:
            with socket.create_connection((host, port), timeout=timeout):
                return True
        except OSError:
            continue
    return False
