import socket
import logging

logger = logging.getLogger(__name__)


def is_port_available(port, host='127.0.0.1'):
    """绑定一次后立即释放，成功说明端口空闲。"""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.bind((host, port))
            return True
        except OSError:
            return False


def find_available_port(port, host='127.0.0.1', attempts=20):
    """
    从 port 开始向后查找可用端口。

    Returns:
        可用端口，全部被占用时返回 None
    """
    for candidate in range(port, port + attempts):
        if is_port_available(candidate, host):
            if candidate != port:
                logger.warning(f"端口 {port} 已被占用，改用 {candidate}")
            return candidate
    return None
