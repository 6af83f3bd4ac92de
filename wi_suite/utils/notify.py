import logging
from typing import Optional

from wi_suite.event_bus import event_bus, SHOW_TOASTR

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    'info': logging.INFO,
    'success': logging.INFO,
    'warning': logging.WARNING,
    'error': logging.ERROR,
}


def notify(message: str, level: str = 'info', title: Optional[str] = None,
           options: Optional[dict] = None) -> dict:
    """
    生成一条前端 toastr 通知，并通过事件总线广播。

    Args:
        message (str): 通知内容
        level (str): info / success / warning / error
        title (Optional[str]): 标题
        options (Optional[dict]): toastr.js 的额外选项

    Returns:
        dict: 通知数据，API 响应中以 notice 字段返回给前端
    """
    toastr_data = {
        'message': message,
        'title': title,
        'level': level,
        'options': options or {}
    }
    logger.log(_LOG_LEVELS.get(level, logging.INFO), f"[notice:{level}] {message}")
    event_bus.emit(SHOW_TOASTR, toastr_data)
    return toastr_data
