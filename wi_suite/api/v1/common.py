import logging
from flask import jsonify

from wi_suite.bulk.engine import BulkEditError, InvalidTransitionError
from wi_suite.services.st_client import (
    STClientError, WorldNotFoundError, ChatNotFoundError, PersistenceError
)
from wi_suite.utils.i18n import t
from wi_suite.utils.notify import notify

logger = logging.getLogger(__name__)


def error_response(e, notice=None):
    """
    将服务层异常转换为统一的 JSON 错误响应：
    {"success": False, "error": 错误码, "msg": 本地化信息, "notice": 通知}

    已经发出过通知的情况 (例如批量编辑会话失败) 传入 notice，不再重复通知。
    """
    if isinstance(e, InvalidTransitionError):
        code, msg, status, level = e.code, e.localized(), 409, 'warning'
    elif isinstance(e, BulkEditError):
        code, msg, status, level = e.code, e.localized(), 400, 'warning'
    elif isinstance(e, WorldNotFoundError):
        code, msg, status, level = "world_not_found", t('worldNotFound', e), 404, 'error'
    elif isinstance(e, ChatNotFoundError):
        code, msg, status, level = "chat_not_found", t('chatNotFound'), 404, 'error'
    elif isinstance(e, PersistenceError):
        code, msg, status, level = "persistence_failed", t('persistenceFailed', e), 500, 'error'
    elif isinstance(e, STClientError):
        code, msg, status, level = "host_error", str(e), 500, 'error'
    else:
        logger.exception(f"Unexpected error: {e}")
        code, msg, status, level = "internal_error", str(e), 500, 'error'

    return jsonify({
        "success": False,
        "error": code,
        "msg": msg,
        "notice": notice if notice is not None else notify(msg, level),
    }), status


def chat_ref(data):
    """从请求中取出 (avatar, chat_file)"""
    data = data or {}
    return data.get('avatar'), data.get('chat_file')
