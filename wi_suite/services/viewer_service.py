"""
Triggered Entry Viewer - 记录每条 AI 消息触发了哪些世界书条目

流程：
  WORLD_INFO_ACTIVATED -> 分组排序后暂存到单槽信箱 (pending)
  MESSAGE_RECEIVED     -> 取出暂存结果，挂到该消息的 extra.worldInfoViewer 上，
                          清空信箱，并按缓存上限清理旧消息的记录

信箱只有一个槽位：第二次触发会覆盖还没被消费的第一次结果。
"""

import logging
import threading
from typing import Optional, Dict, List, Any, Callable

from wi_suite.config import load_config
from wi_suite.consts import VIEWER_ATTACHMENT_KEY
from wi_suite.event_bus import WORLD_INFO_ACTIVATED, MESSAGE_RECEIVED
from wi_suite.services.wi_classifier import group_and_sort

logger = logging.getLogger(__name__)


def _message_at(chat, message_id) -> Optional[Dict[str, Any]]:
    try:
        index = int(message_id)
    except (TypeError, ValueError):
        return None
    if not isinstance(chat, list) or index < 0 or index >= len(chat):
        return None
    message = chat[index]
    return message if isinstance(message, dict) else None


def get_viewer_data(chat, message_id):
    """读取某条消息上的触发记录，没有则返回 None"""
    message = _message_at(chat, message_id)
    if not message:
        return None
    return (message.get('extra') or {}).get(VIEWER_ATTACHMENT_KEY)


def cleanup_viewer_cache(chat, limit) -> int:
    """
    只保留最新的 limit 条消息的触发记录 (从最旧的开始清理)。

    Args:
        chat: 消息列表
        limit: 保留数量，<= 0 表示不限制

    Returns:
        int: 被清理的消息数量
    """
    if not isinstance(chat, list):
        return 0
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        limit = 0
    if limit <= 0:
        return 0

    with_data = [i for i, m in enumerate(chat)
                 if isinstance(m, dict) and (m.get('extra') or {}).get(VIEWER_ATTACHMENT_KEY)]
    if len(with_data) <= limit:
        return 0

    to_remove = with_data[:len(with_data) - limit]
    for index in to_remove:
        chat[index]['extra'].pop(VIEWER_ATTACHMENT_KEY, None)
    logger.debug(f"清理了 {len(to_remove)} 条旧的触发记录")
    return len(to_remove)


def clear_all_viewer_cache(chat) -> int:
    """清除聊天中所有触发记录，返回清除数量"""
    if not isinstance(chat, list):
        return 0
    count = 0
    for message in chat:
        if not isinstance(message, dict):
            continue
        extra = message.get('extra')
        if isinstance(extra, dict) and extra.get(VIEWER_ATTACHMENT_KEY):
            del extra[VIEWER_ATTACHMENT_KEY]
            count += 1
    return count


class TriggeredViewer:
    """触发记录的单槽信箱，以及挂载 / 清理逻辑"""

    def __init__(self, settings_provider: Callable[[], Dict[str, Any]] = load_config):
        self._settings_provider = settings_provider
        self._pending = None
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return bool(self._settings_provider().get('enable_triggered_viewer', True))

    @property
    def cache_limit(self) -> int:
        return self._settings_provider().get('viewer_cache_limit', 10)

    @property
    def pending(self):
        with self._lock:
            return self._pending

    def on_world_info_activated(self, records, context=None, world_registry=None):
        """
        处理一次世界书激活。
        空列表会清空信箱；非空列表的结果覆盖信箱中未消费的旧结果。
        """
        if not self.enabled:
            return None

        if isinstance(records, list) and records:
            groups = group_and_sort(records, context, world_registry)
        else:
            groups = None

        with self._lock:
            if self._pending is not None and groups is not None:
                logger.debug("上一次触发结果尚未被消费，已覆盖")
            self._pending = groups
        return groups

    def on_message_received(self, chat, message_id) -> bool:
        """
        将暂存结果挂到消息上。
        只挂到存在的、非用户发送的消息；否则信箱保持不变。

        Returns:
            bool: 是否挂载成功
        """
        if not self.enabled:
            return False

        message = _message_at(chat, message_id)
        with self._lock:
            if not self._pending or not message or message.get('is_user'):
                return False
            extra = message.get('extra')
            if not isinstance(extra, dict):
                extra = {}
                message['extra'] = extra
            extra[VIEWER_ATTACHMENT_KEY] = self._pending
            self._pending = None

        cleanup_viewer_cache(chat, self.cache_limit)
        return True

    def discard_pending(self):
        with self._lock:
            self._pending = None

    def bind(self, bus):
        """
        订阅宿主事件。
        WORLD_INFO_ACTIVATED 的数据: {"entries": [...], "context": {...}, "world_registry": ...}
        MESSAGE_RECEIVED 的数据: {"chat": [...], "message_id": n}
        """
        bus.subscribe(WORLD_INFO_ACTIVATED, self._handle_activated)
        bus.subscribe(MESSAGE_RECEIVED, self._handle_message)

    def _handle_activated(self, data):
        data = data or {}
        return self.on_world_info_activated(data.get('entries'), data.get('context'),
                                            data.get('world_registry'))

    def _handle_message(self, data):
        data = data or {}
        return self.on_message_received(data.get('chat'), data.get('message_id'))
