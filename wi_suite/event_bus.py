import logging
import threading

logger = logging.getLogger(__name__)

# 宿主事件
WORLD_INFO_ACTIVATED = "world_info_activated"
MESSAGE_RECEIVED = "message_received"
# 本服务发出的事件
SHOW_TOASTR = "show_toastr"


# 简单的发布/订阅系统，连接宿主事件与各功能模块
class EventBus:
    def __init__(self):
        self._subscribers = {}
        self._lock = threading.Lock()

    def subscribe(self, event_name, callback):
        with self._lock:
            callbacks = self._subscribers.setdefault(event_name, [])
            if callback not in callbacks:
                callbacks.append(callback)

    def unsubscribe(self, event_name, callback):
        with self._lock:
            callbacks = self._subscribers.get(event_name, [])
            if callback in callbacks:
                callbacks.remove(callback)

    def emit(self, event_name, data=None):
        """
        依次调用订阅者，返回各自的返回值。
        单个订阅者出错只记录日志，不影响其他订阅者。
        """
        with self._lock:
            callbacks = list(self._subscribers.get(event_name, []))

        results = []
        for callback in callbacks:
            try:
                results.append(callback(data))
            except Exception as e:
                logger.error(f"事件 {event_name} 的订阅者执行失败: {e}")
                results.append(None)
        return results

    def clear(self):
        with self._lock:
            self._subscribers.clear()

# 全局单例
event_bus = EventBus()
