import threading

from wi_suite.services.viewer_service import TriggeredViewer


class AppContext:
    """
    应用程序全局上下文 (Singleton)。
    管理世界书写锁、批量编辑会话以及触发记录查看器。
    """
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(AppContext, cls).__new__(cls)
            cls._instance._init_state()
            cls._instance._init_components()
        return cls._instance

    def _init_state(self):
        """初始化锁和会话表"""

        # === 世界书写锁 ===
        # 同一本世界书的 读取-修改-保存 必须串行，避免互相覆盖
        self._book_locks = {}
        self._book_locks_guard = threading.Lock()

        # === 批量编辑会话 ===
        # session_id -> BulkEditSession
        self.bulk_sessions = {}
        self.bulk_sessions_lock = threading.Lock()

        self.viewer = None

    def _init_components(self):
        self.viewer = TriggeredViewer()

    def book_lock(self, world_name: str) -> threading.RLock:
        """获取某本世界书的锁 (可重入：会话内部的清理可能嵌套在保存流程里)"""
        with self._book_locks_guard:
            lock = self._book_locks.get(world_name)
            if lock is None:
                lock = threading.RLock()
                self._book_locks[world_name] = lock
            return lock

    def register_session(self, session):
        with self.bulk_sessions_lock:
            self.bulk_sessions[session.session_id] = session

    def get_session(self, session_id):
        with self.bulk_sessions_lock:
            return self.bulk_sessions.get(session_id)

    def drop_session(self, session_id):
        with self.bulk_sessions_lock:
            return self.bulk_sessions.pop(session_id, None)

    def reset(self):
        """测试辅助：清空会话并重建查看器"""
        with self.bulk_sessions_lock:
            self.bulk_sessions.clear()
        self._init_components()

# 全局单例实例
ctx = AppContext()
