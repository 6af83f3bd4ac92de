"""
ST Client - SillyTavern 宿主数据访问服务

世界书 (World Info) 的读取与保存、角色卡绑定信息、全局世界书设置、聊天记录。

支持两种模式：
1. 本地文件系统 - 直接读写 SillyTavern 的数据目录 (默认)
2. API 模式 - 通过 SillyTavern 的 HTTP 接口读写世界书 (需要 SillyTavern 运行)

@module st_client
@version 2.0.0
"""

import os
import json
import base64
import logging
import tempfile
import requests
from PIL import Image
from typing import Optional, Dict, List, Any, Tuple

from wi_suite.config import load_config
from wi_suite.consts import CHAT_WORLD_METADATA_KEY
from wi_suite.services.source_resolver import build_source_context
from wi_suite.utils.data import normalize_book, sanitize_for_utf8

logger = logging.getLogger(__name__)


class STClientError(Exception):
    """宿主数据访问失败"""
    pass


class WorldNotFoundError(STClientError):
    """世界书不存在"""
    pass


class ChatNotFoundError(STClientError):
    """聊天记录不存在"""
    pass


class PersistenceError(STClientError):
    """读写宿主数据失败 (文件损坏、磁盘错误、API 拒绝)"""
    pass


# SillyTavern 常见安装路径候选
ST_PATH_CANDIDATES = [
    # Windows 常见路径
    r"D:\SillyTavern",
    r"E:\SillyTavern",
    r"C:\SillyTavern",
    r"C:\Users\{user}\SillyTavern",
    # Linux/macOS 常见路径
    "/opt/SillyTavern",
    "~/SillyTavern",
    "/home/{user}/SillyTavern",
]

# SillyTavern 数据目录结构 ({st_user} 为用户目录，默认 default-user)
ST_DATA_STRUCTURE = {
    "characters": "data/{st_user}/characters",
    "worlds": "data/{st_user}/worlds",
    "chats": "data/{st_user}/chats",
    "settings": "data/{st_user}/settings.json",
}


def chara_filename(avatar: Optional[str]) -> str:
    """角色卡文件名去掉扩展名 (SillyTavern 的 getCharaFilename)"""
    if not avatar:
        return ''
    return os.path.splitext(os.path.basename(str(avatar)))[0]


class STClient:
    """SillyTavern 宿主客户端"""

    def __init__(self, st_data_dir: Optional[str] = None, st_url: Optional[str] = None,
                 use_api: Optional[bool] = None):
        """
        初始化 ST 客户端

        Args:
            st_data_dir: SillyTavern 安装目录路径（本地模式）
            st_url: SillyTavern API URL（API 模式）
            use_api: 是否通过 API 读写世界书，None 时取配置
        """
        config = load_config()
        self.st_data_dir = st_data_dir or config.get('st_data_dir', '')
        self.st_url = (st_url or config.get('st_url', 'http://127.0.0.1:8000')).rstrip('/')
        self.st_username = config.get('st_username', '')
        self.st_password = config.get('st_password', '')
        self.st_user = config.get('st_user') or 'default-user'
        self.use_api = bool(config.get('use_api', False)) if use_api is None else use_api
        self.timeout = 30
        self._session = None
        self._csrf_token = None

    # ==================== 路径探测 ====================

    def detect_st_path(self) -> Optional[str]:
        """
        自动探测 SillyTavern 安装路径

        Returns:
            探测到的路径，未找到返回 None
        """
        if self.st_data_dir and os.path.exists(self.st_data_dir):
            if self._validate_st_path(self.st_data_dir):
                return self.st_data_dir

        username = os.environ.get('USERNAME', os.environ.get('USER', ''))

        for candidate in ST_PATH_CANDIDATES:
            path = candidate.replace('{user}', username)
            path = os.path.expanduser(path)

            if os.path.exists(path) and self._validate_st_path(path):
                logger.info(f"探测到 SillyTavern 路径: {path}")
                return path

        logger.warning("未能自动探测到 SillyTavern 安装路径")
        return None

    def _validate_st_path(self, path: str) -> bool:
        """验证路径是否为有效的 SillyTavern 安装目录"""
        indicators = [
            os.path.join(path, "data", self.st_user),
            os.path.join(path, "public"),
            os.path.join(path, "server.js"),
        ]
        return any(os.path.exists(p) for p in indicators)

    def get_st_path(self, resource_type: str) -> Optional[str]:
        """
        获取 SillyTavern 资源路径 (目录或 settings.json)

        Args:
            resource_type: characters/worlds/chats/settings

        Returns:
            完整路径，未找到安装目录返回 None (路径本身不一定存在)
        """
        st_path = self.st_data_dir or self.detect_st_path()
        if not st_path:
            return None

        sub = ST_DATA_STRUCTURE.get(resource_type)
        if not sub:
            return None
        return os.path.join(st_path, *sub.format(st_user=self.st_user).split('/'))

    def get_st_subdir(self, resource_type: str) -> Optional[str]:
        """同 get_st_path，但只返回已存在的路径"""
        path = self.get_st_path(resource_type)
        if path and os.path.exists(path):
            return path
        return None

    # ==================== HTTP ====================

    def _auth(self):
        return (self.st_username, self.st_password) if self.st_username else None

    def _get_session(self) -> requests.Session:
        """懒加载 requests 会话，并获取 SillyTavern 的 CSRF token"""
        if self._session is None:
            self._session = requests.Session()
            self._session.auth = self._auth()
        if self._csrf_token is None:
            try:
                resp = self._session.get(f"{self.st_url}/csrf-token", timeout=self.timeout)
                if resp.ok:
                    self._csrf_token = resp.json().get('token') or ''
                    if self._csrf_token:
                        self._session.headers['X-CSRF-Token'] = self._csrf_token
            except Exception as e:
                logger.debug(f"获取 CSRF token 失败: {e}")
        return self._session

    def _api_post(self, path: str, payload: Dict[str, Any]) -> requests.Response:
        try:
            resp = self._get_session().post(f"{self.st_url}{path}", json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise PersistenceError(f"请求 {path} 失败: {e}") from e
        return resp

    # ==================== 连接测试 ====================

    def test_connection(self) -> Dict[str, Any]:
        """
        测试与 SillyTavern 的连接

        Returns:
            连接状态信息
        """
        result = {
            "local": {"available": False, "path": None, "worlds": 0},
            "api": {"available": False, "url": self.st_url, "version": None}
        }

        st_path = self.st_data_dir or self.detect_st_path()
        if st_path and self._validate_st_path(st_path):
            result["local"]["available"] = True
            result["local"]["path"] = st_path
            worlds_dir = self.get_st_subdir("worlds")
            if worlds_dir:
                result["local"]["worlds"] = len([f for f in os.listdir(worlds_dir) if f.endswith('.json')])

        try:
            resp = requests.get(f"{self.st_url}/api/ping", timeout=5, auth=self._auth())
            if resp.ok:
                result["api"]["available"] = True
                result["api"]["version"] = "native"
        except Exception as e:
            logger.debug(f"API 连接测试失败: {e}")

        return result

    # ==================== 世界书 ====================

    def list_world_names(self) -> List[str]:
        """列出所有世界书名称 (排序后)"""
        if self.use_api:
            return self._list_world_names_api()

        worlds_dir = self.get_st_subdir("worlds")
        if not worlds_dir:
            logger.warning("未找到世界书目录")
            return []

        names = []
        for filename in os.listdir(worlds_dir):
            if filename.startswith('.') or not filename.endswith('.json'):
                continue
            names.append(filename[:-len('.json')])
        return sorted(names)

    def _list_world_names_api(self) -> List[str]:
        resp = self._api_post("/api/settings/get", {})
        if not resp.ok:
            logger.debug(f"获取世界书列表失败: HTTP {resp.status_code}")
            return []
        data = resp.json()
        return sorted(data.get("world_names", []) or [])

    def _world_file(self, name: str) -> Optional[str]:
        worlds_dir = self.get_st_path("worlds")
        if not worlds_dir:
            return None
        # 防止路径遍历
        safe_name = os.path.basename(str(name))
        return os.path.join(worlds_dir, f"{safe_name}.json")

    def load_world_info(self, name: str) -> Dict[str, Any]:
        """
        读取世界书。每次都重新读取，不做缓存。

        Raises:
            WorldNotFoundError: 世界书不存在
            PersistenceError: 读取或解析失败
        """
        if not name:
            raise WorldNotFoundError("未指定世界书")

        if self.use_api:
            resp = self._api_post("/api/worldinfo/get", {"name": name})
            if resp.status_code == 404:
                raise WorldNotFoundError(name)
            if not resp.ok:
                raise PersistenceError(f"读取世界书 {name} 失败: HTTP {resp.status_code}")
            return normalize_book(resp.json())

        path = self._world_file(name)
        if not path or not os.path.exists(path):
            raise WorldNotFoundError(name)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except Exception as e:
            logger.error(f"解析世界书失败 {path}: {e}")
            raise PersistenceError(f"解析世界书 {name} 失败: {e}") from e
        return normalize_book(data)

    def save_world_info(self, name: str, data: Dict[str, Any]) -> None:
        """
        保存世界书 (本地模式为原子写入)。

        Raises:
            PersistenceError: 保存失败
        """
        data = sanitize_for_utf8(data)

        if self.use_api:
            resp = self._api_post("/api/worldinfo/edit", {"name": name, "data": data})
            if not resp.ok:
                raise PersistenceError(f"保存世界书 {name} 失败: HTTP {resp.status_code}")
            return

        path = self._world_file(name)
        if not path:
            raise PersistenceError("未找到世界书目录")
        _atomic_write_json(path, data, indent=4)
        logger.debug(f"已保存世界书: {name}")

    # ==================== 角色卡 ====================

    def get_character(self, avatar: str) -> Optional[Dict[str, Any]]:
        """
        读取角色卡数据 (PNG tEXt 中的 ccv3 / chara)。

        Returns:
            角色卡 data 节点 (附带 avatar 字段)，读取失败返回 None
        """
        chars_dir = self.get_st_subdir("characters")
        if not chars_dir or not avatar:
            return None

        filename = os.path.basename(avatar)
        if not filename.lower().endswith('.png'):
            filename = f"{filename}.png"
        filepath = os.path.join(chars_dir, filename)
        if not os.path.exists(filepath):
            return None

        try:
            with Image.open(filepath) as img:
                text_chunks = getattr(img, 'text', {}) or {}
                raw = text_chunks.get('ccv3') or text_chunks.get('chara')
            if not raw:
                return None
            card = json.loads(base64.b64decode(raw).decode('utf-8'))
        except Exception as e:
            logger.error(f"解析角色卡失败 {filepath}: {e}")
            return None

        data = card.get('data') if isinstance(card.get('data'), dict) else card
        data = dict(data)
        data['avatar'] = filename
        return data

    # ==================== 全局设置 ====================

    def _read_settings(self) -> Dict[str, Any]:
        path = self.get_st_subdir("settings")
        if not path:
            return {}
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            return data if isinstance(data, dict) else {}
        except Exception as e:
            logger.error(f"读取 settings.json 失败: {e}")
            return {}

    def get_world_info_settings(self) -> Dict[str, Any]:
        """
        SillyTavern 的世界书设置：
        settings.json -> world_info_settings -> world_info -> {globalSelect, charLore}
        """
        wi_settings = self._read_settings().get('world_info_settings') or {}
        world_info = wi_settings.get('world_info') or {}
        return world_info if isinstance(world_info, dict) else {}

    def get_world_registry(self):
        """世界书 名称 -> 顺序 查找表 (取 world_info 中第一个存在的候选)"""
        world_info = self.get_world_info_settings()
        for key in ('worlds', 'allWorlds', 'files', 'data', 'all_worlds'):
            candidate = world_info.get(key)
            if candidate:
                return candidate
        return {}

    def get_char_lore(self) -> List[Dict[str, Any]]:
        char_lore = self.get_world_info_settings().get('charLore') or []
        return [c for c in char_lore if isinstance(c, dict)]

    def get_source_context(self, avatar: Optional[str] = None,
                           chat_world: Optional[str] = None) -> Dict[str, Any]:
        """
        根据宿主当前状态构造来源判定上下文。

        Args:
            avatar: 当前角色卡文件名，None 表示没有当前角色
            chat_world: 聊天绑定的世界书名
        """
        world_info = self.get_world_info_settings()
        primary_world = None
        additional = []

        if avatar:
            character = self.get_character(avatar)
            if character:
                primary_world = (character.get('extensions') or {}).get('world')
                file_name = chara_filename(avatar)
                for lore in self.get_char_lore():
                    if lore.get('name') == file_name and isinstance(lore.get('extraBooks'), list):
                        additional = lore['extraBooks']
                        break

        return build_source_context(
            chat_world=chat_world,
            primary_world=primary_world,
            additional_worlds=additional,
            global_worlds=world_info.get('globalSelect') or [],
        )

    # ==================== 聊天记录 ====================

    def get_chat_path(self, avatar: str, chat_file: str) -> Optional[str]:
        chats_dir = self.get_st_path("chats")
        if not chats_dir or not avatar or not chat_file:
            return None
        filename = os.path.basename(chat_file)
        if not filename.endswith('.jsonl'):
            filename = f"{filename}.jsonl"
        return os.path.join(chats_dir, chara_filename(avatar), filename)

    def load_chat(self, avatar: str, chat_file: str) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
        """
        读取聊天记录 (JSONL，第一行为聊天头，包含 chat_metadata)。

        Returns:
            (聊天头, 消息列表)
        """
        path = self.get_chat_path(avatar, chat_file)
        if not path or not os.path.exists(path):
            raise ChatNotFoundError(f"聊天记录不存在: {avatar}/{chat_file}")

        header = {}
        messages = []
        try:
            with open(path, 'r', encoding='utf-8') as f:
                for index, line in enumerate(f):
                    line = line.strip()
                    if not line:
                        continue
                    obj = json.loads(line)
                    if index == 0 and 'chat_metadata' in obj:
                        header = obj
                    else:
                        messages.append(obj)
        except Exception as e:
            logger.error(f"解析聊天记录失败 {path}: {e}")
            raise PersistenceError(f"解析聊天记录失败: {e}") from e
        return header, messages

    def save_chat(self, avatar: str, chat_file: str, header: Dict[str, Any],
                  messages: List[Dict[str, Any]]) -> None:
        path = self.get_chat_path(avatar, chat_file)
        if not path:
            raise PersistenceError("未找到聊天目录")

        lines = []
        if header:
            lines.append(json.dumps(header, ensure_ascii=False))
        lines.extend(json.dumps(m, ensure_ascii=False) for m in messages)
        _atomic_write_text(path, '\n'.join(lines) + '\n')

    @staticmethod
    def get_chat_world(header: Dict[str, Any]) -> Optional[str]:
        """聊天头中绑定的世界书名"""
        metadata = (header or {}).get('chat_metadata') or {}
        return metadata.get(CHAT_WORLD_METADATA_KEY) or None


def _atomic_write_text(path: str, text: str) -> None:
    """写临时文件后替换，避免写到一半的文件被 SillyTavern 读到"""
    directory = os.path.dirname(path)
    try:
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(text)
            os.replace(tmp_path, path)
        except Exception:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
    except OSError as e:
        logger.error(f"写入文件失败 {path}: {e}")
        raise PersistenceError(f"写入 {os.path.basename(path)} 失败: {e}") from e


def _atomic_write_json(path: str, data: Any, indent: int = 2) -> None:
    _atomic_write_text(path, json.dumps(data, ensure_ascii=False, indent=indent))


# 全局客户端实例
_client: Optional[STClient] = None

def get_st_client() -> STClient:
    """获取全局 ST 客户端实例"""
    global _client
    if _client is None:
        _client = STClient()
    return _client

def refresh_st_client():
    """刷新 ST 客户端配置"""
    global _client
    _client = STClient()
    return _client
