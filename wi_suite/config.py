import os
import json
import logging

logger = logging.getLogger(__name__)

# 项目根目录 (wi_suite 的上一级)
BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

# 数据目录，可通过环境变量覆盖 (测试 / 多实例部署)
DATA_DIR = os.environ.get('WI_SUITE_DATA_DIR') or os.path.join(BASE_DIR, 'data')

CONFIG_FILE = os.path.join(DATA_DIR, 'config.json')

DEFAULT_CONFIG = {
    # === SillyTavern 连接 ===
    "st_data_dir": "",
    "st_url": "http://127.0.0.1:8000",
    "st_username": "",
    "st_password": "",
    "st_user": "default-user",
    "use_api": False,

    # === 服务 ===
    "host": "127.0.0.1",
    "port": 5050,
    "locale": "en",

    # === 功能开关 ===
    "enable_triggered_viewer": True,
    "enable_char_lorebook": True,
    "enable_bulk_editor": True,

    # 每个聊天最多保留多少条消息的触发记录，<= 0 表示不限制
    "viewer_cache_limit": 10,

    # 等待模板条目表单渲染完成的超时 (秒)
    "form_ready_timeout": 10.0,
}


def load_config():
    """
    读取配置文件，并与默认配置合并。
    文件不存在或损坏时返回默认配置 (不会抛出异常)。
    """
    cfg = dict(DEFAULT_CONFIG)
    if os.path.exists(CONFIG_FILE):
        try:
            with open(CONFIG_FILE, 'r', encoding='utf-8') as f:
                data = json.load(f)
            if isinstance(data, dict):
                cfg.update(data)
        except Exception as e:
            logger.error(f"加载 config.json 失败: {e}")
    return cfg


def save_config(cfg):
    """写回配置文件 (未知键原样保留)。"""
    try:
        parent_dir = os.path.dirname(CONFIG_FILE)
        if parent_dir and not os.path.exists(parent_dir):
            os.makedirs(parent_dir)

        with open(CONFIG_FILE, 'w', encoding='utf-8') as f:
            json.dump(cfg, f, ensure_ascii=False, indent=2)
        return True
    except Exception as e:
        logger.error(f"保存 config.json 失败: {e}")
        return False
