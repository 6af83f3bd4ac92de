import os
import json
import base64

import pytest
from PIL import Image
from PIL.PngImagePlugin import PngInfo

from wi_suite import config
from wi_suite.context import ctx
from wi_suite.event_bus import event_bus
from wi_suite.services.st_client import refresh_st_client
from wi_suite.utils.i18n import load_locale

ST_USER = "default-user"


def make_entry(uid, **fields):
    entry = {
        "uid": uid,
        "key": [f"key{uid}"],
        "keysecondary": [],
        "comment": f"Entry {uid}",
        "content": f"content {uid}",
        "constant": False,
        "vectorized": False,
        "selectiveLogic": 0,
        "order": 100,
        "position": 0,
        "disable": False,
        "depth": 4,
    }
    entry.update(fields)
    return entry


def write_book(st_root, name, entries):
    path = os.path.join(st_root, "data", ST_USER, "worlds", f"{name}.json")
    with open(path, 'w', encoding='utf-8') as f:
        json.dump({"entries": {str(e["uid"]): e for e in entries}}, f, ensure_ascii=False, indent=4)
    return path


def read_book(st_root, name):
    path = os.path.join(st_root, "data", ST_USER, "worlds", f"{name}.json")
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def write_card(st_root, avatar, card):
    """写一张带 chara 元数据的 PNG 角色卡"""
    meta = PngInfo()
    meta.add_text("chara", base64.b64encode(json.dumps(card).encode('utf-8')).decode('ascii'))
    path = os.path.join(st_root, "data", ST_USER, "characters", avatar)
    Image.new("RGB", (4, 4)).save(path, pnginfo=meta)
    return path


def write_chat(st_root, character, chat_file, header, messages):
    chat_dir = os.path.join(st_root, "data", ST_USER, "chats", character)
    os.makedirs(chat_dir, exist_ok=True)
    path = os.path.join(chat_dir, f"{chat_file}.jsonl")
    with open(path, 'w', encoding='utf-8') as f:
        for obj in [header] + messages:
            f.write(json.dumps(obj, ensure_ascii=False) + "\n")
    return path


def read_chat(st_root, character, chat_file):
    path = os.path.join(st_root, "data", ST_USER, "chats", character, f"{chat_file}.jsonl")
    with open(path, 'r', encoding='utf-8') as f:
        lines = [json.loads(line) for line in f if line.strip()]
    return lines[0], lines[1:]


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """每个测试使用独立的配置文件，并重置全局单例"""
    monkeypatch.setattr(config, 'CONFIG_FILE', str(tmp_path / "config.json"))
    event_bus.clear()
    ctx.reset()
    load_locale('en')
    yield
    # 关闭测试中没走完的会话，避免表单超时监视在之后的测试里触发
    for session in list(ctx.bulk_sessions.values()):
        session.cancel()
    event_bus.clear()
    ctx.reset()


@pytest.fixture
def write_config(tmp_path):
    def _write(**overrides):
        cfg = config.load_config()
        cfg.update(overrides)
        with open(config.CONFIG_FILE, 'w', encoding='utf-8') as f:
            json.dump(cfg, f)
        return cfg
    return _write


@pytest.fixture
def st_root(tmp_path):
    """
    一个最小的 SillyTavern 数据目录：
      worlds: Main Lore / Side Lore / Other Lore / Chat Lore
      characters: Alice.png (主世界书 Main Lore)
      settings.json: 全局 Global Lore，Alice 附加 Side Lore
      chats/Alice/chat1.jsonl: 绑定 Chat Lore，四条消息
    """
    root = tmp_path / "SillyTavern"
    user_dir = root / "data" / ST_USER
    for sub in ("worlds", "characters", "chats"):
        (user_dir / sub).mkdir(parents=True)
    root = str(root)

    write_book(root, "Main Lore", [make_entry(uid) for uid in range(4)])
    write_book(root, "Side Lore", [make_entry(0, comment="Side 0")])
    write_book(root, "Other Lore", [make_entry(0, comment="Other 0"), make_entry(1, comment="Other 1")])
    write_book(root, "Chat Lore", [])

    write_card(root, "Alice.png", {
        "spec": "chara_card_v2",
        "data": {"name": "Alice", "extensions": {"world": "Main Lore"}},
    })

    settings = {
        "world_info_settings": {
            "world_info": {
                "globalSelect": ["Global Lore"],
                "charLore": [{"name": "Alice", "extraBooks": ["Side Lore", "Missing Lore"]}],
            }
        }
    }
    with open(user_dir / "settings.json", 'w', encoding='utf-8') as f:
        json.dump(settings, f)

    write_chat(root, "Alice", "chat1", {"chat_metadata": {"world_info": "Chat Lore"}}, [
        {"name": "User", "is_user": True, "mes": "hi", "extra": {}},
        {"name": "Alice", "is_user": False, "mes": "hello", "extra": {}},
        {"name": "User", "is_user": True, "mes": "tell me more", "extra": {}},
        {"name": "Alice", "is_user": False, "mes": "sure", "extra": {}},
    ])
    return root


@pytest.fixture
def st_client(st_root, write_config):
    write_config(st_data_dir=st_root)
    return refresh_st_client()


@pytest.fixture
def app(st_client):
    from wi_suite.server import create_app
    return create_app({"TESTING": True})


@pytest.fixture
def test_client(app):
    return app.test_client()
