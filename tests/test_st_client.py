import os
import json

import pytest

from conftest import read_chat, ST_USER
from wi_suite.services.st_client import (
    STClient, WorldNotFoundError, ChatNotFoundError, PersistenceError, chara_filename
)
from wi_suite.services.world_info import (
    create_world_info_entry, delete_world_info_entry, get_free_entry_uid, NEW_ENTRY_DEFINITION
)
from wi_suite.utils.data import normalize_book, find_entry


class TestPaths:
    """Tests for SillyTavern path handling."""

    def test_validate_path(self, st_root, st_client):
        assert st_client._validate_st_path(st_root) is True
        assert st_client._validate_st_path(os.path.join(st_root, "nope")) is False

    def test_subdirs(self, st_root, st_client):
        assert st_client.get_st_subdir("worlds") == os.path.join(st_root, "data", ST_USER, "worlds")
        assert st_client.get_st_subdir("bogus") is None

    def test_chara_filename(self):
        assert chara_filename("Alice.png") == "Alice"
        assert chara_filename("dir/Bob.v2.png") == "Bob.v2"
        assert chara_filename(None) == ""


class TestWorldBooks:
    """Tests for world book load / save."""

    def test_list_world_names(self, st_client):
        assert st_client.list_world_names() == ["Chat Lore", "Main Lore", "Other Lore", "Side Lore"]

    def test_load_missing(self, st_client):
        with pytest.raises(WorldNotFoundError):
            st_client.load_world_info("Nowhere")
        with pytest.raises(WorldNotFoundError):
            st_client.load_world_info("")

    def test_load_corrupt(self, st_root, st_client):
        path = os.path.join(st_root, "data", ST_USER, "worlds", "Broken.json")
        with open(path, 'w', encoding='utf-8') as f:
            f.write("{not json")
        with pytest.raises(PersistenceError):
            st_client.load_world_info("Broken")

    def test_path_traversal_is_contained(self, st_client):
        with pytest.raises(WorldNotFoundError):
            st_client.load_world_info("../../settings")

    def test_save_round_trip(self, st_client):
        book = st_client.load_world_info("Main Lore")
        book['entries']["0"]['content'] = "changed ✓"
        st_client.save_world_info("Main Lore", book)
        assert st_client.load_world_info("Main Lore")['entries']["0"]['content'] == "changed ✓"

    def test_legacy_list_entries(self, st_root, st_client):
        path = os.path.join(st_root, "data", ST_USER, "worlds", "Legacy.json")
        with open(path, 'w', encoding='utf-8') as f:
            json.dump({"entries": [{"uid": 5, "content": "a"}, {"content": "b"}]}, f)
        book = st_client.load_world_info("Legacy")
        assert sorted(book['entries']) == ["1", "5"]
        assert find_entry(book, "5")['content'] == "a"


class TestEntryOperations:
    """Tests for create / delete entry helpers."""

    def test_create_uses_smallest_free_uid(self):
        book = {"entries": {"0": {"uid": 0}, "2": {"uid": 2}}}
        entry = create_world_info_entry(book, {"comment": "new"})
        assert entry['uid'] == 1
        assert entry['comment'] == "new"
        assert entry['order'] == NEW_ENTRY_DEFINITION['order']
        assert book['entries']["1"] is entry
        assert get_free_entry_uid(book) == 3

    def test_defaults_are_not_shared(self):
        book = {"entries": {}}
        first = create_world_info_entry(book)
        first['key'].append("x")
        second = create_world_info_entry(book)
        assert second['key'] == []

    def test_delete(self):
        book = normalize_book({"entries": [{"uid": 3}, {"uid": 4}]})
        assert delete_world_info_entry(book, "3") is True
        assert delete_world_info_entry(book, 3) is False
        assert list(book['entries']) == ["4"]


class TestCharactersAndSettings:
    """Tests for character cards and settings.json."""

    def test_get_character(self, st_client):
        character = st_client.get_character("Alice.png")
        assert character['name'] == "Alice"
        assert character['extensions']['world'] == "Main Lore"
        assert character['avatar'] == "Alice.png"

    def test_get_character_without_extension(self, st_client):
        assert st_client.get_character("Alice")['name'] == "Alice"

    def test_missing_character(self, st_client):
        assert st_client.get_character("Nobody.png") is None
        assert st_client.get_character("") is None

    def test_world_info_settings(self, st_client):
        settings = st_client.get_world_info_settings()
        assert settings['globalSelect'] == ["Global Lore"]
        assert st_client.get_char_lore()[0]['name'] == "Alice"

    def test_missing_settings(self, tmp_path):
        root = tmp_path / "empty"
        (root / "data" / ST_USER).mkdir(parents=True)
        client = STClient(st_data_dir=str(root))
        assert client.get_world_info_settings() == {}
        assert client.get_world_registry() == {}


class TestChats:
    """Tests for chat JSONL files."""

    def test_load_chat(self, st_client):
        header, messages = st_client.load_chat("Alice.png", "chat1")
        assert st_client.get_chat_world(header) == "Chat Lore"
        assert len(messages) == 4
        assert messages[1]['mes'] == "hello"

    def test_load_chat_with_extension(self, st_client):
        _, messages = st_client.load_chat("Alice.png", "chat1.jsonl")
        assert len(messages) == 4

    def test_missing_chat(self, st_client):
        with pytest.raises(ChatNotFoundError):
            st_client.load_chat("Alice.png", "nope")
        with pytest.raises(ChatNotFoundError):
            st_client.load_chat(None, "chat1")

    def test_save_chat(self, st_root, st_client):
        header, messages = st_client.load_chat("Alice.png", "chat1")
        messages[1]['extra']['note'] = "kept"
        st_client.save_chat("Alice.png", "chat1", header, messages)

        saved_header, saved = read_chat(st_root, "Alice", "chat1")
        assert saved_header == header
        assert saved[1]['extra']['note'] == "kept"

    def test_chat_world_absent(self):
        assert STClient.get_chat_world({}) is None
        assert STClient.get_chat_world({"chat_metadata": {"world_info": ""}}) is None
