"""
Source Resolver - 判断一个已触发条目来自哪一类世界书

优先级：聊天绑定 > 角色主世界书 > 角色附加世界书 > 全局启用 > 未知 (None)

上下文里任何一项缺失 (没有当前角色、没有聊天绑定世界书) 都不是错误，
只是跳过对应的优先级。
"""

from typing import Optional, Dict, Any, Iterable

from wi_suite.consts import (
    WI_SOURCE_CHAT, WI_SOURCE_CHARACTER_PRIMARY,
    WI_SOURCE_CHARACTER_ADDITIONAL, WI_SOURCE_GLOBAL, WI_SOURCE_DISPLAY,
)
from wi_suite.utils.i18n import t


def build_source_context(chat_world: Optional[str] = None,
                         primary_world: Optional[str] = None,
                         additional_worlds: Optional[Iterable[str]] = None,
                         global_worlds: Optional[Iterable[str]] = None) -> Dict[str, Any]:
    """
    构造来源判定上下文。

    Args:
        chat_world: 当前聊天绑定的世界书名
        primary_world: 当前角色的主世界书名
        additional_worlds: 当前角色的附加世界书列表
        global_worlds: 全局启用的世界书集合
    """
    return {
        "chat_world": chat_world or None,
        "primary_world": primary_world or None,
        "additional_worlds": [w for w in (additional_worlds or []) if w],
        "global_worlds": [w for w in (global_worlds or []) if w],
    }


def resolve_source(entry: Dict[str, Any], context: Optional[Dict[str, Any]]) -> Optional[str]:
    """
    判定条目来源。

    Args:
        entry: 已触发条目 (需要 world 字段)
        context: build_source_context 生成的上下文，可以为 None

    Returns:
        来源键，无法归类时返回 None
    """
    if not isinstance(entry, dict):
        return None
    context = context or {}
    world_name = entry.get('world')

    chat_world = context.get('chat_world')
    if chat_world and world_name == chat_world:
        return WI_SOURCE_CHAT

    primary_world = context.get('primary_world')
    if primary_world and world_name == primary_world:
        return WI_SOURCE_CHARACTER_PRIMARY

    additional = context.get('additional_worlds') or []
    if world_name in additional:
        return WI_SOURCE_CHARACTER_ADDITIONAL

    global_worlds = context.get('global_worlds') or []
    if world_name in global_worlds:
        return WI_SOURCE_GLOBAL

    return None


def source_display_name(source_key: Optional[str]) -> str:
    if not source_key:
        return ''
    key = WI_SOURCE_DISPLAY.get(source_key)
    return t(key) if key else ''
