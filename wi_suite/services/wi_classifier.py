"""
WI Classifier - 将一次触发的世界书条目整理成按位置分组、排序好的展示结构

输入是宿主每轮发出的原始已触发条目列表 (ActivationRecord)，
输出是 DisplayGroup 列表，直接作为 worldInfoViewer 附件保存到聊天消息中，
所以输出的键名保持与前端模板一致 (camelCase)。

纯函数，不做任何 I/O。
"""

import logging
from typing import Optional, Dict, List, Any

from wi_suite.consts import (
    POSITION_INFO, POSITION_UNKNOWN_EMOJI, POSITION_AT_DEPTH,
    POSITION_SORT_ORDER, POSITION_SORT_UNKNOWN, SELECTIVE_LOGIC_INFO,
    ENTRY_SOURCE_ASSISTANT, ENTRY_SOURCE_USER, ENTRY_SOURCE_SYSTEM,
    STATUS_CONSTANT, STATUS_VECTORIZED, STATUS_KEYWORD, WORLD_ORDER_UNKNOWN,
)
from wi_suite.services.source_resolver import resolve_source, source_display_name
from wi_suite.utils.i18n import t

logger = logging.getLogger(__name__)


def _is_number(value) -> bool:
    # bool 是 int 的子类，但 True/False 不是合法的数值字段
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# ==================== 单条目解析 ====================

def get_role_string(role_value) -> str:
    """宿主的 role 既可能是 0/1/2，也可能是字符串"""
    if role_value == 0 and not isinstance(role_value, bool):
        return 'system'
    if role_value == 1 and not isinstance(role_value, bool):
        return 'user'
    if role_value == 2 and not isinstance(role_value, bool):
        return 'assistant'
    if isinstance(role_value, str):
        role = role_value.strip().lower()
        if role == 'ai':
            return 'assistant'
        return role
    return 'assistant'


def role_display_name(role: str) -> str:
    if role == 'user':
        return t('roleUser')
    if role == 'system':
        return t('roleSystem')
    return t('roleAssistant')


def get_entry_source_type(entry: Dict[str, Any]) -> int:
    role = get_role_string(entry.get('role'))
    if role == 'user':
        return ENTRY_SOURCE_USER
    if role == 'system':
        return ENTRY_SOURCE_SYSTEM
    return ENTRY_SOURCE_ASSISTANT


def get_entry_status(entry: Dict[str, Any]):
    """常驻 > 向量化 > 关键词，返回 (图标, 名称)"""
    if entry.get('constant') is True:
        emoji, key = STATUS_CONSTANT
    elif entry.get('vectorized') is True:
        emoji, key = STATUS_VECTORIZED
    else:
        emoji, key = STATUS_KEYWORD
    return emoji, t(key)


def format_role_depth_tag(entry: Dict[str, Any]) -> str:
    depth = entry.get('depth')
    if depth is None:
        return ''
    role = get_role_string(entry.get('role'))
    return f"{role_display_name(role)} {t('depthLabel')} {depth}"


def lookup_world_order(world_name: Optional[str], world_registry) -> int:
    """
    从宿主的世界书注册表里查找世界书顺序。
    兼容三种形态：
      - {name: order}
      - {name: {"order": order}}
      - [{"name" | "title": name, "order": order}, ...]
    找不到时返回 WORLD_ORDER_UNKNOWN (排在最后)。
    """
    if not world_name or not world_registry:
        return WORLD_ORDER_UNKNOWN

    if isinstance(world_registry, dict):
        found = world_registry.get(world_name)
        if _is_number(found):
            return found
        if isinstance(found, dict) and _is_number(found.get('order')):
            return found['order']
    elif isinstance(world_registry, (list, tuple)):
        for w in world_registry:
            if not isinstance(w, dict):
                continue
            if (w.get('name') or w.get('title')) == world_name:
                if _is_number(w.get('order')):
                    return w['order']
                break

    return WORLD_ORDER_UNKNOWN


def get_world_order(entry: Dict[str, Any], world_registry=None) -> int:
    """显式 worldOrder > 显式 order > 注册表查找 > 未知"""
    if _is_number(entry.get('worldOrder')):
        return entry['worldOrder']
    if _is_number(entry.get('order')):
        return entry['order']
    return lookup_world_order(entry.get('world'), world_registry)


def _join_keys(value) -> Optional[str]:
    if isinstance(value, (list, tuple)):
        return ', '.join(str(k) for k in value)
    if isinstance(value, str):
        return value
    return None


def _selective_logic_name(entry: Dict[str, Any]) -> Optional[str]:
    if not isinstance(entry.get('keysecondary'), (list, tuple)):
        return None
    logic = entry.get('selectiveLogic')
    key = SELECTIVE_LOGIC_INFO.get(logic) if not isinstance(logic, bool) else None
    if key:
        return t(key)
    return f"{t('selectiveLogicUnknown')} ({logic})"


def annotate_entry(entry: Dict[str, Any], position: int,
                   context: Optional[Dict[str, Any]] = None,
                   world_registry=None) -> Dict[str, Any]:
    """将原始条目转成展示用结构"""
    status_emoji, status_name = get_entry_status(entry)
    source_key = resolve_source(entry, context)
    depth = entry.get('depth')
    at_depth = position == POSITION_AT_DEPTH

    return {
        "uid": entry.get('uid'),
        "worldName": entry.get('world'),
        "entryName": entry.get('comment') or f"{t('entryLabel')} #{entry.get('uid')}",
        "sourceKey": source_key,
        "sourceName": source_display_name(source_key),
        "statusEmoji": status_emoji,
        "statusName": status_name,
        "content": entry.get('content'),
        "keys": _join_keys(entry.get('key')),
        "secondaryKeys": _join_keys(entry.get('keysecondary')) if isinstance(entry.get('keysecondary'), (list, tuple)) else None,
        "selectiveLogicName": _selective_logic_name(entry),
        "depth": depth,
        "displayDepth": depth if at_depth else None,
        "roleDepthTag": format_role_depth_tag(entry) if at_depth else None,
        "role": entry.get('role') or entry.get('messageRole') or 'assistant',
        "sourceType": get_entry_source_type(entry),
        "worldOrder": get_world_order(entry, world_registry),
    }


# ==================== 排序规则 ====================

def _order_of(item) -> int:
    order = item.get('worldOrder')
    return order if _is_number(order) else WORLD_ORDER_UNKNOWN


def depth_sort_key(item):
    """
    深度注入组：深度降序 (缺失排最后) -> 发言者优先级降序
    -> 世界书顺序升序 -> 名称升序
    """
    depth = item.get('depth')
    has_depth = _is_number(depth)
    source_type = item.get('sourceType')
    if not _is_number(source_type):
        source_type = ENTRY_SOURCE_ASSISTANT
    return (
        0 if has_depth else 1,
        -depth if has_depth else 0,
        -source_type,
        _order_of(item),
        str(item.get('entryName') or ''),
    )


def order_sort_key(item):
    """其他组：世界书顺序升序 -> 世界书名升序 -> 名称升序"""
    return (
        _order_of(item),
        str(item.get('worldName') or ''),
        str(item.get('entryName') or ''),
    )


def position_sort_index(position) -> int:
    return POSITION_SORT_ORDER.get(position, POSITION_SORT_UNKNOWN)


# ==================== 主流程 ====================

def group_and_sort(records, context: Optional[Dict[str, Any]] = None,
                   world_registry=None) -> List[Dict[str, Any]]:
    """
    分组并排序已触发条目。

    Args:
        records: 宿主发出的已触发条目列表
        context: 来源判定上下文 (见 source_resolver.build_source_context)
        world_registry: 世界书名 -> 顺序 的查找表

    Returns:
        DisplayGroup 列表，空组不输出
    """
    by_position = {}

    for raw in records or []:
        if not isinstance(raw, dict):
            logger.debug(f"跳过非法的触发条目: {raw!r}")
            continue

        position = raw.get('position')
        if not _is_number(position):
            position = 0
        elif isinstance(position, float) and position.is_integer():
            position = int(position)

        group = by_position.get(position)
        if group is None:
            info = POSITION_INFO.get(position)
            if info:
                name, emoji = t(info[0]), info[1]
            else:
                name, emoji = f"{t('positionUnknown')} ({position})", POSITION_UNKNOWN_EMOJI
            group = {
                "position": position,
                "positionName": name,
                "positionEmoji": emoji,
                "entries": [],
            }
            by_position[position] = group

        group['entries'].append(annotate_entry(raw, position, context, world_registry))

    for group in by_position.values():
        if group['position'] == POSITION_AT_DEPTH:
            group['entries'].sort(key=depth_sort_key)
        else:
            group['entries'].sort(key=order_sort_key)

    groups = [g for g in by_position.values() if g['entries']]
    groups.sort(key=lambda g: (position_sort_index(g['position']), g['position']))
    return groups
