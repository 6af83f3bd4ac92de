"""
世界书条目级操作 (创建 / 删除 / 跨世界书移动)

对应 SillyTavern world-info.js 中的 createWorldInfoEntry、
deleteWorldInfoEntry、moveWorldInfoEntry。
book 均为 load_world_info 读出的字典，这里只修改内存对象，
是否落盘由调用方决定 (move 除外，它自己负责保存两本书)。
"""

import logging

from wi_suite.utils.data import deep_copy_json, find_entry, normalize_book
from wi_suite.services.st_client import STClientError

logger = logging.getLogger(__name__)

# 新条目的默认字段 (newWorldInfoEntryDefinition)
NEW_ENTRY_DEFINITION = {
    "key": [],
    "keysecondary": [],
    "comment": "",
    "content": "",
    "constant": False,
    "vectorized": False,
    "selective": True,
    "selectiveLogic": 0,
    "addMemo": False,
    "order": 100,
    "position": 0,
    "disable": False,
    "ignoreBudget": False,
    "excludeRecursion": False,
    "preventRecursion": False,
    "delayUntilRecursion": False,
    "probability": 100,
    "useProbability": True,
    "depth": 4,
    "group": "",
    "groupOverride": False,
    "groupWeight": 100,
    "scanDepth": None,
    "caseSensitive": None,
    "matchWholeWords": None,
    "useGroupScoring": None,
    "automationId": "",
    "role": None,
    "sticky": None,
    "cooldown": None,
    "delay": None,
}


def get_free_entry_uid(book):
    """返回当前世界书中未被占用的最小 uid"""
    used = set()
    for key, e in (book.get('entries') or {}).items():
        used.add(str(key))
        if isinstance(e, dict) and e.get('uid') is not None:
            used.add(str(e.get('uid')))
    uid = 0
    while str(uid) in used:
        uid += 1
    return uid


def create_world_info_entry(book, fields=None):
    """
    在 book 中创建一个新条目并返回它。

    Args:
        book: 世界书数据
        fields: 覆盖默认值的字段
    """
    normalize_book(book)
    uid = get_free_entry_uid(book)
    entry = deep_copy_json(NEW_ENTRY_DEFINITION)
    if fields:
        entry.update(deep_copy_json(fields))
    entry['uid'] = uid
    entry['displayIndex'] = len(book['entries'])
    book['entries'][str(uid)] = entry
    return entry


def delete_world_info_entry(book, uid):
    """从 book 中删除条目，条目不存在时返回 False"""
    entries = normalize_book(book)['entries']
    key = str(uid)
    if key in entries:
        del entries[key]
        return True
    for k, e in list(entries.items()):
        if isinstance(e, dict) and str(e.get('uid')) == key:
            del entries[k]
            return True
    return False


def move_world_info_entry(client, source_name, target_name, uid, delete_original=True):
    """
    将条目从一本世界书移动 (或复制) 到另一本。
    目标中的条目会分配新的 uid。

    先保存目标再删除源条目。移动时若源世界书保存失败，条目会同时存在于两本
    世界书中，仍按失败返回。

    Returns:
        bool: 是否成功。失败不会抛出异常，由调用方统计。
    """
    if not source_name or not target_name or source_name == target_name:
        logger.warning(f"无效的移动目标: {source_name} -> {target_name}")
        return False

    try:
        source = client.load_world_info(source_name)
        target = client.load_world_info(target_name)

        entry = find_entry(source, uid)
        if entry is None:
            logger.warning(f"条目 {uid} 不在世界书 {source_name} 中")
            return False

        copied = deep_copy_json(entry)
        normalize_book(target)
        new_uid = get_free_entry_uid(target)
        copied['uid'] = new_uid
        copied['displayIndex'] = len(target['entries'])
        target['entries'][str(new_uid)] = copied
        client.save_world_info(target_name, target)

        if delete_original:
            delete_world_info_entry(source, uid)
            try:
                client.save_world_info(source_name, source)
            except STClientError as e:
                logger.error(f"条目已复制到 {target_name}#{new_uid}，但未能从 {source_name} 删除原条目 #{uid}: {e}")
                return False

        logger.info(f"{'移动' if delete_original else '复制'}条目 {source_name}#{uid} -> {target_name}#{new_uid}")
        return True
    except STClientError as e:
        logger.error(f"移动条目 {source_name}#{uid} 失败: {e}")
        return False
