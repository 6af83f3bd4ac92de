import json

# ================= 世界书数据工具 =================

def deep_copy_json(obj):
    """
    以 JSON 往返的方式深拷贝。
    世界书数据本身就是 JSON，这样可以保证拷贝结果与落盘结果一致。
    """
    if obj is None:
        return None
    return json.loads(json.dumps(obj, ensure_ascii=False))


def normalize_book(book):
    """
    保证 book['entries'] 为 {str(uid): entry} 字典。
    兼容旧格式：entries 为数组时按 uid 重新建立索引。
    """
    if not isinstance(book, dict):
        return {"entries": {}}

    entries = book.get('entries')
    if isinstance(entries, dict):
        return book

    mapped = {}
    if isinstance(entries, list):
        for index, e in enumerate(entries):
            if not isinstance(e, dict):
                continue
            uid = e.get('uid', index)
            e['uid'] = uid
            mapped[str(uid)] = e
    book['entries'] = mapped
    return book


def iter_book_entries(book):
    """遍历条目 (兼容 entries 为字典或数组)"""
    if not isinstance(book, dict):
        return []
    entries = book.get('entries')
    if isinstance(entries, dict):
        return [e for e in entries.values() if isinstance(e, dict)]
    if isinstance(entries, list):
        return [e for e in entries if isinstance(e, dict)]
    return []


def find_entry(book, uid):
    """
    按 uid 查找条目。
    前端勾选框传来的是字符串，存储里键也是字符串，统一按 str 比较。
    """
    if uid is None or not isinstance(book, dict):
        return None
    entries = book.get('entries')
    if isinstance(entries, dict):
        entry = entries.get(str(uid))
        if isinstance(entry, dict):
            return entry
    for e in iter_book_entries(book):
        if str(e.get('uid')) == str(uid):
            return e
    return None


def sanitize_for_utf8(obj, dirty_tracker=None):
    """
    递归清洗对象中的字符串 (去掉无法编码为 UTF-8 的孤立代理字符)。
    :param obj: 要清洗的对象 (dict, list, str)
    :param dirty_tracker: (可选) 传入一个列表。如果发现并修复了乱码，会向列表 append(True)。
    """
    if isinstance(obj, str):
        try:
            obj.encode('utf-8')
            return obj
        except UnicodeEncodeError:
            if isinstance(dirty_tracker, list):
                dirty_tracker.append(True)
            return obj.encode('utf-8', 'ignore').decode('utf-8')

    elif isinstance(obj, dict):
        return {k: sanitize_for_utf8(v, dirty_tracker) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [sanitize_for_utf8(v, dirty_tracker) for v in obj]
    else:
        return obj
