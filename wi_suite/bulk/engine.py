import logging

from wi_suite.services.world_info import delete_world_info_entry, move_world_info_entry
from wi_suite.services.wi_classifier import get_entry_status
from wi_suite.utils.data import deep_copy_json, find_entry
from wi_suite.utils.i18n import t
from .constants import KEY_STATE_SELECTOR, KEY_KILL_SWITCH, KEY_CHARACTER_FILTER

logger = logging.getLogger(__name__)


class BulkEditError(Exception):
    """批量编辑被中止 (不修改任何数据)"""
    code = "bulk_edit_error"
    msg_key = "bulkEditFailed"

    def localized(self):
        return t(self.msg_key, str(self))


class NoSelectionError(BulkEditError):
    code = "no_selection"
    msg_key = "bulkEditNoEntriesSelected"


class NoChangesError(BulkEditError):
    code = "no_changes"
    msg_key = "bulkEditNoChanges"


class NoDestinationError(BulkEditError):
    code = "no_destination"
    msg_key = "moveCopyNoTarget"


class NoTargetSelectedError(NoDestinationError):
    code = "no_target_selected"
    msg_key = "moveCopyNoTargetSelected"


class NoWorldSelectedError(BulkEditError):
    code = "no_world"
    msg_key = "bulkEditNoWorldSelected"


class TemplateMissingError(BulkEditError):
    code = "template_missing"
    msg_key = "bulkEditTemplateMissing"


class InvalidTransitionError(BulkEditError):
    code = "invalid_state"
    msg_key = "bulkEditInvalidState"


class FormTimeoutError(BulkEditError):
    code = "form_timeout"
    msg_key = "bulkEditFormTimeout"


# ==================== 变更摘要 ====================

def format_character_filter(value):
    if not value:
        return t('labelDisabled')
    names = ', '.join(value.get('names') or []) or t('labelNone')
    tags = ', '.join(value.get('tags') or []) or t('labelNone')
    mode = t('labelExclude') if value.get('isExclude') else t('labelOnly')
    return f"{t('labelMode')}: {mode}, {t('labelCharacters')}: {names}, {t('labelTags')}: {tags}"


def format_change_value(key, value):
    """将模板中的新值格式化为确认对话框中的一行"""
    if key == KEY_CHARACTER_FILTER:
        return format_character_filter(value)
    if isinstance(value, bool):
        return t('labelYes') if value else t('labelNo')
    if isinstance(value, (list, tuple)):
        return ', '.join(str(v) for v in value) if value else t('labelEmpty')
    if value is None or value == '':
        return t('labelEmpty')
    return str(value)


def template_value(template, key):
    """取模板中某个逻辑字段的值 (特殊字段映射到实际属性)"""
    if key == KEY_KILL_SWITCH:
        return template.get('disable', False)
    if key == KEY_STATE_SELECTOR:
        return get_entry_status(template)[1]
    return template.get(key)


def build_change_summary(dirty_keys, template, target_count):
    """
    生成确认对话框的内容。

    Returns:
        dict: {title, message, changes: [{key, value}], footer}
    """
    changes = []
    for key in dirty_keys:
        changes.append({
            "key": key,
            "value": format_change_value(key, template_value(template, key)),
        })
    return {
        "title": t('bulkEditConfirmTitle'),
        "message": t('bulkEditConfirmMsg', target_count),
        "changes": changes,
        "footer": t('bulkEditConfirmIrreversible'),
    }


# ==================== 应用 ====================

def apply_template_to_entry(target, template, dirty_keys):
    """将模板中被标记的字段复制到目标条目"""
    for key in dirty_keys:
        if key == KEY_STATE_SELECTOR:
            target['constant'] = template.get('constant')
            target['vectorized'] = template.get('vectorized')
        elif key == KEY_KILL_SWITCH:
            target['disable'] = template.get('disable')
        elif key == KEY_CHARACTER_FILTER:
            if template.get('characterFilter'):
                target['characterFilter'] = deep_copy_json(template['characterFilter'])
            else:
                target.pop('characterFilter', None)
        else:
            value = template.get(key)
            target[key] = list(value) if isinstance(value, list) else value
    return target


def _require_selection(target_uids, template_uid=None):
    """去掉模板条目后仍为空时报 NoSelectionError"""
    if template_uid is not None:
        target_uids = [uid for uid in target_uids or [] if str(uid) != str(template_uid)]
    if not target_uids:
        raise NoSelectionError("nothing selected")
    return target_uids


def apply_bulk_edit(client, world_name, template_uid, target_uids, dirty_keys):
    """
    将模板的改动重放到所选条目，删除模板条目，然后只保存一次。

    Returns:
        dict: {"modified": 修改数量, "skipped": [不存在的 uid]}
    """
    target_uids = _require_selection(target_uids, template_uid)
    if not dirty_keys:
        raise NoChangesError("no changes")

    book = client.load_world_info(world_name)
    template = find_entry(book, template_uid)
    if template is None:
        raise TemplateMissingError(str(template_uid))
    template = deep_copy_json(template)

    modified = 0
    skipped = []
    for uid in target_uids:
        if str(uid) == str(template_uid):
            continue
        entry = find_entry(book, uid)
        if entry is None:
            # 可能已在别处被删除
            skipped.append(uid)
            continue
        apply_template_to_entry(entry, template, dirty_keys)
        modified += 1

    delete_world_info_entry(book, template_uid)
    client.save_world_info(world_name, book)

    if skipped:
        logger.warning(f"Skipped missing entries in {world_name}: {skipped}")
    logger.info(f"Applied {list(dirty_keys)} to {modified} entries in {world_name}")
    return {"modified": modified, "skipped": skipped}


def delete_entries(client, world_name, template_uid, target_uids):
    """
    删除所选条目与模板条目，只保存一次。

    Returns:
        dict: {"deleted": 删除数量, "skipped": [不存在的 uid]}
    """
    target_uids = _require_selection(target_uids, template_uid)

    book = client.load_world_info(world_name)
    deleted = 0
    skipped = []
    for uid in target_uids:
        if str(uid) == str(template_uid):
            continue
        if delete_world_info_entry(book, uid):
            deleted += 1
        else:
            skipped.append(uid)

    delete_world_info_entry(book, template_uid)
    client.save_world_info(world_name, book)

    logger.info(f"Deleted {deleted} entries from {world_name}")
    return {"deleted": deleted, "skipped": skipped}


def list_destinations(world_names, source_name):
    """可选的移动/复制目标 (不含源世界书)"""
    destinations = [w for w in world_names or [] if w and w != source_name]
    if not destinations:
        raise NoDestinationError(source_name)
    return destinations


def move_copy_entries(client, source_name, destination, target_uids, delete_original, template_uid=None):
    """
    逐条移动/复制，单条失败不会中断整个批次。模板条目不会被带到目标世界书。

    移动时先保存目标再保存源；源保存失败的条目会同时留在两本世界书里，
    并计入 failed。

    Returns:
        dict: {"succeeded": n, "failed": m, "failed_uids": [...]}
    """
    target_uids = _require_selection(target_uids, template_uid)
    if not destination or destination == source_name:
        raise NoTargetSelectedError(str(destination))

    succeeded = 0
    failed_uids = []
    for uid in target_uids:
        if move_world_info_entry(client, source_name, destination, uid, delete_original=delete_original):
            succeeded += 1
        else:
            failed_uids.append(uid)

    action = "Moved" if delete_original else "Copied"
    logger.info(f"{action} {succeeded} entries {source_name} -> {destination}, {len(failed_uids)} failed")
    return {"succeeded": succeeded, "failed": len(failed_uids), "failed_uids": failed_uids}


def discard_template(client, world_name, template_uid):
    """删除模板条目 (重新读取后删除，存在时保存一次)"""
    book = client.load_world_info(world_name)
    removed = delete_world_info_entry(book, template_uid)
    if removed:
        client.save_world_info(world_name, book)
    return removed
