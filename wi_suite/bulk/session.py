"""
Bulk Edit Session - 批量编辑向导的状态机

idle -> template_created -> form_hooked -> awaiting_action
     -> confirming -> applying -> done

- 会话开始时在世界书中创建一个临时模板条目，结束时 (成功或取消) 必定删除
- 取消、确认阶段失败都会先清理模板，再回到 idle
- applying 之后不会再回到 awaiting_action，每个会话只有一个最终结果
"""

import uuid
import logging
import threading
from contextlib import ExitStack

from wi_suite.config import load_config
from wi_suite.services.st_client import STClientError
from wi_suite.services.world_info import create_world_info_entry
from wi_suite.utils.data import find_entry, iter_book_entries
from wi_suite.utils.i18n import t
from wi_suite.utils.notify import notify
from .constants import *
from .tracker import ChangeTracker
from .engine import (
    InvalidTransitionError, NoSelectionError, NoChangesError, NoWorldSelectedError,
    NoTargetSelectedError, TemplateMissingError, FormTimeoutError,
    build_change_summary, apply_bulk_edit, delete_entries, list_destinations,
    move_copy_entries, discard_template,
)

logger = logging.getLogger(__name__)

# from_state -> {event: to_state}
TRANSITIONS = {
    STATE_IDLE: {"create_template": STATE_TEMPLATE_CREATED},
    STATE_TEMPLATE_CREATED: {"hook_form": STATE_FORM_HOOKED, "cancel": STATE_IDLE},
    STATE_FORM_HOOKED: {"show_dialog": STATE_AWAITING_ACTION, "cancel": STATE_IDLE},
    STATE_AWAITING_ACTION: {"request": STATE_CONFIRMING, "cancel": STATE_IDLE},
    STATE_CONFIRMING: {
        "decline": STATE_AWAITING_ACTION,
        "confirm": STATE_APPLYING,
        "fail": STATE_IDLE,
        "cancel": STATE_IDLE,
    },
    STATE_APPLYING: {"finish": STATE_DONE},
    STATE_DONE: {},
}


def _default_lock_provider(world_name):
    from wi_suite.context import ctx
    return ctx.book_lock(world_name)


class BulkEditSession:
    def __init__(self, client, world_name, lock_provider=None, on_highlight=None,
                 session_id=None):
        if not world_name:
            raise NoWorldSelectedError("no world selected")

        self.session_id = session_id or uuid.uuid4().hex
        self.client = client
        self.world_name = world_name
        self.state = STATE_IDLE
        self.finished = False
        self.template_uid = None
        self.tracker = ChangeTracker(on_highlight)
        self.selection = []
        self.operation = None
        self.pending = None
        self.outcome = None
        self.notice = None
        self._lock_provider = lock_provider or _default_lock_provider
        self._form_ready = threading.Event()
        # 同一会话的请求与表单超时监视互斥
        self.lock = threading.RLock()

    # ==================== 状态机 ====================

    def can(self, event):
        return not self.finished and event in TRANSITIONS.get(self.state, {})

    def _require(self, event):
        if not self.can(event):
            raise InvalidTransitionError(f"'{event}' is not allowed in state '{self.state}'")

    def _transition(self, event):
        self._require(event)
        previous = self.state
        self.state = TRANSITIONS[self.state][event]
        logger.debug(f"[bulk:{self.session_id}] {previous} --{event}--> {self.state}")

    def _book_lock(self):
        return self._lock_provider(self.world_name)

    # ==================== 开始 ====================

    def start(self):
        """
        在世界书中创建模板条目并保存。

        Returns:
            dict: 模板条目与可选条目列表
        """
        self._require("create_template")

        with self._book_lock():
            book = self.client.load_world_info(self.world_name)
            template = create_world_info_entry(book)
            self.client.save_world_info(self.world_name, book)

        self.template_uid = template['uid']
        self._transition("create_template")
        logger.info(f"Bulk edit session {self.session_id} started on {self.world_name}, template #{self.template_uid}")

        return {
            "session_id": self.session_id,
            "world": self.world_name,
            "template_uid": self.template_uid,
            "template": template,
            "entries": self.selectable_entries(book),
        }

    def selectable_entries(self, book):
        """左侧勾选列表：除模板外的所有条目"""
        items = []
        for e in iter_book_entries(book):
            if str(e.get('uid')) == str(self.template_uid):
                continue
            keys = e.get('key') if isinstance(e.get('key'), list) else []
            label = f"[{e.get('uid')}] {e.get('comment') or ', '.join(str(k) for k in keys)}"
            items.append({"uid": e.get('uid'), "label": label})
        return items

    def form_ready(self, input_names):
        """
        模板条目的表单已渲染 (由前端通知，不做轮询)。
        绑定表单控件，并进入等待操作的状态。
        """
        self._require("hook_form")
        hooked = self.tracker.hook_form(input_names)
        self._transition("hook_form")
        self._form_ready.set()
        self._transition("show_dialog")
        return hooked

    def wait_for_form(self, timeout=None):
        """
        有限时间等待表单就绪，超时则清理模板并抛出 FormTimeoutError。
        """
        if timeout is None:
            timeout = float(load_config().get('form_ready_timeout', 10.0))
        if self._form_ready.wait(timeout):
            return True

        with self.lock:
            if self.finished or self._form_ready.is_set():
                return self._form_ready.is_set()
            logger.warning(f"Template form for session {self.session_id} not ready after {timeout}s")
            self._abort(FormTimeoutError(f"{timeout}s"))
        raise FormTimeoutError(f"{timeout}s")

    # ==================== 模板表单交互 ====================

    def _require_awaiting(self):
        if self.finished or self.state != STATE_AWAITING_ACTION:
            raise InvalidTransitionError(f"form is not editable in state '{self.state}'")

    def record_input(self, input_name):
        self._require_awaiting()
        return self.tracker.on_value_changed(input_name)

    def record_click(self, input_name, modifier=False):
        self._require_awaiting()
        return self.tracker.on_click(input_name, modifier=modifier)

    # ==================== 发起操作 ====================

    def _normalize_uids(self, uids):
        """去重，并去掉空值和模板条目本身"""
        seen = []
        for uid in uids or []:
            if uid is None or uid == '':
                continue
            if self.template_uid is not None and str(uid) == str(self.template_uid):
                continue
            if str(uid) not in [str(s) for s in seen]:
                seen.append(uid)
        return seen

    def _begin(self, operation, uids):
        self.selection = uids
        self.operation = operation
        self._transition("request")

    def request_apply(self, uids):
        """
        校验后生成变更摘要，进入确认阶段。
        未选择条目 / 没有改动时直接报错，状态不变。
        """
        self._require("request")
        uids = self._normalize_uids(uids)
        if not uids:
            raise NoSelectionError("nothing selected")
        dirty_keys = self.tracker.dirty_keys
        if not dirty_keys:
            raise NoChangesError("no changes")

        self._begin(OP_APPLY, uids)
        try:
            with self._book_lock():
                book = self.client.load_world_info(self.world_name)
            template = find_entry(book, self.template_uid)
            if template is None:
                raise TemplateMissingError(str(self.template_uid))
        except (STClientError, TemplateMissingError) as e:
            self._fail(e)
            raise

        self.pending = build_change_summary(dirty_keys, template, len(uids))
        return {"operation": OP_APPLY, "confirm": self.pending}

    def request_delete(self, uids):
        self._require("request")
        uids = self._normalize_uids(uids)
        if not uids:
            raise NoSelectionError("nothing selected")

        self._begin(OP_DELETE, uids)
        self.pending = {
            "title": t('deleteConfirmTitle'),
            "message": t('deleteConfirmMsg', len(uids)),
        }
        return {"operation": OP_DELETE, "confirm": self.pending}

    def request_move_copy(self, uids):
        """没有其他世界书可选时，在弹出选择框之前直接报错"""
        self._require("request")
        uids = self._normalize_uids(uids)
        if not uids:
            raise NoSelectionError("nothing selected")
        destinations = list_destinations(self.client.list_world_names(), self.world_name)

        self._begin(OP_MOVE_COPY, uids)
        self.pending = {
            "title": t('moveCopyTitle'),
            "message": t('moveCopyInfo', len(uids)),
            "destinations": destinations,
        }
        return {"operation": OP_MOVE_COPY, "confirm": self.pending}

    # ==================== 确认 ====================

    def resolve(self, result, destination=None):
        """
        处理确认对话框的结果。

        Args:
            result: RESULT_AFFIRMATIVE / RESULT_NEGATIVE / RESULT_CUSTOM1 (复制) / RESULT_CUSTOM2 (移动)
            destination: 移动/复制的目标世界书
        """
        if self.finished or self.state != STATE_CONFIRMING:
            raise InvalidTransitionError(f"nothing to confirm in state '{self.state}'")

        operation = self.operation
        if operation == OP_MOVE_COPY:
            accepted = result in (RESULT_CUSTOM1, RESULT_CUSTOM2)
        else:
            accepted = result == RESULT_AFFIRMATIVE

        if not accepted:
            self._transition("decline")
            self.operation = None
            self.pending = None
            return {"declined": True, "state": self.state}

        if operation == OP_MOVE_COPY and destination not in (self.pending or {}).get('destinations', []):
            raise NoTargetSelectedError(str(destination))

        self._transition("confirm")
        try:
            if operation == OP_APPLY:
                outcome = self._run_apply()
            elif operation == OP_DELETE:
                outcome = self._run_delete()
            else:
                outcome = self._run_move_copy(destination, delete_original=result == RESULT_CUSTOM2)
        except Exception as e:
            logger.error(f"Bulk {operation} failed on {self.world_name}: {e}")
            self._cleanup_template()
            self.outcome = {"success": False, "operation": operation, "error": str(e)}
            self.notice = notify(t('bulkEditFailed', e), 'error')
            self._finish()
            raise

        self.outcome = outcome
        self._finish()
        return outcome

    def _run_apply(self):
        with self._book_lock():
            result = apply_bulk_edit(self.client, self.world_name, self.template_uid,
                                     self.selection, self.tracker.dirty_keys)
        self.notice = notify(t('bulkEditSuccess', t('bulkEditActionModified'), result['modified']), 'success')
        return {"success": True, "operation": OP_APPLY, **result}

    def _run_delete(self):
        with self._book_lock():
            result = delete_entries(self.client, self.world_name, self.template_uid, self.selection)
        self.notice = notify(t('bulkEditSuccess', t('bulkEditActionDeleted'), result['deleted']), 'success')
        return {"success": True, "operation": OP_DELETE, **result}

    def _run_move_copy(self, destination, delete_original):
        # 两本书都要加锁，按名称排序避免死锁
        with ExitStack() as stack:
            for name in sorted({self.world_name, destination}):
                stack.enter_context(self._lock_provider(name))
            result = move_copy_entries(self.client, self.world_name, destination,
                                       self.selection, delete_original,
                                       template_uid=self.template_uid)
            discard_template(self.client, self.world_name, self.template_uid)

        action = t('moveCopyActionMoved') if delete_original else t('moveCopyActionCopied')
        message = t('moveCopySuccess', action, result['succeeded'], destination)
        level = 'success'
        if result['failed'] > 0:
            message = f"{message} {t('moveCopyError', result['failed'])}"
            level = 'warning'
        self.notice = notify(message, level)
        return {"success": True, "operation": OP_MOVE_COPY, "destination": destination,
                "delete_original": delete_original, **result}

    def _finish(self):
        self._transition("finish")
        self.finished = True

    # ==================== 取消 / 清理 ====================

    def cancel(self):
        """
        关闭对话框。applying 之前的任何阶段都可以取消，模板条目一定会被删除。
        """
        if self.finished:
            return self.state
        if self.state == STATE_IDLE:
            # 模板还没创建
            self.finished = True
            return self.state
        self._require("cancel")

        try:
            self._discard_template()
        finally:
            self._transition("cancel")
            self.finished = True
            self.operation = None
            self.pending = None
        self.notice = notify(t('bulkEditCancelled'), 'info')
        return self.state

    def _fail(self, error):
        """确认阶段失败：清理模板，回到 idle"""
        self._cleanup_template()
        self._transition("fail")
        self.finished = True
        self.notice = notify(t('bulkEditFailed', error), 'error')

    def _abort(self, error):
        """表单未就绪等情况：清理模板，回到 idle"""
        self._cleanup_template()
        if self.can("cancel"):
            self._transition("cancel")
        self.finished = True
        self.notice = notify(error.localized(), 'error')

    def _discard_template(self):
        if self.template_uid is None:
            return False
        with self._book_lock():
            return discard_template(self.client, self.world_name, self.template_uid)

    def _cleanup_template(self):
        """出错路径上的清理，清理本身失败只记录日志，保留原始错误"""
        try:
            return self._discard_template()
        except STClientError as e:
            logger.error(f"Failed to remove template #{self.template_uid} from {self.world_name}: {e}")
            return False

    # ==================== 快照 ====================

    def snapshot(self):
        return {
            "session_id": self.session_id,
            "world": self.world_name,
            "state": self.state,
            "finished": self.finished,
            "template_uid": self.template_uid,
            "dirty_keys": list(self.tracker.dirty_keys),
            "highlighted": sorted(self.tracker.highlighted),
            "hooked_keys": self.tracker.hooked_keys,
            "selection": self.selection,
            "operation": self.operation,
            "pending": self.pending,
            "outcome": self.outcome,
            "notice": self.notice,
        }
