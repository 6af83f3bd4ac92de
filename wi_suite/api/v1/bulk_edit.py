"""
Bulk Edit API - 世界书批量编辑向导接口

一个会话对应一次向导：
  POST /start                  创建模板条目
  POST /<sid>/form_ready       模板表单已渲染，绑定控件
  POST /<sid>/input | click    表单交互 (标记改动字段)
  POST /<sid>/apply | delete | move_copy   发起操作，返回确认对话框内容
  POST /<sid>/resolve          确认对话框的结果
  POST /<sid>/cancel           关闭向导

会话结束 (成功、失败或取消) 后从上下文中移除。

@module bulk_edit
@version 1.0.0
"""

import logging
import threading
from flask import Blueprint, request, jsonify

from wi_suite.bulk.engine import FormTimeoutError
from wi_suite.bulk.session import BulkEditSession
from wi_suite.config import load_config
from wi_suite.context import ctx
from wi_suite.services.st_client import get_st_client
from wi_suite.utils.i18n import t
from wi_suite.utils.notify import notify
from .common import error_response

logger = logging.getLogger(__name__)

bp = Blueprint('wi_bulk_edit', __name__, url_prefix='/api/wi/bulk')


def _watch_form(session):
    """后台等待模板表单就绪，超时后会话自行清理"""
    try:
        session.wait_for_form()
    except FormTimeoutError:
        ctx.drop_session(session.session_id)


def _session_not_found(session_id):
    return jsonify({
        "success": False,
        "error": "session_not_found",
        "msg": t('bulkEditSessionNotFound'),
        "notice": notify(t('bulkEditSessionNotFound'), 'warning'),
    }), 404


def _run(session_id, action):
    """
    在会话锁内执行一个操作，统一处理响应与会话的移除。

    Args:
        session_id: 会话 ID
        action: 接收 session，返回结果 dict
    """
    session = ctx.get_session(session_id)
    if session is None:
        return _session_not_found(session_id)

    try:
        with session.lock:
            result = action(session)
            snapshot = session.snapshot()
        return jsonify({
            "success": True,
            "result": result,
            "session": snapshot,
            "notice": session.notice if session.finished else None,
        })
    except Exception as e:
        logger.error(f"批量编辑会话 {session_id} 操作失败: {e}")
        return error_response(e, notice=session.notice if session.finished else None)
    finally:
        if session.finished:
            ctx.drop_session(session_id)


@bp.route('/start', methods=['POST'])
def start_session():
    """
    打开批量编辑向导

    Body:
        world: 当前选中的世界书

    Returns:
        会话 ID、模板条目与可勾选的条目列表
    """
    if not load_config().get('enable_bulk_editor', True):
        return jsonify({
            "success": False,
            "error": "disabled",
            "msg": t('bulkEditDisabled'),
            "notice": notify(t('bulkEditDisabled'), 'warning'),
        }), 403

    try:
        data = request.get_json(silent=True) or {}
        session = BulkEditSession(get_st_client(), data.get('world'))
        result = session.start()
        ctx.register_session(session)

        threading.Thread(target=_watch_form, args=(session,), daemon=True).start()

        return jsonify({
            "success": True,
            "title": f"{t('bulkEditDialogTitle')} {session.world_name}",
            **result,
        })
    except Exception as e:
        logger.error(f"打开批量编辑失败: {e}")
        return error_response(e)


@bp.route('/<session_id>', methods=['GET'])
def get_session(session_id):
    session = ctx.get_session(session_id)
    if session is None:
        return _session_not_found(session_id)
    return jsonify({"success": True, "session": session.snapshot()})


@bp.route('/<session_id>/form_ready', methods=['POST'])
def form_ready(session_id):
    """
    Body:
        inputs: 模板表单中实际存在的控件名列表
    """
    data = request.get_json(silent=True) or {}
    return _run(session_id, lambda s: {"hooked_keys": s.form_ready(data.get('inputs') or [])})


@bp.route('/<session_id>/input', methods=['POST'])
def record_input(session_id):
    """
    Body:
        name: 改值的控件名
    """
    data = request.get_json(silent=True) or {}
    return _run(session_id, lambda s: {"changed": s.record_input(data.get('name'))})


@bp.route('/<session_id>/click', methods=['POST'])
def record_click(session_id):
    """
    Body:
        name: 被点击的控件名
        modifier: 是否按住 Ctrl
    """
    data = request.get_json(silent=True) or {}
    return _run(session_id, lambda s: {
        "changed": s.record_click(data.get('name'), modifier=bool(data.get('modifier')))
    })


@bp.route('/<session_id>/apply', methods=['POST'])
def request_apply(session_id):
    data = request.get_json(silent=True) or {}
    return _run(session_id, lambda s: s.request_apply(data.get('uids')))


@bp.route('/<session_id>/delete', methods=['POST'])
def request_delete(session_id):
    data = request.get_json(silent=True) or {}
    return _run(session_id, lambda s: s.request_delete(data.get('uids')))


@bp.route('/<session_id>/move_copy', methods=['POST'])
def request_move_copy(session_id):
    data = request.get_json(silent=True) or {}
    return _run(session_id, lambda s: s.request_move_copy(data.get('uids')))


@bp.route('/<session_id>/resolve', methods=['POST'])
def resolve(session_id):
    """
    确认对话框的结果

    Body:
        result: 1 确认 / 0 取消 / 1001 复制 / 1002 移动
        destination: 移动/复制的目标世界书
    """
    data = request.get_json(silent=True) or {}
    return _run(session_id, lambda s: s.resolve(data.get('result'), data.get('destination')))


@bp.route('/<session_id>/cancel', methods=['POST'])
def cancel(session_id):
    return _run(session_id, lambda s: {"state": s.cancel()})
