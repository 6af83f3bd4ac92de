"""
Triggered Entry Viewer API - 世界书触发记录接口

浏览器端脚本把 SillyTavern 的事件转发到这里，再由 event_bus 分发给查看器：
  POST /api/wi/activated        -> WORLD_INFO_ACTIVATED
  POST /api/wi/message_received -> MESSAGE_RECEIVED
记录保存在聊天文件中对应消息的 extra.worldInfoViewer 上。

@module viewer
@version 1.0.0
"""

import logging
from flask import Blueprint, request, jsonify

from wi_suite.context import ctx
from wi_suite.event_bus import event_bus, WORLD_INFO_ACTIVATED, MESSAGE_RECEIVED
from wi_suite.services.st_client import get_st_client, ChatNotFoundError
from wi_suite.services.viewer_service import (
    get_viewer_data, cleanup_viewer_cache, clear_all_viewer_cache
)
from wi_suite.utils.i18n import t
from wi_suite.utils.notify import notify
from .common import error_response, chat_ref

logger = logging.getLogger(__name__)

bp = Blueprint('wi_viewer', __name__, url_prefix='/api/wi')


def _disabled_response():
    return jsonify({
        "success": True,
        "enabled": False,
        "msg": t('viewerDisabled'),
    })


def _resolve_chat_world(client, data):
    """请求中直接给出的 chat_world 优先，否则从聊天头读取"""
    if 'chat_world' in data:
        return data.get('chat_world') or None
    avatar, chat_file = chat_ref(data)
    if not avatar or not chat_file:
        return None
    try:
        header, _ = client.load_chat(avatar, chat_file)
    except ChatNotFoundError:
        logger.debug(f"聊天不存在，按无聊天世界书处理: {avatar}/{chat_file}")
        return None
    return client.get_chat_world(header)


@bp.route('/activated', methods=['POST'])
def world_info_activated():
    """
    一次生成中被激活的世界书条目

    Body:
        entries: 激活记录列表
        avatar / chat_file: 当前角色与聊天 (用于判定条目来源)
        chat_world: 聊天绑定的世界书 (可选，缺省时从聊天头读取)
        context: 来源判定上下文 (可选，覆盖宿主数据)
        world_registry: 世界书顺序表 (可选，覆盖 settings.json)

    Returns:
        分组排序后的结果 (已暂存，等待下一条消息)
    """
    if not ctx.viewer.enabled:
        return _disabled_response()

    try:
        data = request.get_json(silent=True) or {}
        entries = data.get('entries')
        client = get_st_client()

        context = data.get('context')
        if context is None:
            context = client.get_source_context(data.get('avatar'), _resolve_chat_world(client, data))
        world_registry = data.get('world_registry')
        if world_registry is None:
            world_registry = client.get_world_registry()

        results = event_bus.emit(WORLD_INFO_ACTIVATED, {
            "entries": entries,
            "context": context,
            "world_registry": world_registry,
        })
        groups = next((r for r in results if r is not None), None)
        return jsonify({
            "success": True,
            "enabled": True,
            "pending": groups is not None,
            "groups": groups or [],
        })
    except Exception as e:
        logger.error(f"处理世界书激活失败: {e}")
        return error_response(e)


@bp.route('/message_received', methods=['POST'])
def message_received():
    """
    新消息到达，把暂存的触发记录挂到该消息上并写回聊天文件

    Body:
        avatar, chat_file, message_id
    """
    if not ctx.viewer.enabled:
        return _disabled_response()

    try:
        data = request.get_json(silent=True) or {}
        avatar, chat_file = chat_ref(data)
        message_id = data.get('message_id')
        client = get_st_client()

        header, messages = client.load_chat(avatar, chat_file)
        results = event_bus.emit(MESSAGE_RECEIVED, {"chat": messages, "message_id": message_id})
        attached = any(results)
        if attached:
            client.save_chat(avatar, chat_file, header, messages)

        return jsonify({
            "success": True,
            "enabled": True,
            "attached": attached,
            "message_id": message_id,
        })
    except Exception as e:
        logger.error(f"挂载触发记录失败: {e}")
        return error_response(e)


@bp.route('/viewer', methods=['GET'])
def get_viewer():
    """
    读取某条消息的触发记录

    Query Params:
        avatar, chat_file, message_id
    """
    if not ctx.viewer.enabled:
        return _disabled_response()

    try:
        avatar, chat_file = chat_ref(request.args)
        message_id = request.args.get('message_id')
        _, messages = get_st_client().load_chat(avatar, chat_file)

        groups = get_viewer_data(messages, message_id)
        if not groups:
            return jsonify({
                "success": False,
                "error": "no_data",
                "msg": t('noWorldInfoData'),
                "notice": notify(t('noWorldInfoData'), 'info'),
            }), 404

        return jsonify({
            "success": True,
            "message_id": message_id,
            "groups": groups,
        })
    except Exception as e:
        logger.error(f"读取触发记录失败: {e}")
        return error_response(e)


@bp.route('/viewer/cleanup', methods=['POST'])
def cleanup_viewer():
    """
    按缓存上限清理旧的触发记录

    Body:
        avatar, chat_file
        limit: 保留数量 (可选，缺省取配置)
    """
    try:
        data = request.get_json(silent=True) or {}
        avatar, chat_file = chat_ref(data)
        limit = data.get('limit', ctx.viewer.cache_limit)
        client = get_st_client()

        header, messages = client.load_chat(avatar, chat_file)
        removed = cleanup_viewer_cache(messages, limit)
        if removed:
            client.save_chat(avatar, chat_file, header, messages)

        return jsonify({
            "success": True,
            "removed": removed,
        })
    except Exception as e:
        logger.error(f"清理触发记录失败: {e}")
        return error_response(e)


@bp.route('/viewer/clear', methods=['POST'])
def clear_viewer():
    """
    清除聊天中的全部触发记录

    Body:
        avatar, chat_file
    """
    try:
        data = request.get_json(silent=True) or {}
        avatar, chat_file = chat_ref(data)
        client = get_st_client()

        header, messages = client.load_chat(avatar, chat_file)
        count = clear_all_viewer_cache(messages)
        if count:
            client.save_chat(avatar, chat_file, header, messages)
            notice = notify(t('cacheClearedSuccess', count), 'success')
        else:
            notice = notify(t('cacheClearedNone'), 'info')

        return jsonify({
            "success": True,
            "cleared": count,
            "notice": notice,
        })
    except Exception as e:
        logger.error(f"清除触发记录失败: {e}")
        return error_response(e)
