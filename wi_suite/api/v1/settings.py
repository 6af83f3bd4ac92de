import logging
from flask import Blueprint, request, jsonify

from wi_suite.config import load_config, save_config
from wi_suite.context import ctx
from wi_suite.services.st_client import get_st_client
from wi_suite.services.viewer_service import cleanup_viewer_cache
from wi_suite.utils.i18n import t, load_locale, current_locale
from wi_suite.utils.notify import notify
from .common import error_response, chat_ref

logger = logging.getLogger(__name__)

bp = Blueprint('wi_settings', __name__, url_prefix='/api/wi')

# 可以通过接口修改的功能开关
FEATURE_KEYS = (
    'enable_triggered_viewer',
    'enable_char_lorebook',
    'enable_bulk_editor',
    'viewer_cache_limit',
    'locale',
)


def _feature_settings(cfg):
    return {k: cfg.get(k) for k in FEATURE_KEYS}


def _parse_cache_limit(value):
    """缓存上限必须是 >= 0 的整数 (0 表示不限制)，否则返回 None"""
    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        value = int(value)
    try:
        limit = int(value)
    except (TypeError, ValueError):
        return None
    return limit if limit >= 0 else None


@bp.route('/settings', methods=['GET'])
def get_settings():
    return jsonify({
        "success": True,
        "settings": _feature_settings(load_config()),
        "active_locale": current_locale(),
    })


@bp.route('/settings', methods=['POST'])
def update_settings():
    """
    保存功能设置

    Body:
        enable_triggered_viewer / enable_char_lorebook / enable_bulk_editor: bool
        viewer_cache_limit: int >= 0
        locale: 界面语言
        avatar / chat_file: 当前聊天 (可选，缓存上限变化后立即清理)
    """
    try:
        data = request.get_json(silent=True) or {}
        cfg = load_config()
        old_limit = cfg.get('viewer_cache_limit')

        if 'viewer_cache_limit' in data:
            limit = _parse_cache_limit(data['viewer_cache_limit'])
            if limit is None:
                msg = t('settingsInvalidCacheLimit')
                return jsonify({
                    "success": False,
                    "error": "invalid_cache_limit",
                    "msg": msg,
                    "notice": notify(msg, 'warning'),
                }), 400
            cfg['viewer_cache_limit'] = limit

        for key in ('enable_triggered_viewer', 'enable_char_lorebook', 'enable_bulk_editor'):
            if key in data:
                cfg[key] = bool(data[key])
        if data.get('locale'):
            cfg['locale'] = str(data['locale'])

        if not save_config(cfg):
            msg = t('persistenceFailed', 'config.json')
            return jsonify({"success": False, "error": "persistence_failed", "msg": msg,
                            "notice": notify(msg, 'error')}), 500

        if 'locale' in data:
            load_locale(cfg['locale'])

        # 关闭查看器时丢弃尚未挂载的触发结果
        if not cfg.get('enable_triggered_viewer', True):
            ctx.viewer.discard_pending()

        removed = 0
        avatar, chat_file = chat_ref(data)
        if cfg['viewer_cache_limit'] != old_limit and avatar and chat_file:
            client = get_st_client()
            header, messages = client.load_chat(avatar, chat_file)
            removed = cleanup_viewer_cache(messages, cfg['viewer_cache_limit'])
            if removed:
                client.save_chat(avatar, chat_file, header, messages)

        logger.info(f"功能设置已更新: {_feature_settings(cfg)}")
        return jsonify({
            "success": True,
            "settings": _feature_settings(cfg),
            "removed": removed,
            "active_locale": current_locale(),
            "notice": notify(t('settingsSaved'), 'success'),
        })
    except Exception as e:
        logger.error(f"保存设置失败: {e}")
        return error_response(e)
