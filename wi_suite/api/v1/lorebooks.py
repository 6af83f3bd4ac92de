import logging
from flask import Blueprint, request, jsonify

from wi_suite.config import load_config
from wi_suite.services.char_lorebook import get_character_world_books
from wi_suite.services.st_client import get_st_client
from wi_suite.utils.i18n import t
from .common import error_response

logger = logging.getLogger(__name__)

bp = Blueprint('wi_lorebooks', __name__, url_prefix='/api/wi')

_TYPE_LABELS = {
    "primary": 'charWorldbookTypePrimary',
    "additional": 'charWorldbookTypeAdditional',
}


@bp.route('/character_books', methods=['GET'])
def character_books():
    """
    角色编辑器中的世界书快捷入口：列出当前角色绑定的世界书

    Query Params:
        avatar: 角色卡文件名

    Returns:
        {"books": [{"name", "type", "typeLabel"}], "title", "empty"}
    """
    if not load_config().get('enable_char_lorebook', True):
        return jsonify({
            "success": True,
            "enabled": False,
            "books": [],
            "msg": t('charLorebookDisabled'),
        })

    try:
        avatar = request.args.get('avatar', '')
        client = get_st_client()

        character = client.get_character(avatar) if avatar else None
        books = get_character_world_books(
            character,
            client.list_world_names(),
            char_lore=client.get_char_lore(),
            avatar=avatar,
        )
        for book in books:
            book['typeLabel'] = t(_TYPE_LABELS[book['type']])

        return jsonify({
            "success": True,
            "enabled": True,
            "title": t('charWorldbooksPanel'),
            "books": books,
            "empty": t('charWorldbooksEmpty') if not books else None,
        })
    except Exception as e:
        logger.error(f"获取角色世界书失败: {e}")
        return error_response(e)
