"""
ST Sync API - SillyTavern 连接与世界书列表接口

@module st_sync
@version 2.0.0
"""

import os
import logging
from flask import Blueprint, request, jsonify

from wi_suite.services.st_client import get_st_client, refresh_st_client, ST_DATA_STRUCTURE
from .common import error_response

logger = logging.getLogger(__name__)

bp = Blueprint('st_sync', __name__, url_prefix='/api/st')


@bp.route('/test_connection', methods=['GET'])
def test_connection():
    """
    测试与 SillyTavern 的连接

    Returns:
        连接状态信息
    """
    try:
        client = get_st_client()
        result = client.test_connection()
        return jsonify({
            "success": True,
            **result
        })
    except Exception as e:
        logger.error(f"测试连接失败: {e}")
        return error_response(e)


@bp.route('/detect_path', methods=['GET'])
def detect_path():
    """
    自动探测 SillyTavern 安装路径

    Returns:
        探测到的路径信息
    """
    try:
        client = get_st_client()
        detected = client.detect_st_path()

        if detected:
            return jsonify({
                "success": True,
                "path": detected,
                "valid": True
            })
        else:
            return jsonify({
                "success": True,
                "path": None,
                "valid": False,
                "message": "未能自动探测到 SillyTavern 安装路径，请手动配置"
            })
    except Exception as e:
        logger.error(f"探测路径失败: {e}")
        return error_response(e)


@bp.route('/validate_path', methods=['POST'])
def validate_path():
    """
    验证指定路径是否为有效的 SillyTavern 安装目录

    Body:
        path: 要验证的路径

    Returns:
        验证结果，以及世界书 / 角色卡 / 聊天目录的文件数量
    """
    try:
        data = request.get_json(silent=True) or {}
        path = data.get('path', '')

        if not path:
            return jsonify({
                "success": False,
                "error": "请提供路径"
            }), 400

        client = get_st_client()
        is_valid = client._validate_st_path(path)

        resources = {}
        if is_valid:
            for res_type, subdir in ST_DATA_STRUCTURE.items():
                if res_type == "settings":
                    continue
                full_path = os.path.join(path, *subdir.format(st_user=client.st_user).split('/'))
                if os.path.isdir(full_path):
                    resources[res_type] = {
                        "path": full_path,
                        "count": len(os.listdir(full_path))
                    }

        return jsonify({
            "success": True,
            "valid": is_valid,
            "resources": resources
        })
    except Exception as e:
        logger.error(f"验证路径失败: {e}")
        return error_response(e)


@bp.route('/worlds', methods=['GET'])
def list_worlds():
    """
    列出 SillyTavern 中的所有世界书 (批量编辑的可选目标)
    """
    try:
        names = get_st_client().list_world_names()
        return jsonify({
            "success": True,
            "items": names,
            "count": len(names)
        })
    except Exception as e:
        logger.error(f"列出世界书失败: {e}")
        return error_response(e)


@bp.route('/refresh', methods=['POST'])
def refresh_client():
    """
    刷新 ST 客户端配置

    用于配置变更后重新初始化客户端
    """
    try:
        refresh_st_client()
        return jsonify({
            "success": True,
            "message": "客户端已刷新"
        })
    except Exception as e:
        logger.error(f"刷新客户端失败: {e}")
        return error_response(e)
