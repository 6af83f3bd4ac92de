import os
import json
import logging
import threading

logger = logging.getLogger(__name__)

LOCALES_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'locales')
FALLBACK_LOCALE = 'en'

_locale_data = {}
_current_locale = None
_lock = threading.Lock()


def resolve_locale_name(locale):
    """
    将宿主语言代码映射到已有的语言包。
    zh / zh-cn / zh-tw ... 统一使用 zh-tw，其余使用 en。
    """
    locale = str(locale or '').lower()
    return 'zh-tw' if locale.startswith('zh') else FALLBACK_LOCALE


def load_locale(locale=None):
    """加载语言包。找不到或解析失败时回退到 en。"""
    global _locale_data, _current_locale

    name = resolve_locale_name(locale)
    data = _read_locale_file(name)
    if data is None and name != FALLBACK_LOCALE:
        logger.warning(f"语言包 {name} 加载失败，回退到 {FALLBACK_LOCALE}")
        name = FALLBACK_LOCALE
        data = _read_locale_file(name)

    with _lock:
        _locale_data = data or {}
        _current_locale = name
    return name


def _read_locale_file(name):
    path = os.path.join(LOCALES_DIR, f"{name}.json")
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except Exception as e:
        logger.error(f"读取语言包失败 {path}: {e}")
        return None


def current_locale():
    return _current_locale


def t(key, *args):
    """
    获取本地化文本，并替换 {0}, {1} ... 占位符。
    未知键原样返回。
    """
    if _current_locale is None:
        load_locale(FALLBACK_LOCALE)

    text = _locale_data.get(key, key)
    for index, arg in enumerate(args):
        text = text.replace(f"{{{index}}}", str(arg))
    return text
