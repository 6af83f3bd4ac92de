import logging

from .constants import INPUT_TO_FIELD, KEY_KILL_SWITCH, HIGHLIGHT_SELF

logger = logging.getLogger(__name__)


class ChangeTracker:
    """
    记录模板条目中哪些字段被改动过 (dirty)。

    只做字段级标记，不比较值：
      - 任何改值操作 (输入、选择、多选提交) 都会标记该字段
      - Ctrl+点击 切换标记而不改值，用于强制包含或排除某字段
      - 总开关 (entryKillSwitch) 只要被点击就标记，且不会被 Ctrl+点击 取消
    """

    def __init__(self, on_highlight=None):
        """
        :param on_highlight: 回调 (key, highlighted, target)，target 为 'self' 或 'parent'
        """
        self._dirty = []
        self._bindings = {}
        self.highlighted = set()
        self.on_highlight = on_highlight

    @property
    def dirty_keys(self):
        return tuple(self._dirty)

    @property
    def hooked_keys(self):
        return sorted(set(self._bindings.values()))

    def hook_form(self, input_names):
        """
        绑定表单中实际存在的控件，返回被绑定的逻辑字段。
        未知的控件名直接忽略。
        """
        for name in input_names or []:
            key = INPUT_TO_FIELD.get(name)
            if key:
                self._bindings[name] = key
        hooked = self.hooked_keys
        logger.debug(f"Hooked {len(hooked)} fields: {hooked}")
        return hooked

    def key_for_input(self, input_name):
        return self._bindings.get(input_name)

    def is_dirty(self, key):
        return key in self._dirty

    def mark(self, key):
        if key in self._dirty:
            return False
        self._dirty.append(key)
        self._set_highlight(key, True)
        return True

    def unmark(self, key):
        if key not in self._dirty:
            return False
        self._dirty.remove(key)
        self._set_highlight(key, False)
        return True

    def on_value_changed(self, input_name):
        """input / change / select2:select / select2:unselect"""
        key = self.key_for_input(input_name)
        if not key or key == KEY_KILL_SWITCH:
            return False
        return self.mark(key)

    def on_click(self, input_name, modifier=False):
        """
        点击控件。
        modifier=True 表示 Ctrl+点击 (切换标记，不改值)。
        """
        key = self.key_for_input(input_name)
        if not key:
            return False
        if key == KEY_KILL_SWITCH:
            return self.mark(key)
        if not modifier:
            return False
        if self.is_dirty(key):
            return self.unmark(key)
        return self.mark(key)

    def _set_highlight(self, key, on):
        if on:
            self.highlighted.add(key)
        else:
            self.highlighted.discard(key)
        if self.on_highlight:
            target = 'self' if key in HIGHLIGHT_SELF else 'parent'
            self.on_highlight(key, on, target)
