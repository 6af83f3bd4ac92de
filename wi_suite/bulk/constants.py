from wi_suite.services.world_info import NEW_ENTRY_DEFINITION

# 特殊字段 (不直接对应条目属性)
KEY_STATE_SELECTOR = "entryStateSelector"   # 常驻 / 向量化 / 普通 -> constant + vectorized
KEY_KILL_SWITCH = "entryKillSwitch"         # 条目总开关 -> disable
KEY_CHARACTER_FILTER = "characterFilter"    # 角色过滤 (结构体)

SPECIAL_KEYS = (KEY_STATE_SELECTOR, KEY_KILL_SWITCH, KEY_CHARACTER_FILTER)

# 字段映射 (逻辑字段 -> 模板表单中的输入控件 name)
FIELD_INPUTS = {
    # 触发
    "key": ("key",),
    "keysecondary": ("keysecondary",),
    "selectiveLogic": ("entryLogicType",),
    "caseSensitive": ("caseSensitive",),
    "matchWholeWords": ("matchWholeWords",),
    "useGroupScoring": ("useGroupScoring",),

    # 内容
    "comment": ("comment",),
    "content": ("content",),

    # 插入位置
    "position": ("position",),
    "depth": ("depth",),
    "order": ("order",),
    "probability": ("probability",),
    "useProbability": ("useProbability",),

    # 递归
    "excludeRecursion": ("exclude_recursion",),
    "preventRecursion": ("prevent_recursion",),
    "delayUntilRecursion": ("delay_until_recursion",),
    "scanDepth": ("scanDepth",),

    # 分组
    "group": ("group",),
    "groupOverride": ("groupOverride",),
    "groupWeight": ("groupWeight",),

    # 时效
    "sticky": ("sticky",),
    "cooldown": ("cooldown",),
    "delay": ("delay",),

    # 其他
    "addMemo": ("addMemo",),
    "ignoreBudget": ("ignore_budget",),
    "automationId": ("automationId",),

    # 特殊
    KEY_STATE_SELECTOR: ("entryStateSelector",),
    KEY_KILL_SWITCH: ("entryKillSwitch",),
    KEY_CHARACTER_FILTER: ("characterFilter", "character_exclusion"),
}

# 高亮加在控件本身 (而不是外层容器) 的字段
HIGHLIGHT_SELF = ("content", KEY_STATE_SELECTOR, KEY_KILL_SWITCH)

# 会话状态
STATE_IDLE = "idle"
STATE_TEMPLATE_CREATED = "template_created"
STATE_FORM_HOOKED = "form_hooked"
STATE_AWAITING_ACTION = "awaiting_action"
STATE_CONFIRMING = "confirming"
STATE_APPLYING = "applying"
STATE_DONE = "done"

# 操作类型
OP_APPLY = "apply"
OP_DELETE = "delete"
OP_MOVE_COPY = "move_copy"

# 对话框结果 (与 SillyTavern 的 POPUP_RESULT 一致)
RESULT_AFFIRMATIVE = 1
RESULT_NEGATIVE = 0
RESULT_CANCELLED = None
RESULT_CUSTOM1 = 1001   # 复制
RESULT_CUSTOM2 = 1002   # 移动


def validate_field_table(field_inputs=None, definition=None):
    """
    启动时校验字段映射表：
      - 每个逻辑字段必须是条目定义中的字段或特殊字段
      - 每个逻辑字段至少对应一个控件
      - 同一个控件 name 只能属于一个逻辑字段
    """
    field_inputs = FIELD_INPUTS if field_inputs is None else field_inputs
    definition = NEW_ENTRY_DEFINITION if definition is None else definition

    owners = {}
    for key, inputs in field_inputs.items():
        if key not in definition and key not in SPECIAL_KEYS:
            raise ValueError(f"Unknown entry field in field table: {key}")
        if not inputs:
            raise ValueError(f"Field {key} has no inputs")
        for name in inputs:
            if name in owners and owners[name] != key:
                raise ValueError(f"Input {name} is mapped to both {owners[name]} and {key}")
            owners[name] = key
    return owners


# 输入控件 name -> 逻辑字段
INPUT_TO_FIELD = validate_field_table()
