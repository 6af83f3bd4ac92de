# ================= 世界书 (World Info) 常量 =================

# 插入位置 -> (本地化键, 图标)
POSITION_INFO = {
    0: ("positionBeforeCharDef", "📙"),
    1: ("positionAfterCharDef", "📙"),
    2: ("positionBeforeAN", "📝"),
    3: ("positionAfterAN", "📝"),
    4: ("positionAtDepth", "💉"),
    5: ("positionBeforeExamples", "📄"),
    6: ("positionAfterExamples", "📄"),
    7: ("positionOutlet", "➡️"),
}
POSITION_UNKNOWN_EMOJI = "❓"

POSITION_AT_DEPTH = 4

# 分组展示顺序：角色定义前后 -> 示例前后 -> 作者注释前后 -> 深度注入 -> 出口
POSITION_SORT_ORDER = {
    0: 0, 1: 1, 5: 2, 6: 3, 2: 4, 3: 5, 4: 6, 7: 7,
}
# 未知位置排在所有已知位置之后
POSITION_SORT_UNKNOWN = 999

# 选择性逻辑 (仅在 keysecondary 非空时有意义)
SELECTIVE_LOGIC_INFO = {
    0: "selectiveLogicAndAny",
    1: "selectiveLogicNotAll",
    2: "selectiveLogicNotAny",
    3: "selectiveLogicAndAll",
}

# 条目来源
WI_SOURCE_GLOBAL = "global"
WI_SOURCE_CHARACTER_PRIMARY = "characterPrimary"
WI_SOURCE_CHARACTER_ADDITIONAL = "characterAdditional"
WI_SOURCE_CHAT = "chat"

WI_SOURCE_DISPLAY = {
    WI_SOURCE_GLOBAL: "sourceGlobal",
    WI_SOURCE_CHARACTER_PRIMARY: "sourceCharacterPrimary",
    WI_SOURCE_CHARACTER_ADDITIONAL: "sourceCharacterAdditional",
    WI_SOURCE_CHAT: "sourceChat",
}

# 深度注入条目的发言者优先级
ENTRY_SOURCE_ASSISTANT = 3
ENTRY_SOURCE_USER = 2
ENTRY_SOURCE_SYSTEM = 1

# 条目状态：(图标, 本地化键)
STATUS_CONSTANT = ("🔵", "statusConstant")
STATUS_VECTORIZED = ("🔗", "statusVectorized")
STATUS_KEYWORD = ("🟢", "statusKeyword")

# 未知世界书顺序 (与 JS 的 Number.MAX_SAFE_INTEGER 一致，保证可 JSON 序列化)
WORLD_ORDER_UNKNOWN = 2 ** 53 - 1

# 聊天消息 extra 中保存触发记录的键
VIEWER_ATTACHMENT_KEY = "worldInfoViewer"

# chat_metadata 中聊天绑定世界书的键
CHAT_WORLD_METADATA_KEY = "world_info"
