from wi_suite.services.st_client import chara_filename


def get_character_world_books(character, world_names, char_lore=None, avatar=None):
    """
    列出角色绑定的世界书 (主世界书在前，附加世界书按声明顺序)。
    只返回宿主中实际存在的世界书。

    Args:
        character: 角色卡 data 节点
        world_names: 宿主中所有世界书名
        char_lore: settings.json 中的 charLore 列表
        avatar: 角色卡文件名，默认取 character['avatar']

    Returns:
        [{"name": 世界书名, "type": "primary" | "additional"}, ...]
    """
    books = []
    if not character:
        return books

    existing = set(world_names or [])

    primary = (character.get('extensions') or {}).get('world')
    if primary and primary in existing:
        books.append({"name": primary, "type": "primary"})

    file_name = chara_filename(avatar or character.get('avatar'))
    for lore in char_lore or []:
        if not isinstance(lore, dict) or lore.get('name') != file_name:
            continue
        extra_books = lore.get('extraBooks')
        if isinstance(extra_books, list):
            for book_name in extra_books:
                if book_name and book_name in existing:
                    books.append({"name": book_name, "type": "additional"})
        break

    return books
