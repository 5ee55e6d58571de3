"""
sceneparty.prompts.scene
~~~~~~~~~~~~~~~~~~~~~~~~

场景合成与视频生成使用的 Prompt。

将 Prompt 独立管理，方便在不修改管线代码的前提下调整措辞。
"""


def build_image_prompt(character_count: int, outfit_count: int) -> str:
    """根据角色数量与是否带服装，推导默认的场景合成 Prompt。

    Args:
        character_count: 参与合成的角色图片数量。
        outfit_count: 参与合成的服装图片数量。

    Returns:
        四种固定措辞之一（单角色 / 多角色 × 有服装 / 无服装）。
    """
    has_outfits = outfit_count > 0
    if character_count == 1 and not has_outfits:
        return "Place the character into the scene"
    if character_count == 1:
        return "Place the character into the scene wearing the provided outfit"
    if not has_outfits:
        return "Place all characters into the scene"
    return "Place all characters into the scene wearing the provided outfits"


def resolve_image_prompt(
    explicit: str | None, character_count: int, outfit_count: int,
) -> str:
    """显式 Prompt 优先，否则回落到默认措辞。"""
    return explicit or build_image_prompt(character_count, outfit_count)


def resolve_video_prompt(explicit: str | None, default: str) -> str:
    """显式 Prompt 优先，否则使用配置中的默认视频 Prompt。"""
    return explicit or default
