"""
sceneparty.schemas.rooms
~~~~~~~~~~~~~~~~~~~~~~~~

房间相关的 Pydantic 模型：成员、素材、生成状态、房间快照及请求体。
"""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

GenerationStage = Literal[
    "generating-images",
    "generating-videos",
    "merging",
    "done",
    "error",
]

# 只有终态才允许开始新一轮生成
TERMINAL_STAGES: frozenset[str] = frozenset({"done", "error"})


class Member(BaseModel):
    """房间成员。"""

    id: str = Field(..., description="用户 ID")
    name: str = Field(..., description="显示名称")


class RoomAsset(BaseModel):
    """用户贡献到房间的一张素材图。身份由 ``(id, user_id)`` 共同决定。"""

    id: str = Field(..., description="素材 ID（客户端生成）")
    name: str = Field(..., description="素材名称")
    image_url: str = Field(..., description="素材图片 URL")
    user_id: str = Field(..., description="贡献者 ID")
    user_name: str = Field(..., description="贡献者名称")


class RoomCharacter(RoomAsset):
    """角色素材。"""


class RoomOutfit(RoomAsset):
    """服装素材。"""


class PipelineStatus(BaseModel):
    """单个场景的流水线进度。``*_done`` 一旦为 True 就不会回退。"""

    image_done: bool = Field(default=False, description="场景图片是否已合成")
    video_done: bool = Field(default=False, description="场景视频是否已生成")
    image_url: str | None = Field(default=None, description="合成后的图片 URL")
    video_url: str | None = Field(default=None, description="生成后的视频 URL")


class RoomGeneration(BaseModel):
    """一次生成任务的整体状态。每次阶段切换都会整体替换。"""

    run_id: str = Field(..., description="所属生成任务 ID")
    stage: GenerationStage = Field(..., description="当前阶段")
    pipelines: list[PipelineStatus] = Field(..., description="按场景顺序排列的进度")
    merged_video_url: str | None = Field(default=None, description="拼接后的成片 URL（仅 done）")
    error: str | None = Field(default=None, description="失败原因（仅 error）")

    @property
    def is_terminal(self) -> bool:
        return self.stage in TERMINAL_STAGES


class ChatMessage(BaseModel):
    """房间聊天消息。"""

    id: str = Field(..., description="消息 ID")
    user_id: str = Field(..., description="发送者 ID")
    user_name: str = Field(..., description="发送者名称")
    text: str = Field(..., description="消息文本")
    created_at: float = Field(..., description="发送时间（Unix 秒）")


class RoomSnapshot(BaseModel):
    """房间对外可见的完整状态，推送与查询都返回此结构。"""

    id: str = Field(..., description="房间 ID")
    members: list[Member] = Field(..., description="当前成员")
    characters: list[RoomCharacter] = Field(..., description="角色素材（按加入顺序）")
    outfits: list[RoomOutfit] = Field(..., description="服装素材（按加入顺序）")
    generation: RoomGeneration | None = Field(default=None, description="当前生成任务")
    messages: list[ChatMessage] = Field(default_factory=list, description="最近的聊天消息")


class RoomSummary(BaseModel):
    """大厅列表使用的房间摘要。"""

    id: str = Field(..., description="房间 ID")
    member_count: int = Field(..., description="当前成员数")
    character_count: int = Field(..., description="角色素材数")
    stage: GenerationStage | None = Field(default=None, description="生成阶段（无任务为 null）")


# ── 请求体 ────────────────────────────────────────────────────────────

class CreateRoomData(BaseModel):
    room_id: str = Field(..., description="新建房间 ID")


class ChatRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=500, description="聊天内容")


class InviteRequest(BaseModel):
    friend_id: str = Field(..., min_length=1, description="被邀请的好友 ID")


class GenerateRequest(BaseModel):
    """开始生成的请求体，所有字段可选。"""

    image_prompt: str | None = Field(default=None, description="自定义合成 Prompt")
    video_prompt: str | None = Field(default=None, description="自定义视频 Prompt")
    genre_id: str | None = Field(default=None, description="场景风格，默认取配置")
    scenes: list[str] | None = Field(
        default=None, min_length=1, description="直接指定背景场景图 URL（优先于 genre_id）",
    )
