"""
sceneparty.schemas
~~~~~~~~~~~~~~~~~~
Pydantic schemas and models for the API.
"""
from sceneparty.schemas.api_response import ApiResponse
from sceneparty.schemas.music import MusicConfig, MusicState, WeightedPrompt
from sceneparty.schemas.rooms import (
    PipelineStatus,
    RoomCharacter,
    RoomGeneration,
    RoomOutfit,
    RoomSnapshot,
)
from sceneparty.schemas.social import FriendsState, Notification

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()
