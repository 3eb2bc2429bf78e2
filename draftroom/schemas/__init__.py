"""
draftroom.schemas
~~~~~~~~~~~~~~~~~
Pydantic schemas and models for the API.
"""
from draftroom.schemas.api_response import ApiResponse
from draftroom.schemas.room import (
    Item,
    Participant,
    PickSlot,
    RoomSession,
    RoomSnapshot,
    RoomState,
)
