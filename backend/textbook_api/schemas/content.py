"""
Textbook API — Content Schemas (personalize, chat)
===================================================

What:  Request/response models for POST /personalize and POST /chat.
"""

from typing import List, Optional, Union

from pydantic import Field, StrictInt, field_validator

from textbook_api.schemas.common import CamelModel


class PersonalizeRequest(CamelModel):
    # Frontends send slugs or chapter numbers; echoed back as received
    chapter_id: Union[StrictInt, str]
    content: str = Field(min_length=1, max_length=500_000)

    @field_validator("chapter_id")
    @classmethod
    def chapter_id_present(cls, v: Union[int, str]) -> Union[int, str]:
        if isinstance(v, str):
            if not v.strip():
                raise ValueError("chapterId is required")
            if len(v) > 255:
                raise ValueError("chapterId must be at most 255 characters")
        elif v == 0:
            raise ValueError("chapterId is required")
        return v


class UserMetadata(CamelModel):
    """Profile values the personalization was based on (all null without a profile)."""

    skill_level: Optional[str] = None
    software_background: Optional[str] = None
    hardware_background: Optional[str] = None
    learning_goal: Optional[str] = None


class PersonalizeResponse(CamelModel):
    success: bool = True
    chapter_id: Union[StrictInt, str]
    personalized_content: str
    user_metadata: UserMetadata


class ChatRequest(CamelModel):
    message: str = Field(min_length=1, max_length=10_000)
    selected_text: Optional[str] = Field(default=None, max_length=50_000)
    session_id: Optional[str] = Field(default=None, max_length=255)


class ChatResponse(CamelModel):
    """
    Placeholder chat reply.

    The shape matches what the book frontend expects from a retrieval-backed
    answer (source chunks, citations), both empty until a model is wired in.
    """

    success: bool = True
    response: str
    source_chunks: List[dict] = Field(default_factory=list)
    session_id: str
    citations: List[dict] = Field(default_factory=list)
