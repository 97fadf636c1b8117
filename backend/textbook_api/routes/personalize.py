"""
Textbook API — Chapter Personalization Route
=============================================

What:  POST /personalize rewrites a chapter for the signed-in reader.
How:   Loads the reader's profile (absent is fine) and applies the
       deterministic rules in personalization_service.
"""

import logging

from fastapi import APIRouter, Depends

from textbook_api.database import Database, get_database
from textbook_api.middleware.auth import AuthContext, require_auth
from textbook_api.schemas.common import ErrorResponse
from textbook_api.schemas.content import PersonalizeRequest, PersonalizeResponse, UserMetadata
from textbook_api.services.personalization_service import personalize_content
from textbook_api.services.profile_service import profile_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Content"])


@router.post(
    "/personalize",
    response_model=PersonalizeResponse,
    responses={
        400: {"description": "chapterId or content missing", "model": ErrorResponse},
        401: {"description": "Not signed in", "model": ErrorResponse},
    },
    summary="Personalize chapter content for the signed-in user",
)
async def personalize(
    payload: PersonalizeRequest,
    auth: AuthContext = Depends(require_auth),
    db: Database = Depends(get_database),
) -> PersonalizeResponse:
    profile = await profile_service.find_profile(db, auth.user_id)
    personalized = personalize_content(payload.content, profile)

    logger.info(
        "Personalized chapter %s for user %s (profile=%s)",
        payload.chapter_id,
        auth.user_id,
        "yes" if profile else "no",
    )

    metadata = UserMetadata()
    if profile is not None:
        metadata = UserMetadata(
            skill_level=profile.skill_level,
            software_background=profile.software_background,
            hardware_background=profile.hardware_background,
            learning_goal=profile.learning_goal,
        )

    return PersonalizeResponse(
        chapter_id=payload.chapter_id,
        personalized_content=personalized,
        user_metadata=metadata,
    )
