"""
Textbook API — User Profile Routes
===================================

What:  GET /user/profile and PUT /user/profile for the signed-in principal.
Why:   The profile (skill level, backgrounds, learning goal) drives chapter
       personalization.
How:   Both require a session. The owner is always the session principal;
       a `userId` in the body is never trusted.
"""

import logging

from fastapi import APIRouter, Depends, Request

from textbook_api.database import Database, get_database
from textbook_api.middleware.auth import AuthContext, require_auth
from textbook_api.schemas.common import ErrorResponse
from textbook_api.schemas.profile import (
    ProfileEnvelope,
    ProfileUpdateEnvelope,
    ProfileUpdateRequest,
)
from textbook_api.services.profile_service import profile_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/user", tags=["Profile"])


@router.get(
    "/profile",
    response_model=ProfileEnvelope,
    responses={
        401: {"description": "Not signed in", "model": ErrorResponse},
        404: {"description": "Profile not created yet", "model": ErrorResponse},
    },
    summary="Get the signed-in user's profile",
)
async def get_profile(
    auth: AuthContext = Depends(require_auth),
    db: Database = Depends(get_database),
) -> ProfileEnvelope:
    profile = await profile_service.get_profile(db, auth.user_id)
    return ProfileEnvelope(profile=profile)


@router.put(
    "/profile",
    response_model=ProfileUpdateEnvelope,
    responses={
        400: {"description": "No profile field supplied", "model": ErrorResponse},
        401: {"description": "Not signed in", "model": ErrorResponse},
    },
    summary="Create or partially update the signed-in user's profile",
)
async def update_profile(
    payload: ProfileUpdateRequest,
    request: Request,
    auth: AuthContext = Depends(require_auth),
    db: Database = Depends(get_database),
) -> ProfileUpdateEnvelope:
    if payload.user_id and str(payload.user_id) != auth.user_id:
        logger.warning(
            "Attempted userId manipulation: session user %s sent userId %r (ip=%s)",
            auth.user_id,
            payload.user_id,
            request.client.host if request.client else "unknown",
        )

    profile = await profile_service.upsert_profile(db, auth.user_id, payload.supplied_fields())
    return ProfileUpdateEnvelope(profile=profile)
