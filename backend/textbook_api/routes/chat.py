"""
Textbook API — Chat Route (placeholder)
========================================

What:  POST /chat echoes the question back in the reply shape the book's chat
       widget expects. No model is called.
"""

import logging
import uuid

from fastapi import APIRouter, Depends

from textbook_api.middleware.auth import AuthContext, require_auth
from textbook_api.schemas.common import ErrorResponse
from textbook_api.schemas.content import ChatRequest, ChatResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Content"])


@router.post(
    "/chat",
    response_model=ChatResponse,
    responses={
        400: {"description": "message missing", "model": ErrorResponse},
        401: {"description": "Not signed in", "model": ErrorResponse},
    },
    summary="Ask a question about the book (placeholder)",
)
async def chat(
    payload: ChatRequest,
    auth: AuthContext = Depends(require_auth),
) -> ChatResponse:
    logger.info("Chat message from user %s (%d chars)", auth.user_id, len(payload.message))

    reply = f'You asked: "{payload.message}"'
    if payload.selected_text:
        reply += f'\n\nAbout the selected text: "{payload.selected_text[:200]}"'
    reply += "\n\nThe book assistant is not connected yet; answers will appear here once it is."

    return ChatResponse(
        response=reply,
        session_id=payload.session_id or uuid.uuid4().hex,
    )
