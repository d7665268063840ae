"""
Chat API Endpoint.

Handles conversational messages for the booking assistant.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from app.core.intelligence.session.store import get_session_store
from app.core.services import get_conversation_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["Chat"])


class ChatRequest(BaseModel):
    """Chat message request."""

    message: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        description="User's message",
        examples=["I'd like to book a 30 minute call tomorrow at 2pm"],
    )
    session_id: Optional[str] = Field(
        default=None,
        max_length=128,
        description="Existing session ID for conversation continuity",
        examples=["550e8400-e29b-41d4-a716-446655440000"],
    )


class ChatResponse(BaseModel):
    """Chat response."""

    message: str = Field(
        ...,
        description="Assistant's reply",
    )
    session_id: str = Field(
        ...,
        description="Session ID for continuing the conversation",
    )
    state: str = Field(
        ...,
        description="Conversation state after this message",
    )
    intent: Optional[str] = Field(
        default=None,
        description="Intent the session is pinned to (or the detected intent)",
    )
    booking_id: Optional[str] = Field(
        default=None,
        description="Booking the conversation is working on, once known",
    )


class ErrorResponse(BaseModel):
    """Error response."""

    error: str
    detail: Optional[str] = None


@router.post(
    "",
    response_model=ChatResponse,
    status_code=status.HTTP_200_OK,
    summary="Send a chat message",
    description="Send a message to the booking assistant and get a reply.",
    responses={
        200: {"description": "Successful response"},
        422: {"model": ErrorResponse, "description": "Invalid request"},
        500: {"model": ErrorResponse, "description": "Internal server error"},
    },
)
async def chat(request: ChatRequest) -> ChatResponse:
    """
    Process a chat message.

    The session_id should be preserved across requests to maintain
    conversation context. Booking problems (taken slots, limits, bad
    input) come back as normal replies, not HTTP errors.
    """
    try:
        engine = get_conversation_engine()
        response = await engine.process(request.message, request.session_id)

        return ChatResponse(
            message=response.message,
            session_id=response.session_id,
            state=response.state.value,
            intent=response.intent.value if response.intent else None,
            booking_id=response.booking_id,
        )

    except Exception as e:
        logger.exception(f"Error processing chat message: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process message",
        )


@router.get(
    "/session/{session_id}",
    response_model=dict,
    summary="Get session data",
    description="Retrieve the current state of a conversation session.",
    responses={
        200: {"description": "Session data"},
        404: {"model": ErrorResponse, "description": "Session not found"},
    },
)
async def get_session(session_id: str) -> dict:
    """Get session information."""
    store = await get_session_store()
    session = await store.get(session_id)

    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found",
        )

    return session.to_dict()


@router.delete(
    "/session/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Close a session",
    description="Forget a conversation when its channel closes.",
    responses={
        404: {"model": ErrorResponse, "description": "Session not found"},
    },
)
async def close_session(session_id: str) -> None:
    """Clear session state."""
    engine = get_conversation_engine()
    if not await engine.close_session(session_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found",
        )
