"""
Voice Function Endpoints

The voice agent calls booking operations through fixed-schema functions.
Results always come back as 200 with ``success`` and a spoken ``message``.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, HTTPException, status

from app.core.scheduling.voice import FUNCTIONS, TOOL_SCHEMAS
from app.core.services import get_voice_functions

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/voice", tags=["Voice"])


@router.get(
    "/functions",
    summary="List voice functions",
    description="JSON schemas for every function the voice agent may call.",
)
async def list_functions() -> dict:
    return {"functions": TOOL_SCHEMAS}


@router.post(
    "/functions/{name}",
    summary="Call a voice function",
    responses={
        200: {"description": "Function result (check the success flag)"},
        404: {"description": "Unknown function"},
    },
)
async def call_function(
    name: str,
    arguments: Optional[dict[str, Any]] = Body(default=None),
) -> dict:
    """Run one function call and return its result dict."""
    if name not in FUNCTIONS:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown function: {name}",
        )

    voice = get_voice_functions()
    return await voice.dispatch(name, arguments)
