from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, Field

from actionflow.application.api.route.dependencies import get_container
from actionflow.application.container import ActionFlowContainer

router = APIRouter()


class ChatRequest(BaseModel):
    """Request model for /chat"""
    message: str
    session_id: str
    user_id: Optional[str] = None
    options: Dict[str, Any] = Field(default_factory=dict)


class ChatResponse(BaseModel):
    """Response model for /chat"""
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    success: bool = True


@router.post("/chat", response_model=ChatResponse)
async def chat_endpoint(
    request: ChatRequest,
    container: Annotated[ActionFlowContainer, Depends(get_container)],
    forwarded_from: Annotated[Optional[str], Header(alias="X-Forwarded-From-Node")] = None
):
    """Process one user turn"""

    options = dict(request.options)
    if forwarded_from:
        # A peer already chose this node; never bounce the turn back out
        options["forwarded"] = True
        options.pop("node", None)

    result = await container.orchestrator.process(
        request.message, request.session_id, request.user_id, options
    )
    return ChatResponse(content=result.content, metadata=result.metadata, success=result.success)
