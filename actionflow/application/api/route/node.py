"""
Node to node endpoints.

GET /collections describes the entity types this node can create so peers
can synthesize actions for them. POST /execute runs an executor on behalf
of a peer.
"""

from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, Field
import structlog

from actionflow.application.api.route.dependencies import get_container
from actionflow.application.container import ActionFlowContainer
from actionflow.domain.errors import ActionFlowError
from actionflow.domain.models.action_state import ExecutionRequest
from actionflow.infrastructure.http.node_client import FORWARDED_HEADER

logger = structlog.get_logger(__name__)

router = APIRouter()


class ExecuteRequest(BaseModel):
    """Request model for /execute"""
    executor: str
    params: Dict[str, Any] = Field(default_factory=dict)
    action_type: Optional[str] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None


class ExecuteResponse(BaseModel):
    """Response model for /execute"""
    success: bool
    message: str = ""
    data: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    node: Optional[str] = None
    credits_used: Optional[float] = None


def require_node_token(
    container: Annotated[ActionFlowContainer, Depends(get_container)],
    authorization: Annotated[Optional[str], Header()] = None
):
    try:
        container.token_validator.verify(authorization)
    except ValueError as e:
        raise HTTPException(status_code=401, detail=str(e))


@router.get("/collections", dependencies=[Depends(require_node_token)])
async def list_collections(container: Annotated[ActionFlowContainer, Depends(get_container)]):
    """Entity types peers may synthesize create actions for"""

    return {
        "node": container.settings.node_slug,
        "collections": [capability.describe() for capability in container.entity_registry.all()]
    }


@router.post("/execute", response_model=ExecuteResponse, dependencies=[Depends(require_node_token)])
async def execute_endpoint(
    request: ExecuteRequest,
    container: Annotated[ActionFlowContainer, Depends(get_container)],
    forwarded_from: Annotated[Optional[str], Header(alias=FORWARDED_HEADER)] = None
):
    """Run an executor for a peer"""

    params = dict(request.params)
    execution = ExecutionRequest(
        executor=request.executor,
        params=params,
        action_id=request.action_type,
        entity_class=params.get("entity_class"),
        forwarded=forwarded_from is not None,
        user_id=request.user_id,
        session_id=request.session_id
    )

    node_slug = container.settings.node_slug
    try:
        result = await container.executor.dispatch(execution)
    except ActionFlowError as e:
        logger.warning("Peer execution failed", executor=request.executor, error=str(e), peer=forwarded_from)
        return ExecuteResponse(success=False, message=str(e), error=str(e), node=node_slug)

    return ExecuteResponse(
        success=result.success,
        message=result.message,
        data=result.data,
        error=result.error,
        node=result.node or node_slug,
        credits_used=result.credits_used
    )
