from typing import Dict, Any, List, Optional
import asyncio
import time

import structlog

from actionflow.domain.errors import NodeNotFoundError, RemoteExecutionError
from actionflow.domain.models.action_state import ExecutionResult, NodeInfo
from actionflow.domain.node.node_registry import NodeRegistry
from actionflow.domain.node.usage_ledger import UsageLedger
from actionflow.infrastructure.http.node_client import NodeClient
from actionflow.infrastructure.observability.logging import action_logger, metrics

logger = structlog.get_logger(__name__)


def unwrap_envelope(body: Any, node_slug: str) -> ExecutionResult:
    """Turn a peer response into an ExecutionResult

    Accepts the forwarding envelope {node, status_code, data: {result}} as
    well as a bare {success, data, error} body.
    """

    if not isinstance(body, dict):
        return ExecutionResult.fail("Malformed response from node", node=node_slug)

    status_code = body.get("status_code", 200)
    payload: Any = body
    if "status_code" in body and "data" in body:
        payload = body["data"]
    if isinstance(payload, dict) and "result" in payload:
        payload = payload["result"]
    if not isinstance(payload, dict):
        payload = {"data": {"value": payload}}

    success = payload.get("success", body.get("success", status_code < 400))
    data = payload.get("data", {})
    if not isinstance(data, dict):
        data = {"value": data}
    error = payload.get("error") or body.get("error")
    credits_used = payload.get("credits_used", body.get("credits_used"))

    if not success:
        return ExecutionResult.fail(
            error or f"Node {node_slug} reported failure",
            data=data,
            node=body.get("node", node_slug),
            credits_used=credits_used
        )

    return ExecutionResult.ok(
        message=payload.get("message", ""),
        data=data,
        node=body.get("node", node_slug),
        credits_used=credits_used
    )


class RemoteExecutionService:
    """Executes actions and chat turns on federated peer nodes"""

    def __init__(
        self,
        registry: NodeRegistry,
        client: NodeClient,
        ledger: Optional[UsageLedger] = None,
        timeout: float = 30.0
    ):
        self.registry = registry
        self.client = client
        self.ledger = ledger or UsageLedger()
        self.timeout = timeout

    async def execute_on(
        self,
        node_slug: str,
        executor_id: str,
        params: Dict[str, Any],
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        action_type: Optional[str] = None
    ) -> ExecutionResult:
        """Run an executor on one node"""

        try:
            node = self._require_node(node_slug)
        except NodeNotFoundError as e:
            return ExecutionResult.fail(str(e), node=node_slug)

        payload = {
            "action_type": action_type or executor_id,
            "executor": executor_id,
            "params": params,
            "user_id": user_id,
            "session_id": session_id,
        }

        start = time.monotonic()
        try:
            body = await self.client.execute(node, payload, timeout=self.timeout)
            result = unwrap_envelope(body, node.slug)
        except RemoteExecutionError as e:
            result = ExecutionResult.fail(
                str(e),
                message=f"Action failed on {node.name}: {e}",
                node=node.slug
            )

        duration_ms = (time.monotonic() - start) * 1000
        action_logger.log_remote_call(node.slug, executor_id, duration_ms, result.success, result.error)
        metrics.record_latency("remote_execute", duration_ms, {"node": node.slug})

        await self._reconcile(result, user_id, node, reference=executor_id)
        return result

    async def execute_on_all(
        self,
        executor_id: str,
        params: Dict[str, Any],
        parallel: bool = True,
        node_ids: Optional[List[str]] = None,
        user_id: Optional[str] = None
    ) -> Dict[str, ExecutionResult]:
        """Fan an executor out to every active node, collecting each result"""

        nodes = [
            node for node in self.registry.active_nodes()
            if node_ids is None or node.slug in node_ids
        ]

        if parallel:
            outcomes = await asyncio.gather(
                *(self.execute_on(node.slug, executor_id, params, user_id) for node in nodes),
                return_exceptions=True
            )
        else:
            outcomes = []
            for node in nodes:
                try:
                    outcomes.append(await self.execute_on(node.slug, executor_id, params, user_id))
                except Exception as e:
                    outcomes.append(e)

        results: Dict[str, ExecutionResult] = {}
        for node, outcome in zip(nodes, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("Fan-out call raised", node=node.slug, error=str(outcome))
                outcome = ExecutionResult.fail(str(outcome), node=node.slug)
            results[node.slug] = outcome

        logger.info(
            "Fan-out complete",
            executor=executor_id,
            nodes_executed=len(results),
            failure_count=sum(1 for r in results.values() if not r.success)
        )
        return results

    async def forward_chat(
        self,
        node_slug: str,
        message: str,
        session_id: str,
        user_id: Optional[str] = None
    ) -> ExecutionResult:
        """Continue a conversation turn on a peer node"""

        try:
            node = self._require_node(node_slug)
        except NodeNotFoundError as e:
            return ExecutionResult.fail(str(e), node=node_slug)

        start = time.monotonic()
        try:
            body = await self.client.chat(
                node,
                {"message": message, "session_id": session_id, "user_id": user_id},
                timeout=self.timeout
            )
        except RemoteExecutionError as e:
            action_logger.log_remote_call(node.slug, "chat", (time.monotonic() - start) * 1000, False, str(e))
            return ExecutionResult.fail(str(e), node=node.slug)

        action_logger.log_remote_call(node.slug, "chat", (time.monotonic() - start) * 1000, True)

        body = body if isinstance(body, dict) else {}
        result = ExecutionResult.ok(
            message=body.get("content") or body.get("response", ""),
            data={
                "response": body.get("content") or body.get("response", ""),
                "metadata": body.get("metadata", {}),
                "success": body.get("success", True),
            },
            node=node.slug,
            credits_used=body.get("credits_used")
        )
        await self._reconcile(result, user_id, node, reference="chat")
        return result

    def _require_node(self, node_slug: str) -> NodeInfo:
        node = self.registry.get_node(node_slug)
        if node is None:
            raise NodeNotFoundError(node_slug)
        return node

    async def _reconcile(self, result: ExecutionResult, user_id: Optional[str], node: NodeInfo, reference: str):
        if result.success and result.credits_used and user_id:
            await self.ledger.reconcile(user_id, float(result.credits_used), node.slug, reference)
