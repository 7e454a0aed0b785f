"""
Peer Node HTTP Client

Thin httpx client for the federated node API:
- GET /collections: entity schema discovery
- POST /execute: run an executor on the peer
- POST /chat: continue a conversation on the peer
"""

from typing import Dict, Any, List, Optional
import httpx
import structlog

from actionflow.domain.errors import RemoteExecutionError
from actionflow.domain.models.action_state import NodeInfo

logger = structlog.get_logger(__name__)

FORWARDED_HEADER = "X-Forwarded-From-Node"


class NodeClient:
    """HTTP client for peer nodes with common error handling."""

    def __init__(
        self,
        local_slug: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize node client.

        Args:
            local_slug: Slug sent in the forwarded-from header
            timeout: Default request timeout in seconds
            transport: Optional transport, used to stub peers in tests
        """
        self.local_slug = local_slug
        self.timeout = timeout
        self._transport = transport

    def _headers(self, node: NodeInfo) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            FORWARDED_HEADER: self.local_slug,
        }
        if node.api_token:
            headers["Authorization"] = f"Bearer {node.api_token}"
        return headers

    async def _request(
        self,
        node: NodeInfo,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        Make HTTP request to a peer and return parsed JSON.

        Raises:
            RemoteExecutionError: On network failures, HTTP errors or a non-JSON body
        """
        url = f"{node.url.rstrip('/')}{path}"

        try:
            async with httpx.AsyncClient(
                timeout=timeout or self.timeout,
                transport=self._transport
            ) as client:
                response = await client.request(
                    method=method,
                    url=url,
                    json=json,
                    headers=self._headers(node)
                )
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            error_text = e.response.text[:500] if e.response.text else ""
            raise RemoteExecutionError(
                f"Node {node.slug} returned error {status_code}: {error_text}",
                node_slug=node.slug,
                status_code=status_code
            ) from e
        except httpx.TimeoutException as e:
            raise RemoteExecutionError(
                f"Node {node.slug} timed out",
                node_slug=node.slug
            ) from e
        except httpx.RequestError as e:
            raise RemoteExecutionError(
                f"Node {node.slug} request failed: {str(e)}",
                node_slug=node.slug
            ) from e
        except ValueError as e:
            raise RemoteExecutionError(
                f"Node {node.slug} returned invalid JSON",
                node_slug=node.slug
            ) from e

    async def get_collections(self, node: NodeInfo, timeout: Optional[float] = None) -> List[Dict[str, Any]]:
        body = await self._request(node, "GET", "/collections", timeout=timeout)
        collections = body.get("collections", []) if isinstance(body, dict) else []
        return [c for c in collections if isinstance(c, dict)]

    async def execute(self, node: NodeInfo, payload: Dict[str, Any], timeout: Optional[float] = None) -> Dict[str, Any]:
        return await self._request(node, "POST", "/execute", json=payload, timeout=timeout)

    async def chat(self, node: NodeInfo, payload: Dict[str, Any], timeout: Optional[float] = None) -> Dict[str, Any]:
        return await self._request(node, "POST", "/chat", json=payload, timeout=timeout)
