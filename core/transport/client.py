"""
Node-RED Admin API client.

Fetches and deploys the flows document over the v2 admin API. Requests are
made with a blocking ``requests`` session run through ``asyncio.to_thread``
so callers stay on the event loop.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol

import requests
from pydantic import ValidationError

from ..errors import ConflictError, TransportError
from ..models.config import SyncConfig
from ..models.flows import FlowItem, FlowsResponse

logger = logging.getLogger(__name__)

API_VERSION = "v2"


class FlowsTransport(Protocol):
    """What the sync engine needs from the remote side"""

    async def fetch_flows(self) -> FlowsResponse:
        ...

    async def push_flows(self, flows: List[FlowItem], rev: Optional[str]) -> str:
        ...


class NodeRedClient:
    """
    Client for the flows endpoints of a Node-RED instance.

    Features:
    - Bearer token authentication
    - Optional acceptance of self-signed certificates
    - Conflict detection on deploy (HTTP 409 becomes ConflictError)
    """

    def __init__(
        self,
        node_red_url: str,
        bearer_token: Optional[str] = None,
        allow_self_signed_certificates: bool = False,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the client.

        Args:
            node_red_url: Base URL of the Node-RED instance
            bearer_token: Admin API token, None when authentication is disabled
            allow_self_signed_certificates: Skip TLS certificate verification
            timeout: Per-request timeout in seconds
            session: Session to use (a new one if omitted)
        """
        self.node_red_url = node_red_url.rstrip('/')
        self.bearer_token = bearer_token
        self.verify = not allow_self_signed_certificates
        self.timeout = timeout
        self.session = session or requests.Session()

        if not self.verify:
            logger.warning("TLS certificate verification is disabled for Node-RED requests")

    @classmethod
    def from_config(cls, config: SyncConfig) -> "NodeRedClient":
        return cls(
            node_red_url=config.node_red_url,
            bearer_token=config.bearer_token,
            allow_self_signed_certificates=config.allow_self_signed_certificates
        )

    @property
    def flows_url(self) -> str:
        return f"{self.node_red_url}/flows"

    def _headers(self, deploy: bool = False) -> Dict[str, str]:
        headers = {"Node-RED-API-Version": API_VERSION}
        if deploy:
            headers["Node-RED-Deployment-Type"] = "full"
            headers["Content-Type"] = "application/json"
        if self.bearer_token:
            headers["Authorization"] = f"Bearer {self.bearer_token}"
        return headers

    def get_flows(self) -> FlowsResponse:
        """
        Fetch the flows document (blocking).

        Raises:
            TransportError: Network failure, non-200 status or malformed body
        """
        try:
            response = self.session.get(
                self.flows_url,
                headers=self._headers(),
                timeout=self.timeout,
                verify=self.verify
            )
        except requests.RequestException as e:
            raise TransportError(f"Error fetching flows from {self.flows_url}: {e}") from e

        if response.status_code != 200:
            raise TransportError(
                f"Error fetching flows from Node-RED: status {response.status_code}",
                status_code=response.status_code,
                body=response.text
            )

        try:
            return FlowsResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise TransportError(f"Malformed flows response from Node-RED: {e}", status_code=200) from e

    def post_flows(self, flows: List[FlowItem], rev: Optional[str]) -> str:
        """
        Deploy the full flows document (blocking).

        Args:
            flows: Complete flows document
            rev: Revision the flows were derived from

        Returns:
            The new revision

        Raises:
            ConflictError: The remote revision moved past ``rev``
            TransportError: Any other failure
        """
        payload: Dict[str, Any] = {
            "flows": [flow_item.to_payload() for flow_item in flows],
            "rev": rev or ""
        }

        try:
            response = self.session.post(
                self.flows_url,
                headers=self._headers(deploy=True),
                json=payload,
                timeout=self.timeout,
                verify=self.verify
            )
        except requests.RequestException as e:
            raise TransportError(f"Error posting flows to {self.flows_url}: {e}") from e

        if response.status_code == 409:
            raise ConflictError(
                f"Flows revision {rev} is outdated on Node-RED",
                status_code=409,
                body=response.text
            )

        if response.status_code != 200:
            raise TransportError(
                f"Error posting flows to Node-RED: status {response.status_code}",
                status_code=response.status_code,
                body=response.text
            )

        try:
            return str(response.json()["rev"])
        except (ValueError, KeyError, TypeError) as e:
            raise TransportError(f"Malformed deploy response from Node-RED: {e}", status_code=200) from e

    async def fetch_flows(self) -> FlowsResponse:
        """Fetch the flows document"""
        flows_response = await asyncio.to_thread(self.get_flows)
        logger.debug(f"Fetched {len(flows_response.flows)} flow nodes at revision {flows_response.rev}")
        return flows_response

    async def push_flows(self, flows: List[FlowItem], rev: Optional[str]) -> str:
        """Deploy the flows document and return the new revision"""
        new_rev = await asyncio.to_thread(self.post_flows, flows, rev)
        logger.debug(f"Deployed {len(flows)} flow nodes, revision {rev} -> {new_rev}")
        return new_rev

    def check_connection(self) -> bool:
        """Check whether the flows endpoint answers with 200"""
        try:
            response = self.session.get(
                self.flows_url,
                headers=self._headers(),
                timeout=5,
                verify=self.verify
            )
            return response.status_code == 200
        except requests.RequestException as e:
            logger.debug(f"Node-RED connection check failed: {e}")
            return False

    def close(self) -> None:
        self.session.close()
