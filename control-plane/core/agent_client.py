# control-plane/core/agent_client.py
"""
Outbound HTTP calls to the provisioning agent and to local CLI callbacks
"""

import logging
from typing import Optional, Dict, Any

import httpx

from config import settings

logger = logging.getLogger(__name__)


class AgentClient:
    """
    Thin httpx wrapper

    Calls are fire-and-report: the caller learns whether the peer accepted
    the request, nothing is awaited beyond the configured timeout.
    """

    def __init__(self, transport: Optional[httpx.BaseTransport] = None):
        # tests inject httpx.MockTransport here
        self.transport = transport

    def _client(self, timeout: float) -> httpx.Client:
        return httpx.Client(timeout=timeout, transport=self.transport)

    def signal_provision(self, payload: Dict[str, Any]) -> None:
        """
        POST a provisioning request to the install agent

        Raises:
            httpx.HTTPError: Agent unreachable or answered with an error status
            RuntimeError: No agent URL configured
        """
        if not settings.PROVISIONING_AGENT_URL:
            raise RuntimeError("PROVISIONING_AGENT_URL is not configured")

        url = settings.PROVISIONING_AGENT_URL.rstrip("/") + "/provision"
        with self._client(settings.PROVISIONING_TIMEOUT_SECONDS) as client:
            response = client.post(url, json=payload)
            response.raise_for_status()
        logger.info(f"Provisioning agent accepted {payload.get('kind')} {payload.get('id')}")

    def post_callback(self, url: str, payload: Dict[str, Any]) -> bool:
        """Deliver a payload to a local callback listener; False on any failure"""
        try:
            with self._client(settings.CLI_CALLBACK_TIMEOUT_SECONDS) as client:
                response = client.post(url, json=payload)
                response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.warning(f"CLI callback to {url} failed: {e}")
            return False


# Singleton instance
agent_client = AgentClient()
