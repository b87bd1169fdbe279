"""
chains/providers.py - JSON-RPC provider management with failover.

Provides reliable RPC access with:
- Multiple endpoint failover
- Request timeout handling
- Connection pooling
- Latency tracking

Contract reverts are not infrastructure failures: they are raised
immediately as ContractRevertError (no failover) with the raw error
object attached for the revert classifier.
"""

import os
import re
import time
from dataclasses import dataclass
from typing import Any

import httpx
from dotenv import load_dotenv

from core.logging import get_logger
from core.exceptions import ContractRevertError, InfraError, ErrorCode

logger = get_logger(__name__)

# Load environment variables
load_dotenv()

_ENV_PLACEHOLDER = re.compile(r"\$\{([A-Z0-9_]+)\}")

# JSON-RPC error code used by geth-style nodes for execution reverts
EXECUTION_REVERTED_CODE = 3


@dataclass
class RPCStats:
    """Statistics for an RPC endpoint."""
    url: str
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    total_latency_ms: int = 0
    last_error: str | None = None
    last_success_ts: int | None = None

    @property
    def avg_latency_ms(self) -> int:
        if self.successful_requests == 0:
            return 0
        return self.total_latency_ms // self.successful_requests

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests


@dataclass
class RPCResponse:
    """Response from an RPC call."""
    result: Any
    latency_ms: int
    endpoint_used: str


def is_revert_error(error: dict) -> bool:
    """True if a JSON-RPC error object describes an execution revert."""
    if error.get("code") == EXECUTION_REVERTED_CODE:
        return True
    message = str(error.get("message", "")).lower()
    return "revert" in message


class RPCProvider:
    """
    RPC provider with failover support.

    Tries multiple endpoints in order until one succeeds.
    Tracks statistics per endpoint for monitoring.
    """

    def __init__(
        self,
        chain_id: int,
        rpc_urls: list[str],
        timeout_seconds: int = 10,
    ):
        self.chain_id = chain_id
        self.timeout_seconds = timeout_seconds
        self._client: httpx.AsyncClient | None = None
        self._request_id = 0

        self.rpc_urls = self._resolve_urls(rpc_urls)

        self.stats: dict[str, RPCStats] = {
            url: RPCStats(url=url) for url in self.rpc_urls
        }

    def _resolve_urls(self, urls: list[str]) -> list[str]:
        """
        Substitute ${VAR} placeholders from the environment.

        URLs referencing an unset variable are dropped.
        """
        resolved = []
        for url in urls:
            names = _ENV_PLACEHOLDER.findall(url)
            if any(not os.getenv(name) for name in names):
                logger.debug(
                    "Skipping RPC url with unset placeholder",
                    extra={"context": {"chain_id": self.chain_id, "placeholders": names}},
                )
                continue
            resolved.append(_ENV_PLACEHOLDER.sub(lambda m: os.getenv(m.group(1), ""), url))
        return resolved

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds),
                limits=httpx.Limits(max_connections=10),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _next_request_id(self) -> int:
        self._request_id += 1
        return self._request_id

    async def call(
        self,
        method: str,
        params: list | None = None,
        contract_address: str | None = None,
    ) -> RPCResponse:
        """
        Make an RPC call with failover.

        Args:
            method: RPC method name
            params: Method parameters
            contract_address: Target contract, attached to revert errors

        Returns:
            RPCResponse with result and metadata

        Raises:
            ContractRevertError: The node reported an execution revert
            InfraError: If all endpoints fail
        """
        if not self.rpc_urls:
            raise InfraError(
                code=ErrorCode.INFRA_RPC_ERROR,
                message="No RPC endpoints configured",
                details={"chain_id": self.chain_id},
            )

        client = await self._get_client()
        last_error: Exception | None = None

        for url in self.rpc_urls:
            stats = self.stats[url]
            stats.total_requests += 1

            payload = {
                "jsonrpc": "2.0",
                "method": method,
                "params": params or [],
                "id": self._next_request_id(),
            }

            start_ms = int(time.time() * 1000)

            try:
                resp = await client.post(url, json=payload)
                latency_ms = int(time.time() * 1000) - start_ms
                result = resp.json()
            except httpx.TimeoutException as e:
                latency_ms = int(time.time() * 1000) - start_ms
                stats.failed_requests += 1
                stats.last_error = f"Timeout after {latency_ms}ms"
                last_error = e
                logger.debug(
                    "RPC timeout",
                    extra={"context": {"url": url, "method": method, "latency_ms": latency_ms}},
                )
                continue
            except (httpx.HTTPError, ValueError) as e:
                stats.failed_requests += 1
                stats.last_error = str(e)
                last_error = e
                logger.debug(
                    "RPC request failed",
                    extra={"context": {"url": url, "method": method, "error": str(e)}},
                )
                continue

            if "error" in result:
                error = result["error"] if isinstance(result["error"], dict) else {"message": str(result["error"])}
                error_msg = str(error.get("message", error))

                if is_revert_error(error):
                    # The endpoint answered; the contract said no.
                    stats.successful_requests += 1
                    stats.total_latency_ms += latency_ms
                    raise ContractRevertError(
                        message=error_msg,
                        data=error.get("data") if isinstance(error.get("data"), str) else None,
                        contract_address=contract_address,
                        error=error,
                        details={"url": url, "method": method},
                    )

                stats.failed_requests += 1
                stats.last_error = error_msg
                last_error = InfraError(
                    code=ErrorCode.INFRA_RPC_ERROR,
                    message=f"RPC error: {error_msg}",
                    details={"url": url, "method": method},
                )
                logger.debug(
                    "RPC error response",
                    extra={"context": {"url": url, "method": method, "error": error_msg}},
                )
                continue

            stats.successful_requests += 1
            stats.total_latency_ms += latency_ms
            stats.last_success_ts = int(time.time() * 1000)

            return RPCResponse(
                result=result.get("result"),
                latency_ms=latency_ms,
                endpoint_used=url,
            )

        raise InfraError(
            code=ErrorCode.INFRA_RPC_ERROR,
            message=f"All RPC endpoints failed for chain {self.chain_id}",
            details={
                "chain_id": self.chain_id,
                "endpoints_tried": len(self.rpc_urls),
                "last_error": str(last_error),
            },
        )

    async def get_chain_id(self) -> int:
        """Get chain ID from RPC."""
        response = await self.call("eth_chainId")
        return int(response.result, 16)

    async def get_block_number(self) -> tuple[int, int]:
        """
        Get latest block number.

        Returns:
            (block_number, latency_ms)
        """
        response = await self.call("eth_blockNumber")
        return int(response.result, 16), response.latency_ms

    async def eth_call(
        self,
        to: str,
        data: str,
        block: str = "latest",
        sender: str | None = None,
    ) -> RPCResponse:
        """
        Make eth_call.

        Args:
            to: Contract address
            data: Encoded call data
            block: Block number or "latest"
            sender: Optional from address (matters for msg.sender checks)
        """
        tx: dict[str, str] = {"to": to, "data": data}
        if sender:
            tx["from"] = sender
        return await self.call("eth_call", [tx, block], contract_address=to)

    async def send_transaction(self, tx: dict[str, str]) -> str:
        """
        Broadcast a transaction signed by the node/wallet account.

        Returns:
            Transaction hash
        """
        response = await self.call("eth_sendTransaction", [tx], contract_address=tx.get("to"))
        return response.result

    async def get_transaction_receipt(self, tx_hash: str) -> dict | None:
        """Receipt dict, or None while the transaction is pending."""
        response = await self.call("eth_getTransactionReceipt", [tx_hash])
        return response.result

    async def get_logs(self, log_filter: dict[str, Any]) -> list[dict]:
        """eth_getLogs passthrough."""
        response = await self.call("eth_getLogs", [log_filter])
        return response.result or []

    def get_stats_summary(self) -> dict:
        """Get statistics summary for all endpoints."""
        return {
            url: {
                "total_requests": s.total_requests,
                "success_rate": round(s.success_rate, 3),
                "avg_latency_ms": s.avg_latency_ms,
                "last_error": s.last_error,
            }
            for url, s in self.stats.items()
        }

