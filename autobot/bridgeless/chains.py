"""Chain height adapters and the bridge deposit submitter (httpx)."""

from __future__ import annotations

from typing import Any, Literal, Protocol

import httpx
import pydantic
from loguru import logger
from pydantic import BaseModel

from autobot.core.config.schema import BridgelessConfig
from autobot.core.errors import DepositAlreadyExists, TransientIOError, ValidationError


class ChainAdapter(Protocol):
    async def get_chain_height(self) -> int: ...
    async def get_tx_height(self, tx_hash: str) -> int: ...


async def request(
    url: str,
    method: str = "GET",
    payload: dict[str, Any] | None = None,
    timeout: float = 30.0,
) -> httpx.Response:
    """Send a request. Network errors and non-2xx → TransientIOError with the body text."""
    try:
        async with httpx.AsyncClient(timeout=httpx.Timeout(timeout)) as client:
            resp = await client.request(method, url, json=payload)
    except httpx.HTTPError as e:
        raise TransientIOError(f"{method} {url} failed: {e}") from e
    if resp.is_error:
        raise TransientIOError(f"Fetch failed: {resp.text}")
    return resp


async def fetch_json(
    url: str,
    method: str = "GET",
    payload: dict[str, Any] | None = None,
    timeout: float = 30.0,
) -> Any:
    resp = await request(url, method, payload, timeout)
    try:
        return resp.json()
    except ValueError as e:
        raise TransientIOError(f"{method} {url} returned invalid JSON") from e


def _parse(model: type[BaseModel], data: Any) -> Any:
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Unexpected {model.__name__} response: {e}") from e


# ── Bitcoin (Blockbook) ──────────────────────────────────────


class _BlockbookInner(BaseModel):
    bestHeight: int


class _BlockbookInfo(BaseModel):
    blockbook: _BlockbookInner


class _BlockbookTx(BaseModel):
    blockHeight: int


class BlockbookChain:
    """UTXO chain served by a Blockbook ``/api/v2`` endpoint."""

    def __init__(self, url: str, timeout: float = 30.0):
        self.url = url.rstrip("/")
        self.timeout = timeout

    async def get_chain_height(self) -> int:
        data = await fetch_json(f"{self.url}/", timeout=self.timeout)
        return _parse(_BlockbookInfo, data).blockbook.bestHeight

    async def get_tx_height(self, tx_hash: str) -> int:
        data = await fetch_json(f"{self.url}/tx/{tx_hash}", timeout=self.timeout)
        # Blockbook reports -1 for mempool transactions
        return max(_parse(_BlockbookTx, data).blockHeight, 0)


# ── Zano (JSON-RPC) ──────────────────────────────────────────


class _ZanoHeight(BaseModel):
    height: int
    status: Literal["OK"]


class _ZanoTxInfo(BaseModel):
    keeper_block: int


class _ZanoTxResult(BaseModel):
    status: Literal["OK"]
    tx_info: _ZanoTxInfo


class _ZanoTxResponse(BaseModel):
    result: _ZanoTxResult


class ZanoChain:
    def __init__(self, url: str, timeout: float = 30.0):
        self.url = url.rstrip("/")
        self.timeout = timeout

    async def get_chain_height(self) -> int:
        data = await fetch_json(f"{self.url}/getheight", timeout=self.timeout)
        return _parse(_ZanoHeight, data).height

    async def get_tx_height(self, tx_hash: str) -> int:
        body = {
            "id": 0,
            "jsonrpc": "2.0",
            "method": "get_tx_details",
            "params": {"tx_hash": tx_hash},
        }
        data = await fetch_json(
            f"{self.url}/json_rpc", method="POST", payload=body, timeout=self.timeout
        )
        return max(_parse(_ZanoTxResponse, data).result.tx_info.keeper_block, 0)


def build_chain_adapters(config: BridgelessConfig) -> dict[str, ChainAdapter]:
    """Chain id → adapter, from the configured chain table."""
    kinds = {"blockbook": BlockbookChain, "zano": ZanoChain}
    return {
        chain_id: kinds[chain.kind](chain.url, timeout=config.timeout_s)
        for chain_id, chain in config.chains.items()
    }


# ── Bridge ───────────────────────────────────────────────────


class _BridgeChainInner(BaseModel):
    confirmations: int


class _BridgeChain(BaseModel):
    chain: _BridgeChainInner


def normalize_tx_hash(tx_hash: str) -> str:
    return tx_hash if tx_hash.startswith("0x") else f"0x{tx_hash}"


class BridgelessClient:
    """Bridge RPC: required confirmations per chain and deposit submission."""

    def __init__(self, rpc_url: str, submit_url: str, timeout: float = 30.0):
        self.rpc_url = rpc_url.rstrip("/")
        self.submit_url = submit_url
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: BridgelessConfig) -> BridgelessClient:
        return cls(config.rpc_url, config.submit_url, timeout=config.timeout_s)

    async def get_required_confirmations(self, chain_id: str) -> int:
        data = await fetch_json(
            f"{self.rpc_url}/cosmos/bridge/chains/{chain_id}", timeout=self.timeout
        )
        return _parse(_BridgeChain, data).chain.confirmations

    async def submit(self, chain_id: str, tx_hash: str, tx_nonce: str) -> None:
        """Submit a confirmed deposit.

        Raises DepositAlreadyExists when the bridge already has it, and
        TransientIOError for any other failure.
        """
        body = {
            "txHash": normalize_tx_hash(tx_hash),
            "txNonce": tx_nonce,
            "chainId": chain_id,
        }
        try:
            await request(self.submit_url, method="POST", payload=body, timeout=self.timeout)
        except TransientIOError as e:
            if "deposit already exists" in str(e):
                logger.debug(f"Deposit {body['txHash']} already known to the bridge")
                raise DepositAlreadyExists(str(e)) from e
            raise
