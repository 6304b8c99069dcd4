"""
SafeCap - Built-in tool executors.

``get_weather`` and ``get_stock_price`` return fixed mock data. The chain
tools (``get_balance``, ``get_transaction``) query an EVM JSON-RPC endpoint
and are only registered when an RPC URL is configured.
"""

import logging
import re
from decimal import Decimal
from typing import Any, Optional

import httpx

from .tools import ToolDef, ToolRegistry, define_tool, generic_tool_handler

logger = logging.getLogger("safecap.builtin_tools")

WEI_PER_ETH = Decimal(10) ** 18

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


@define_tool(
    description="Get current weather conditions for a location.",
    parameters={
        "type": "object",
        "properties": {
            "location": {"type": "string", "description": "City or place name."},
        },
        "required": ["location"],
    },
)
def get_weather(location: str) -> dict:
    return {"temperature": 72, "condition": "sunny", "location": location}


@define_tool(
    description="Get the latest price for a stock ticker symbol.",
    parameters={
        "type": "object",
        "properties": {
            "symbol": {"type": "string", "description": "Ticker symbol, e.g. AAPL."},
        },
        "required": ["symbol"],
    },
)
def get_stock_price(symbol: str) -> dict:
    return {"symbol": symbol, "price": 150.25, "currency": "USD"}


def _hex_to_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    return int(value, 16)


class ChainRPC:
    """Minimal EVM JSON-RPC client used by the chain tools."""

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.rpc_url = rpc_url
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._next_id = 0

    async def aclose(self) -> None:
        await self._client.aclose()

    async def call(self, method: str, params: list[Any]) -> Any:
        self._next_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._next_id,
            "method": method,
            "params": params,
        }
        response = await self._client.post(self.rpc_url, json=payload)
        response.raise_for_status()
        data = response.json()
        if data.get("error"):
            error = data["error"]
            raise RuntimeError(f"RPC error {error.get('code')}: {error.get('message')}")
        return data.get("result")

    async def get_balance(self, address: str) -> dict:
        if not _ADDRESS_RE.match(address or ""):
            raise ValueError(f"Invalid Ethereum address: {address}")
        wei = _hex_to_int(await self.call("eth_getBalance", [address, "latest"])) or 0
        return {
            "address": address,
            "balance_wei": str(wei),
            "balance_eth": str(Decimal(wei) / WEI_PER_ETH),
        }

    async def get_transaction(self, tx_hash: str) -> Optional[dict]:
        if not _TX_HASH_RE.match(tx_hash or ""):
            raise ValueError(f"Invalid transaction hash: {tx_hash}")
        tx = await self.call("eth_getTransactionByHash", [tx_hash])
        if not tx:
            return None
        return {
            "hash": tx.get("hash"),
            "from": tx.get("from"),
            "to": tx.get("to"),
            "value": str(_hex_to_int(tx.get("value")) or 0),
            "blockNumber": _hex_to_int(tx.get("blockNumber")),
            "nonce": _hex_to_int(tx.get("nonce")),
            "gasPrice": str(_hex_to_int(tx.get("gasPrice")) or 0),
            "input": tx.get("input"),
            "transactionIndex": _hex_to_int(tx.get("transactionIndex")),
        }


def chain_tools(rpc: ChainRPC) -> list[ToolDef]:
    """Tool definitions bound to one RPC client."""

    async def get_balance(address: str) -> dict:
        return await rpc.get_balance(address)

    async def get_transaction(hash: str) -> Optional[dict]:
        return await rpc.get_transaction(hash)

    return [
        ToolDef(
            name="get_balance",
            description="Get the native token balance of an EVM address.",
            parameters={
                "type": "object",
                "properties": {
                    "address": {"type": "string", "description": "0x-prefixed address."},
                },
                "required": ["address"],
            },
            handler=get_balance,
        ),
        ToolDef(
            name="get_transaction",
            description="Look up an EVM transaction by hash.",
            parameters={
                "type": "object",
                "properties": {
                    "hash": {"type": "string", "description": "0x-prefixed transaction hash."},
                },
                "required": ["hash"],
            },
            handler=get_transaction,
        ),
    ]


def build_default_registry(rpc: Optional[ChainRPC] = None) -> ToolRegistry:
    """Registry with the built-in tools and the generic fallback."""
    registry = ToolRegistry([get_weather, get_stock_price], fallback=generic_tool_handler)
    if rpc is not None:
        for t in chain_tools(rpc):
            registry.register(t)
    logger.info("Tool registry ready: %s", ", ".join(registry.names()))
    return registry
