from __future__ import annotations

import itertools
from typing import Any, Dict, List, Optional, Union

import httpx

from .errors import ExecutionReverted, LedgerError

BlockTag = Union[int, str]


def _quantity(value: BlockTag) -> str:
    return hex(value) if isinstance(value, int) else value


class RpcClient:
    def __init__(
        self,
        rpc_url: str,
        timeout_s: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.client = httpx.Client(timeout=timeout_s, transport=transport)
        self._ids = itertools.count(1)

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "RpcClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _post(self, method: str, params: List[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        try:
            resp = self.client.post(self.rpc_url, json=payload)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            raise LedgerError(f"RPC transport error on {method}: {e}", method=method) from e
        if "error" in data:
            err = data["error"] or {}
            message = str(err.get("message", err))
            # code 3 carries revert data; some nodes only say so in the message
            if err.get("code") == 3 or "revert" in message.lower():
                raise ExecutionReverted(
                    f"{method} reverted: {message}", method=method, data=err.get("data")
                )
            raise LedgerError(
                f"RPC error on {method}: {message}", method=method, code=err.get("code")
            )
        return data.get("result")

    def block_number(self) -> int:
        return int(self._post("eth_blockNumber", []), 16)

    def get_block(self, block: BlockTag = "latest") -> Optional[Dict[str, Any]]:
        """Returns the block header (without transactions), or None if unknown."""
        return self._post("eth_getBlockByNumber", [_quantity(block), False])

    def eth_call(self, to: str, data: str, block: BlockTag = "latest") -> str:
        return self._post("eth_call", [{"to": to, "data": data}, _quantity(block)])
