"""Chain access over plain JSON-RPC (no web3.py).

- AlchemyClient: transfer history, block height and contract metadata for the
  Base network through Alchemy's JSON-RPC extensions.
- verify_fid_ownership: read call against the Farcaster Key Registry on
  Optimism, used to trust webhook senders.
"""

from __future__ import annotations

import json
import os
from urllib import request as urlrequest
from urllib.error import URLError

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_utils import function_signature_to_4byte_selector
from flask import current_app

from errors import ExternalServiceError


TRANSFER_CATEGORIES = ["external", "erc20", "erc721", "erc1155"]
TRANSFER_PAGE_SIZE = 50

KEY_REGISTRY_ADDRESS = "0x00000000Fc1237824fb747aBDE0FF18990E59b7e"
_KEY_DATA_OF_SELECTOR = function_signature_to_4byte_selector("keyDataOf(uint256,bytes)")

DIRECTION_INBOUND = "inbound"
DIRECTION_OUTBOUND = "outbound"


# -------------------------------
# Simple JSON-RPC helper
# -------------------------------
def _rpc_post(url: str, method: str, params=None, timeout=12):
    params = params or []
    payload = json.dumps({"jsonrpc": "2.0", "id": 1, "method": method, "params": params}).encode("utf-8")
    req = urlrequest.Request(url, data=payload, headers={"Content-Type": "application/json"})
    try:
        with urlrequest.urlopen(req, timeout=timeout) as resp:
            data = json.loads(resp.read().decode("utf-8"))
    except (URLError, TimeoutError, ValueError) as e:
        raise ExternalServiceError(f"{method} failed: {e}") from e
    if "error" in data:
        raise ExternalServiceError(f"{method} failed: {data['error']}")
    return data.get("result")


def _hex_to_int(x):
    if x is None:
        return 0
    return int(x, 16)


def _normalize_addr(a: str) -> str:
    return (a or "").lower()


def _alchemy_url() -> str:
    key = os.getenv("ALCHEMY_API_KEY", "").strip()
    template = os.getenv("ALCHEMY_BASE_URL", "https://base-mainnet.g.alchemy.com/v2/{key}")
    return template.format(key=key)


def _optimism_rpc_url() -> str:
    return os.getenv("OPTIMISM_RPC_URL", "https://mainnet.optimism.io").strip()


class AlchemyClient:
    """Chain indexer used by the activity scanner."""

    def __init__(self, rpc_url: str, timeout: int = 12):
        self.rpc_url = rpc_url
        self.timeout = timeout

    @classmethod
    def from_env(cls) -> "AlchemyClient":
        return cls(_alchemy_url())

    def _call(self, method: str, params=None):
        return _rpc_post(self.rpc_url, method, params, timeout=self.timeout)

    def get_current_block_number(self) -> int:
        result = self._call("eth_blockNumber", [])
        if not result:
            raise ExternalServiceError("eth_blockNumber returned no result")
        return _hex_to_int(result)

    def get_asset_transfers(self, address: str, direction: str, from_block: int = 0) -> list[dict]:
        query = {
            "fromBlock": hex(from_block),
            "toBlock": "latest",
            "category": TRANSFER_CATEGORIES,
            "maxCount": hex(TRANSFER_PAGE_SIZE),
            "withMetadata": True,
        }
        if direction == DIRECTION_OUTBOUND:
            query["fromAddress"] = address
        else:
            query["toAddress"] = address
        result = self._call("alchemy_getAssetTransfers", [query]) or {}
        return result.get("transfers") or []

    def get_contract_name(self, contract_address: str) -> str | None:
        result = self._call("alchemy_getContractMetadata", [contract_address]) or {}
        return result.get("name") or None


def verify_fid_ownership(fid: int, app_key: str) -> bool:
    """True iff `app_key` is an active app key (state=1, keyType=1) for `fid`.

    Fails closed: any RPC or decoding failure is treated as invalid.
    """
    try:
        key_bytes = bytes.fromhex(app_key[2:] if app_key.startswith("0x") else app_key)
        call_data = _KEY_DATA_OF_SELECTOR + abi_encode(["uint256", "bytes"], [int(fid), key_bytes])
        result = _rpc_post(
            _optimism_rpc_url(),
            "eth_call",
            [{"to": KEY_REGISTRY_ADDRESS, "data": "0x" + call_data.hex()}, "latest"],
        )
        state, key_type = abi_decode(["uint8", "uint32"], bytes.fromhex((result or "0x")[2:]))
    except Exception:
        current_app.logger.exception("Key Registry verification failed for fid %s", fid)
        return False
    return state == 1 and key_type == 1
