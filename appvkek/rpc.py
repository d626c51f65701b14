"""
rpc.py
======

Minimal JSON-RPC access to the chain's public node. It is used for three
read-only lookups around the explorer data: whether the wallet is an
externally owned account, the symbol of each token contract, and (with
``--live``) the allowance currently stored by the token.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

import requests

from appvkek.errors import ApiError, NetworkError, body_excerpt
from appvkek.extractor import ApprovalRecord


# ----------------------------------------------------------------------------
# Constants
# ----------------------------------------------------------------------------

ALLOWANCE_SELECTOR = "0xdd62ed3e"  # keccak("allowance(address,address)")[:4]
SYMBOL_SELECTOR = "0x95d89b41"     # keccak("symbol()")[:4]

UNKNOWN_SYMBOL = "UNKNOWN"

DELEGATION_PREFIX = "0xef0100"

logger = logging.getLogger("appvkek.rpc")


# ----------------------------------------------------------------------------
# Client
# ----------------------------------------------------------------------------

class EthereumRPC:
    """A small JSON-RPC client over a ``requests`` session.

    See https://ethereum.org/en/developers/docs/apis/json-rpc/ for the
    methods used here.
    """

    def __init__(self, url: str, session: Optional[requests.Session] = None,
                 timeout: float = 30) -> None:
        self.url = url
        self.session = session or requests.Session()
        self.timeout = timeout
        self._id_counter = 0

    def _rpc(self, method: str, params: list):
        self._id_counter += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._id_counter,
            "method": method,
            "params": params,
        }
        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise NetworkError(f"RPC connection error ({method}): {e}") from e
        if response.status_code != 200:
            raise ApiError(f"RPC HTTP {response.status_code}: {body_excerpt(response.text)}")
        try:
            data = response.json()
        except ValueError as e:
            raise ApiError(f"RPC returned a non-JSON body for {method}") from e
        if not isinstance(data, dict):
            raise ApiError(f"RPC returned an unexpected body for {method}")
        if data.get("error"):
            error = data["error"]
            if isinstance(error, dict):
                raise ApiError(f"RPC error {error.get('code')}: {error.get('message')}")
            raise ApiError(f"RPC error: {error}")
        if "result" not in data:
            raise ApiError(f"RPC response for {method} has no result")
        return data["result"]

    def _hex_result(self, method: str, params: list) -> str:
        result = self._rpc(method, params)
        if not isinstance(result, str):
            raise ApiError(f"RPC returned {result!r} for {method}, expected hex data")
        return result

    def get_code(self, address: str) -> str:
        """Return the deployed bytecode at ``address`` (``0x`` for an EOA)."""
        return self._hex_result("eth_getCode", [address, "latest"])

    def eth_call(self, to: str, data: str) -> str:
        """Perform a call without creating a transaction and return raw hex data."""
        return self._hex_result("eth_call", [{"to": to, "data": data}, "latest"])


# ----------------------------------------------------------------------------
# ABI helpers
# ----------------------------------------------------------------------------

def clean_address(addr: str) -> str:
    """Normalise an address to lower-case without the 0x prefix."""
    if addr.startswith("0x"):
        addr = addr[2:]
    return addr.lower()


def pad_hex(value: str, length: int = 64) -> str:
    return value.rjust(length, "0")


def build_call_data(function_selector: str, *args: str) -> str:
    """Construct call data for a function selector and address arguments.

    Arguments are hex strings without the ``0x`` prefix; each is left padded
    to one 32-byte word.
    """
    encoded = function_selector[2:]
    for arg in args:
        encoded += pad_hex(arg)
    return "0x" + encoded


def parse_uint256(data: str) -> int:
    """Decode the first 32-byte word of an eth_call result."""
    if data.startswith("0x"):
        data = data[2:]
    if len(data) < 64:
        raise ApiError(f"eth_call returned {len(data) // 2} bytes, expected a uint256")
    return int(data[:64], 16)


def decode_string(data: str) -> str:
    """Decode an ABI ``string`` or a ``bytes32`` return value."""
    if data.startswith("0x"):
        data = data[2:]
    if not data:
        return ""
    if len(data) <= 64:
        # bytes32 symbols (MKR and friends) are right padded with zeros
        raw = bytes.fromhex(data)
    else:
        length = int(data[64:128], 16)
        raw = bytes.fromhex(data[128:128 + length * 2])
    return raw.decode("utf-8", errors="ignore").strip("\x00").strip()


# ----------------------------------------------------------------------------
# Lookups
# ----------------------------------------------------------------------------

def is_eoa(rpc: EthereumRPC, address: str) -> bool:
    """True for an address without code or with an EIP-7702 delegation."""
    code = rpc.get_code(address).lower()
    if code in ("", "0x", "0x0"):
        return True
    # 0xef0100 followed by the 20 byte delegate address
    return code.startswith(DELEGATION_PREFIX) and len(code) == len(DELEGATION_PREFIX) + 40


def get_token_symbol(rpc: EthereumRPC, token: str) -> str:
    """Return the token's symbol, or ``UNKNOWN`` when it cannot be read.

    Tokens that do not implement ``symbol()`` (or revert on it) are common
    enough that a failure here only produces a warning.
    """
    try:
        data = rpc.eth_call(token, SYMBOL_SELECTOR)
        symbol = decode_string(data or "")
    except (ApiError, NetworkError, ValueError) as e:
        logger.warning(f"Failed to read symbol for token {token}: {e}")
        return UNKNOWN_SYMBOL
    return symbol or UNKNOWN_SYMBOL


def fetch_allowance(rpc: EthereumRPC, token: str, owner: str, spender: str) -> int:
    """Fetch the current allowance for a given token/owner/spender."""
    call_data = build_call_data(
        ALLOWANCE_SELECTOR, clean_address(owner), clean_address(spender)
    )
    return parse_uint256(rpc.eth_call(token, call_data))


def resolve_symbols(rpc: EthereumRPC, records: Iterable[ApprovalRecord]) -> List[ApprovalRecord]:
    """Return ``records`` with ``token_symbol`` filled, one lookup per token."""
    symbols: Dict[str, str] = {}
    resolved = []
    for record in records:
        if record.token_contract not in symbols:
            symbols[record.token_contract] = get_token_symbol(rpc, record.token_contract)
        resolved.append(record.with_symbol(symbols[record.token_contract]))
    logger.debug(f"Resolved {len(symbols)} token symbols")
    return resolved


def refresh_allowances(
    rpc: EthereumRPC, records: Iterable[ApprovalRecord], owner: str
) -> List[ApprovalRecord]:
    """Replace each record's allowance with the value stored on chain now."""
    refreshed = []
    for record in records:
        value = fetch_allowance(rpc, record.token_contract, owner, record.spender)
        if value != record.allowance:
            logger.debug(
                f"Allowance for {record.token_contract}/{record.spender} changed "
                f"since approval: {record.allowance} -> {value}"
            )
        refreshed.append(record.with_allowance(value))
    return refreshed
