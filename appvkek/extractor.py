"""Turn raw wallet transactions into one approval record per token/spender."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Tuple

from appvkek.explorer import Transaction

APPROVE_SELECTOR = "0x095ea7b3"  # keccak("approve(address,uint256)")[:4]

# 2**256 - 1, the conventional "unlimited" approval.
MAX_UINT256 = 2 ** 256 - 1

WORD = 64

logger = logging.getLogger("appvkek.extractor")


@dataclass(frozen=True)
class ApprovalRecord:
    token_contract: str
    spender: str
    allowance: int
    block_number: int
    transaction_index: int
    tx_hash: str
    token_symbol: Optional[str] = None

    @property
    def ordering_key(self) -> Tuple[int, int]:
        return (self.block_number, self.transaction_index)

    def with_symbol(self, symbol: str) -> "ApprovalRecord":
        return replace(self, token_symbol=symbol)

    def with_allowance(self, allowance: int) -> "ApprovalRecord":
        return replace(self, allowance=allowance)


def decode_approve_input(data: str) -> Tuple[str, int]:
    """Decode ``approve(address,uint256)`` calldata into (spender, amount).

    The spender is the low 20 bytes of the first word, the amount is the
    second word. Raises ValueError when the calldata is too short.
    """
    if data.startswith("0x"):
        data = data[2:]
    arguments = data[len(APPROVE_SELECTOR) - 2:]
    if len(arguments) < 2 * WORD:
        raise ValueError(
            f"approve() calldata carries {len(arguments) // 2} bytes of arguments, need 64"
        )
    spender = "0x" + arguments[WORD - 40:WORD].lower()
    amount = int(arguments[WORD:2 * WORD], 16)
    return spender, amount


def is_approval(tx: Transaction, owner: str) -> bool:
    return (
        tx.from_address == owner
        and not tx.is_error
        and bool(tx.to_address)
        and tx.input.startswith(APPROVE_SELECTOR)
    )


def extract_approvals(transactions: Iterable[Transaction], owner: str) -> List[ApprovalRecord]:
    """Return the latest approval per (token, spender) pair.

    Token contracts keep the order in which they were first seen, as do the
    spenders under each token. A later duplicate replaces the earlier record
    in place when its (block, index) ordering key is not older.
    """
    owner = owner.lower()
    by_token: Dict[str, Dict[str, ApprovalRecord]] = {}
    for tx in transactions:
        if not is_approval(tx, owner):
            continue
        try:
            spender, amount = decode_approve_input(tx.input)
        except ValueError as e:
            logger.warning(f"Skipping approval {tx.tx_hash}: {e}")
            continue
        record = ApprovalRecord(
            token_contract=tx.to_address,
            spender=spender,
            allowance=amount,
            block_number=tx.block_number,
            transaction_index=tx.transaction_index,
            tx_hash=tx.tx_hash,
        )
        spenders = by_token.setdefault(record.token_contract, {})
        current = spenders.get(spender)
        if current is None or record.ordering_key >= current.ordering_key:
            spenders[spender] = record
    records = [record for spenders in by_token.values() for record in spenders.values()]
    logger.info(f"Found {len(records)} approvals across {len(by_token)} token contracts")
    return records


def group_by_token(records: Iterable[ApprovalRecord]) -> Dict[str, List[ApprovalRecord]]:
    """Group records by token contract, in first-seen order."""
    groups: Dict[str, List[ApprovalRecord]] = {}
    for record in records:
        groups.setdefault(record.token_contract, []).append(record)
    return groups
