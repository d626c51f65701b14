"""Plain text rendering of approval records, grouped by token contract."""

from __future__ import annotations

from typing import Iterable, List

from appvkek.extractor import ApprovalRecord, group_by_token
from appvkek.rpc import UNKNOWN_SYMBOL

EMPTY_REPORT = "No approvals found."


def format_header(record: ApprovalRecord) -> str:
    return f"[{record.token_symbol or UNKNOWN_SYMBOL}] {record.token_contract}"


def format_spender(record: ApprovalRecord) -> str:
    # integer formatting is exact; unlimited approvals keep all 78 digits
    return f"  * {record.spender} - {record.allowance:d}"


def format_report(records: Iterable[ApprovalRecord]) -> str:
    """Render one block per token contract: a header, then one line per spender."""
    lines: List[str] = []
    for group in group_by_token(records).values():
        lines.append(format_header(group[0]))
        lines.extend(format_spender(record) for record in group)
    if not lines:
        return EMPTY_REPORT
    return "\n".join(lines)


def format_elapsed(seconds: float) -> str:
    return f"(elapsed = {seconds:.2f} secs)"
