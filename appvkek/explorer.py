"""
explorer.py
===========

Client for the block explorer's account API. It pages through the wallet's
normal transaction list and returns validated ``Transaction`` records; the
shape of every response is checked here so nothing malformed travels
further down the pipeline.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import requests

from appvkek.config import Config
from appvkek.errors import ApiError, NetworkError, RateLimitError, body_excerpt


# ----------------------------------------------------------------------------
# Constants
# ----------------------------------------------------------------------------

PAGE_SIZE = 1000
# Explorers refuse page * offset beyond this window.
RESULT_WINDOW = 10000

MAX_ATTEMPTS = 5
BACKOFF_BASE = 1.0
BACKOFF_CAP = 8.0

NO_TRANSACTIONS = "No transactions found"

REQUIRED_FIELDS = (
    "hash",
    "blockNumber",
    "transactionIndex",
    "from",
    "to",
    "input",
    "isError",
)

logger = logging.getLogger("appvkek.explorer")


@dataclass(frozen=True)
class Transaction:
    """One row of the explorer's ``txlist`` result."""

    tx_hash: str
    block_number: int
    transaction_index: int
    from_address: str
    to_address: str
    input: str
    is_error: bool

    @classmethod
    def from_api(cls, row: object) -> "Transaction":
        if not isinstance(row, dict):
            raise ApiError(f"explorer returned a non-object transaction: {row!r}")
        missing = [name for name in REQUIRED_FIELDS if name not in row]
        if missing:
            raise ApiError(
                f"explorer transaction {row.get('hash', '?')} is missing {', '.join(missing)}"
            )
        try:
            return cls(
                tx_hash=str(row["hash"]),
                block_number=int(row["blockNumber"]),
                transaction_index=int(row["transactionIndex"]),
                from_address=str(row["from"]).lower(),
                to_address=str(row["to"] or "").lower(),
                input=str(row["input"]).lower(),
                is_error=str(row["isError"]) != "0",
            )
        except (TypeError, ValueError) as e:
            raise ApiError(f"explorer transaction {row.get('hash', '?')} is malformed: {e}") from e


def _is_rate_limited(text: str) -> bool:
    lowered = text.lower()
    return "rate limit" in lowered or "too many" in lowered


def _retry_after(response: requests.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value and value.isdigit():
        return float(value)
    return None


class ExplorerClient:
    """Paginated, rate limit aware reader of the explorer ``txlist`` endpoint."""

    def __init__(
        self,
        config: Config,
        session: Optional[requests.Session] = None,
        page_size: int = PAGE_SIZE,
        max_attempts: int = MAX_ATTEMPTS,
        sleep: Callable[[float], None] = time.sleep,
        timeout: float = 30,
    ) -> None:
        self.config = config
        self.session = session or requests.Session()
        self.page_size = page_size
        self.max_attempts = max_attempts
        self.sleep = sleep
        self.timeout = timeout

    def _get(self, params: Dict[str, object]) -> list:
        """Issue one request and return the validated ``result`` list."""
        query = dict(params)
        query["chainid"] = self.config.chain.chain_id
        query["apikey"] = self.config.api_key
        try:
            response = self.session.get(
                self.config.chain.api_base_url, params=query, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise NetworkError(f"explorer connection error: {e}") from e

        if response.status_code == 429:
            raise RateLimitError("explorer HTTP 429", retry_after=_retry_after(response))
        if not 200 <= response.status_code < 300:
            raise ApiError(f"explorer HTTP {response.status_code}: {body_excerpt(response.text)}")
        try:
            data = response.json()
        except ValueError as e:
            raise ApiError("explorer returned a non-JSON body") from e
        if not isinstance(data, dict) or "status" not in data or "result" not in data:
            raise ApiError("explorer response is missing status/result")

        status = str(data["status"])
        message = str(data.get("message", ""))
        result = data["result"]
        if status == "1":
            if not isinstance(result, list):
                raise ApiError("explorer result is not a list")
            return result
        if message.startswith(NO_TRANSACTIONS) and result in ([], None, ""):
            return []
        detail = result if isinstance(result, str) else message
        if _is_rate_limited(detail) or _is_rate_limited(message):
            raise RateLimitError(f"explorer throttled the request: {detail}")
        raise ApiError(f"explorer error: {message or 'NOTOK'}: {detail}")

    def _get_with_retry(self, params: Dict[str, object]) -> list:
        delay = BACKOFF_BASE
        attempt = 1
        while True:
            try:
                return self._get(params)
            except RateLimitError as e:
                if attempt >= self.max_attempts:
                    raise ApiError(
                        f"explorer still rate limiting after {attempt} attempts: {e}"
                    ) from e
                wait = e.retry_after if e.retry_after is not None else delay
                wait = min(wait, BACKOFF_CAP)
                logger.warning(
                    f"Rate limited (attempt {attempt}/{self.max_attempts}); "
                    f"retrying in {wait:.1f}s"
                )
                self.sleep(wait)
                delay = min(delay * 2, BACKOFF_CAP)
                attempt += 1

    def get_transactions(self, address: str) -> List[Transaction]:
        """Return every normal transaction of ``address``, oldest first.

        The explorer only serves the first ``RESULT_WINDOW`` rows of a query.
        When a query fills it, a new query starts at the block of the last row
        received; rows of that block already seen are dropped by hash.
        """
        transactions: List[Transaction] = []
        seen = set()
        start_block = 0
        page = 1
        while True:
            rows = self._get_with_retry({
                "module": "account",
                "action": "txlist",
                "address": address,
                "startblock": start_block,
                "endblock": 99999999,
                "page": page,
                "offset": self.page_size,
                "sort": "asc",
            })
            for row in rows:
                tx = Transaction.from_api(row)
                if tx.tx_hash not in seen:
                    seen.add(tx.tx_hash)
                    transactions.append(tx)
            logger.debug(f"Fetched page {page} from block {start_block} with {len(rows)} transactions")
            if len(rows) < self.page_size:
                break
            if (page + 1) * self.page_size <= RESULT_WINDOW:
                page += 1
                continue
            last_block = transactions[-1].block_number
            if last_block == start_block:
                # a single block holds the whole window, nothing left to narrow
                logger.warning(
                    f"Block {start_block} alone fills the explorer result window; "
                    f"newer approvals may be missing"
                )
                break
            start_block = last_block
            page = 1
        logger.info(f"Fetched {len(transactions)} transactions for {address}")
        return transactions
