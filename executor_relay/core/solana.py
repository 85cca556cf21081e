"""Minimal Solana JSON-RPC client used to read accounts and send transactions."""

from __future__ import annotations

import base64
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from executor_relay.core.errors import QuoteExpired, TransactionFailed
from executor_relay.core.utils import get_logger

LOGGER = get_logger("executor_relay.solana")

_EXPIRY_MARKERS = ("quoteexpired", "quote expired", "expired quote")
_FINAL_STATUSES = ("confirmed", "finalized")


@dataclass(frozen=True)
class AccountInfo:
    """The subset of ``getAccountInfo`` the relay client reads."""

    data: bytes
    owner: Pubkey
    lamports: int


class SolanaRpc:
    """JSON-RPC client over a ``requests`` session."""

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout: float = 10,
        commitment: str = "confirmed",
        session: Optional[requests.Session] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.commitment = commitment
        self.session = session or requests.Session()
        self._request_id = 0

    def _call(self, method: str, params: List[Any]) -> Any:
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        response = self.session.post(self.rpc_url, json=payload, timeout=self.timeout)
        response.raise_for_status()
        body = response.json()
        if body.get("error"):
            raise _rpc_error(method, body["error"])
        return body.get("result")

    def get_account_info(self, address: Pubkey) -> Optional[AccountInfo]:
        """Return the account, or ``None`` when it does not exist yet."""
        result = self._call(
            "getAccountInfo",
            [str(address), {"encoding": "base64", "commitment": self.commitment}],
        )
        value = (result or {}).get("value")
        if value is None:
            return None
        encoded = value["data"][0] if isinstance(value["data"], list) else value["data"]
        return AccountInfo(
            data=base64.b64decode(encoded),
            owner=Pubkey.from_string(value["owner"]),
            lamports=int(value.get("lamports", 0)),
        )

    def account_exists(self, address: Pubkey) -> bool:
        return self.get_account_info(address) is not None

    def get_latest_blockhash(self) -> Hash:
        result = self._call("getLatestBlockhash", [{"commitment": self.commitment}])
        return Hash.from_string(result["value"]["blockhash"])

    def send_instructions(
        self,
        instructions: Sequence[Instruction],
        payer: Keypair,
        *,
        signers: Sequence[Keypair] = (),
    ) -> str:
        """Sign ``instructions`` into one transaction, send it and return the signature."""
        blockhash = self.get_latest_blockhash()
        message = Message.new_with_blockhash(list(instructions), payer.pubkey(), blockhash)
        transaction = Transaction([payer, *signers], message, blockhash)
        encoded = base64.b64encode(bytes(transaction)).decode("ascii")
        signature = self._call(
            "sendTransaction",
            [encoded, {"encoding": "base64", "preflightCommitment": self.commitment}],
        )
        LOGGER.info("Sent transaction %s (%s instructions)", signature, len(instructions))
        return signature

    def confirm(
        self,
        signature: str,
        *,
        timeout: float = 60,
        interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Block until ``signature`` reaches the configured commitment or fails."""
        deadline = clock() + timeout
        while True:
            result = self._call(
                "getSignatureStatuses",
                [[signature], {"searchTransactionHistory": True}],
            )
            status = ((result or {}).get("value") or [None])[0]
            if status:
                if status.get("err"):
                    raise TransactionFailed(
                        f"Transaction {signature} failed: {status['err']}",
                        signature=signature,
                        error=status["err"],
                    )
                if status.get("confirmationStatus") in _FINAL_STATUSES:
                    LOGGER.info("Transaction %s %s", signature, status["confirmationStatus"])
                    return
            if clock() >= deadline:
                raise TransactionFailed(
                    f"Transaction {signature} not confirmed within {timeout}s",
                    signature=signature,
                )
            sleep(interval)

    def send_and_confirm(
        self,
        instructions: Sequence[Instruction],
        payer: Keypair,
        *,
        timeout: float = 60,
    ) -> str:
        signature = self.send_instructions(instructions, payer)
        self.confirm(signature, timeout=timeout)
        return signature


def _rpc_error(method: str, error: Dict[str, Any]) -> Exception:
    message = str(error.get("message", error))
    logs = (error.get("data") or {}).get("logs") or []
    haystack = " ".join([message, *logs]).lower()
    if any(marker in haystack for marker in _EXPIRY_MARKERS):
        return QuoteExpired(f"{method} rejected: {message}")
    return TransactionFailed(f"{method} failed: {message}", error=error)


__all__ = ["AccountInfo", "SolanaRpc"]
