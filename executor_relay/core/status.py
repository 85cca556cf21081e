"""Relay service delivery status polling."""

from __future__ import annotations

import enum
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

import requests

from executor_relay.core.errors import DeliveryTimedOut, RelaySimulationFailed, RelayUnderpaid
from executor_relay.core.polling import Throttled, poll_until
from executor_relay.core.utils import get_logger

LOGGER = get_logger("executor_relay.status")


class DeliveryStatus(str, enum.Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    DELIVERED = "delivered"
    FAILED = "failed"
    UNDERPAID = "underpaid"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self not in (DeliveryStatus.PENDING, DeliveryStatus.SUBMITTED)


# Raw values reported by the relay service.
_SERVICE_STATUSES: Dict[str, DeliveryStatus] = {
    "pending": DeliveryStatus.PENDING,
    "submitted": DeliveryStatus.SUBMITTED,
    "completed": DeliveryStatus.DELIVERED,
    "error": DeliveryStatus.FAILED,
    "aborted": DeliveryStatus.FAILED,
    "underpaid": DeliveryStatus.UNDERPAID,
}


@dataclass(frozen=True)
class StatusSnapshot:
    """One status entry as reported by the relay service."""

    status: DeliveryStatus
    raw_status: str
    destination_tx_id: Optional[str] = None
    failure_cause: Optional[str] = None


@dataclass(frozen=True)
class DeliveryOutcome:
    """Terminal result of a relay attempt, with every transaction id seen so far."""

    status: DeliveryStatus
    source_tx_id: str
    destination_tx_id: Optional[str] = None
    failure_cause: Optional[str] = None
    polls: int = 0
    last_seen: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.status is DeliveryStatus.DELIVERED

    def raise_for_status(self) -> None:
        if self.status is DeliveryStatus.FAILED:
            raise RelaySimulationFailed(self.failure_cause or "unknown failure")
        if self.status is DeliveryStatus.UNDERPAID:
            raise RelayUnderpaid(f"Relay request {self.source_tx_id} was underpaid")
        if self.status is DeliveryStatus.TIMED_OUT:
            raise DeliveryTimedOut(
                f"No terminal status for {self.source_tx_id} after {self.polls} polls "
                f"(last seen: {self.last_seen or 'nothing'})"
            )


def _parse_entry(entry: Mapping[str, Any]) -> StatusSnapshot:
    raw_status = str(entry.get("status", "")).lower()
    status = _SERVICE_STATUSES.get(raw_status)
    if status is None:
        LOGGER.warning("Unrecognised relay status %r; treating as pending", raw_status)
        status = DeliveryStatus.PENDING

    destination = None
    txs = entry.get("txs") or []
    if txs and isinstance(txs[0], Mapping):
        destination = txs[0].get("txHash")
    if not destination:
        destination = entry.get("txHash")

    return StatusSnapshot(
        status=status,
        raw_status=raw_status,
        destination_tx_id=destination,
        failure_cause=entry.get("failureCause"),
    )


class RelayStatusPoller:
    """Polls ``/status/tx`` until the relay service reports a terminal status.

    The query-parameter ``GET`` form is used by default; ``use_post=True``
    selects the ``POST {chainId, txHash}`` form.
    """

    def __init__(
        self,
        api_url: str,
        *,
        network: str = "Testnet",
        chain_names: Optional[Mapping[int, str]] = None,
        use_post: bool = False,
        timeout: float = 10,
        poll_interval: float = 3,
        max_poll_interval: float = 30,
        backoff: float = 1.0,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], object]] = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.network = network
        self.chain_names = dict(chain_names or {})
        self.use_post = use_post
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.max_poll_interval = max_poll_interval
        self.backoff = backoff
        self.session = session or requests.Session()
        self.clock = clock
        self.sleep = sleep

    def _fetch(self, source_chain: int, tx_id: str) -> requests.Response:
        url = f"{self.api_url}/status/tx"
        if self.use_post:
            return self.session.post(url, json={"chainId": source_chain, "txHash": tx_id}, timeout=self.timeout)
        params = {
            "srcChain": self.chain_names.get(source_chain, str(source_chain)),
            "txHash": tx_id,
            "env": self.network,
        }
        return self.session.get(url, params=params, timeout=self.timeout)

    def poll_once(self, source_chain: int, tx_id: str) -> Optional[StatusSnapshot]:
        """One idempotent read; ``None`` when the service has not seen the transaction yet."""
        try:
            response = self._fetch(source_chain, tx_id)
        except requests.RequestException as exc:
            LOGGER.warning("Status lookup failed: %s", exc)
            return None
        if response.status_code == 429:
            raise Throttled()
        if response.status_code == 404:
            return None
        try:
            response.raise_for_status()
            entries = response.json()
        except (requests.RequestException, ValueError) as exc:
            LOGGER.warning("Unusable status response for %s: %s", tx_id, exc)
            return None

        if not isinstance(entries, list) or not entries or not isinstance(entries[0], Mapping):
            return None
        return _parse_entry(entries[0])

    def wait_for_delivery(
        self,
        source_chain: int,
        tx_id: str,
        timeout: float,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> DeliveryOutcome:
        """Poll until a terminal status; returns a ``TIMED_OUT`` outcome instead of raising."""
        seen: Dict[str, Optional[StatusSnapshot]] = {"last": None}

        def _poll() -> Optional[StatusSnapshot]:
            snapshot = self.poll_once(source_chain, tx_id)
            if snapshot is None:
                return None
            if seen["last"] is None or seen["last"].raw_status != snapshot.raw_status:
                LOGGER.info("Relay status for %s: %s", tx_id, snapshot.raw_status)
            seen["last"] = snapshot
            return snapshot if snapshot.status.is_terminal else None

        LOGGER.info("Waiting for delivery of %s from chain %s", tx_id, source_chain)
        result = poll_until(
            _poll,
            timeout=timeout,
            interval=self.poll_interval,
            max_interval=self.max_poll_interval,
            backoff=self.backoff,
            clock=self.clock,
            sleep=self.sleep,
            cancel_event=cancel_event,
            label=f"status {tx_id}",
        )

        last = seen["last"]
        if result.value is None:
            return DeliveryOutcome(
                status=DeliveryStatus.TIMED_OUT,
                source_tx_id=tx_id,
                destination_tx_id=last.destination_tx_id if last else None,
                polls=result.attempts,
                last_seen=last.raw_status if last else None,
            )

        snapshot = result.value
        outcome = DeliveryOutcome(
            status=snapshot.status,
            source_tx_id=tx_id,
            destination_tx_id=snapshot.destination_tx_id,
            failure_cause=snapshot.failure_cause,
            polls=result.attempts,
            last_seen=snapshot.raw_status,
        )
        if outcome.delivered:
            LOGGER.info("Delivered: destination tx %s", outcome.destination_tx_id)
        else:
            LOGGER.error("Relay ended %s: %s", outcome.status.value, outcome.failure_cause or "no cause given")
        return outcome


__all__ = [
    "DeliveryOutcome",
    "DeliveryStatus",
    "RelayStatusPoller",
    "StatusSnapshot",
]
