"""Outbound message sequence tracking.

Both core bridges keep a per-emitter counter holding the next sequence they
will stamp on a message. Publishing stamps the message with the counter and
then increments it, so after a clean publish the counter equals the value
predicted before it (``current + 1``) and the attested message carries
``predicted - 1``.
"""

from __future__ import annotations

import struct
from typing import Optional, Protocol, Union

from solders.pubkey import Pubkey
from web3 import Web3

from executor_relay.contracts import load_contract_abi
from executor_relay.core.addresses import as_pubkey, sequence_account
from executor_relay.core.errors import SequenceRaceDetected
from executor_relay.core.solana import SolanaRpc
from executor_relay.core.utils import get_logger

LOGGER = get_logger("executor_relay.sequence")

U64_MAX = 2**64 - 1


class SequenceSource(Protocol):
    def read(self, emitter: Union[str, Pubkey]) -> int:
        ...


class SolanaSequenceSource:
    """Reads the core bridge ``Sequence`` account of an emitter."""

    def __init__(self, rpc: SolanaRpc, core_bridge: Union[str, Pubkey]) -> None:
        self.rpc = rpc
        self.core_bridge = as_pubkey(core_bridge)

    def read(self, emitter: Union[str, Pubkey]) -> int:
        account = self.rpc.get_account_info(sequence_account(self.core_bridge, emitter))
        if account is None:
            return 0
        if len(account.data) < 8:
            raise ValueError("Sequence account data is shorter than 8 bytes")
        (value,) = struct.unpack_from("<Q", account.data)
        return value


class EvmSequenceSource:
    """Reads ``nextSequence(emitter)`` from an EVM core bridge contract."""

    def __init__(self, web3: Web3, core_bridge: str) -> None:
        self.contract = web3.eth.contract(
            address=Web3.to_checksum_address(core_bridge),
            abi=load_contract_abi("wormhole_core.json"),
        )

    def read(self, emitter: Union[str, Pubkey]) -> int:
        return int(self.contract.functions.nextSequence(Web3.to_checksum_address(str(emitter))).call())


class SequenceTracker:
    """Predict-then-verify access to an emitter's counter; nothing is cached."""

    def __init__(self, source: SequenceSource) -> None:
        self.source = source

    def read_current(self, emitter: Union[str, Pubkey]) -> int:
        """Current counter value; 0 when the emitter has never published."""
        value = self.source.read(emitter)
        LOGGER.debug("Sequence counter for %s is %s", emitter, value)
        return value

    @staticmethod
    def next_for_submission(current: int) -> int:
        """The value a publish made now is expected to leave behind. A prediction only."""
        if not 0 <= current < U64_MAX:
            raise ValueError(f"sequence counter {current} cannot be incremented within u64")
        return current + 1

    def verify(self, emitter: Union[str, Pubkey], predicted: int, *, tx_id: Optional[str] = None) -> int:
        """Re-read after a publish; raises ``SequenceRaceDetected`` if another publish interleaved."""
        observed = self.read_current(emitter)
        if observed != predicted:
            LOGGER.warning(
                "Sequence race on emitter %s: predicted %s, observed %s (tx=%s)",
                emitter,
                predicted,
                observed,
                tx_id,
            )
            raise SequenceRaceDetected(predicted, observed, tx_id=tx_id)
        return observed


__all__ = [
    "EvmSequenceSource",
    "SequenceSource",
    "SequenceTracker",
    "SolanaSequenceSource",
    "U64_MAX",
]
