"""Publishing greetings and relay requests on the source chain."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional, Protocol, Union

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from executor_relay.core.addresses import UniversalAddress, as_pubkey, emitter_account, to_universal
from executor_relay.core.errors import SequenceRaceDetected, TransactionFailed
from executor_relay.core.program import request_relay_instruction, send_greeting_instruction
from executor_relay.core.relay import RelayRequest
from executor_relay.core.sequence import SequenceTracker
from executor_relay.core.solana import SolanaRpc
from executor_relay.core.utils import get_logger

LOGGER = get_logger("executor_relay.submitter")


@dataclass(frozen=True)
class SubmissionHandle:
    """Result of a publish: transaction id plus the sequence read back from chain state.

    ``attested_sequence`` is set when the attestation carries a different
    number than the counter, as with the core bridges that stamp the
    pre-publish counter.
    """

    tx_id: str
    sequence: int
    relay_tx_id: Optional[str] = None
    attested_sequence: Optional[int] = None

    @property
    def attestation_sequence(self) -> int:
        return self.sequence if self.attested_sequence is None else self.attested_sequence

    @property
    def status_tx_id(self) -> str:
        """The transaction the relay service indexes the request under."""
        return self.relay_tx_id or self.tx_id

    def with_relay(self, relay_tx_id: str) -> "SubmissionHandle":
        return replace(self, relay_tx_id=relay_tx_id)


class MessageSubmitter(Protocol):
    emitter: UniversalAddress

    def submit_message(self, payload: str) -> SubmissionHandle:
        ...

    def submit_relay_request(self, request: RelayRequest, *, sequence: Optional[int] = None) -> str:
        ...

    def submit_with_relay(self, payload: str, request: RelayRequest) -> SubmissionHandle:
        ...


class SolanaMessageSubmitter:
    """Drives ``send_greeting`` and ``request_relay`` on the greeting program."""

    def __init__(
        self,
        rpc: SolanaRpc,
        payer: Keypair,
        *,
        program_id: Union[str, Pubkey],
        core_bridge: Union[str, Pubkey],
        executor_program: Union[str, Pubkey],
        tracker: SequenceTracker,
        confirm_timeout: float = 60,
    ) -> None:
        self.rpc = rpc
        self.payer = payer
        self.program_id = as_pubkey(program_id)
        self.core_bridge = as_pubkey(core_bridge)
        self.executor_program = as_pubkey(executor_program)
        self.tracker = tracker
        self.confirm_timeout = confirm_timeout
        self.emitter_account = emitter_account(self.program_id)
        self.emitter = to_universal(self.emitter_account)

    def _publish(self, payload: str, request: Optional[RelayRequest]) -> SubmissionHandle:
        current = self.tracker.read_current(self.emitter_account)
        predicted = self.tracker.next_for_submission(current)
        instructions = [
            send_greeting_instruction(self.program_id, self.core_bridge, self.payer.pubkey(), payload, predicted)
        ]
        if request is not None:
            instructions.append(self._relay_instruction(request))

        LOGGER.info(
            "Publishing greeting (counter=%s, predicted=%s, relay=%s)",
            current,
            predicted,
            request is not None,
        )
        try:
            signature = self.rpc.send_and_confirm(instructions, self.payer, timeout=self.confirm_timeout)
        except TransactionFailed as exc:
            # A stale prediction derives the wrong sent account and the program rejects it.
            # Unconfirmed (error-less) failures may still land, so they are not retried.
            if exc.error is None:
                raise
            moved = self.tracker.read_current(self.emitter_account)
            if moved != current:
                raise SequenceRaceDetected(predicted, moved, tx_id=exc.signature, committed=False) from exc
            raise

        try:
            self.tracker.verify(self.emitter_account, predicted, tx_id=signature)
        except SequenceRaceDetected as exc:
            # The sent account only derives for counter + 1, so a confirmed publish holds the predicted slot.
            exc.handle = self._handle(signature, predicted, bundled=request is not None)
            raise
        LOGGER.info("Published greeting in %s at sequence %s", signature, predicted)
        return self._handle(signature, predicted, bundled=request is not None)

    @staticmethod
    def _handle(signature: str, sequence: int, *, bundled: bool) -> SubmissionHandle:
        return SubmissionHandle(
            tx_id=signature,
            sequence=sequence,
            relay_tx_id=signature if bundled else None,
            attested_sequence=sequence - 1,
        )

    def _relay_instruction(self, request: RelayRequest):
        return request_relay_instruction(
            self.program_id,
            self.core_bridge,
            self.executor_program,
            self.payer.pubkey(),
            request,
        )

    def submit_message(self, payload: str) -> SubmissionHandle:
        return self._publish(payload, None)

    def submit_relay_request(self, request: RelayRequest, *, sequence: Optional[int] = None) -> str:
        """Request relay of the emitter's most recent message.

        With ``sequence`` set, refuses to pay unless that message is still the
        most recent one.
        """
        if sequence is not None:
            current = self.tracker.read_current(self.emitter_account)
            if current != sequence:
                LOGGER.error("Latest message is %s, not %s; not paying for relay", current, sequence)
                raise SequenceRaceDetected(sequence, current, committed=False)
        signature = self.rpc.send_and_confirm(
            [self._relay_instruction(request)], self.payer, timeout=self.confirm_timeout
        )
        LOGGER.info("Relay request submitted in %s (payment=%s)", signature, request.payment_amount)
        return signature

    def submit_with_relay(self, payload: str, request: RelayRequest) -> SubmissionHandle:
        """Publish and request relay in one transaction."""
        return self._publish(payload, request)


__all__ = ["MessageSubmitter", "SolanaMessageSubmitter", "SubmissionHandle"]
