"""End-to-end delivery: quote, build, submit, then follow attestation and relay status."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Union

from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from executor_relay.config.loader import DefaultsConfig
from executor_relay.core.addresses import ChainFamily, as_pubkey, posted_vaa_account, received_account
from executor_relay.core.attestations import Attestation, AttestationPoller
from executor_relay.core.errors import (
    AttestationNotPosted,
    InvalidPayeeFormat,
    QuoteExpired,
    QuoteMalformed,
    QuoteUnavailable,
    SequenceRaceDetected,
)
from executor_relay.core.message import check_greeting, decode_payload
from executor_relay.core.peers import PeerRegistry
from executor_relay.core.program import receive_greeting_instruction
from executor_relay.core.quotes import (
    ExecutorCapabilities,
    QuoteClient,
    SignedQuote,
    check_relay_instructions,
    payment_amount,
)
from executor_relay.core.relay import RelayInstructions, RelayRequest, build_request
from executor_relay.core.solana import SolanaRpc
from executor_relay.core.status import DeliveryOutcome, DeliveryStatus, RelayStatusPoller
from executor_relay.core.submitter import MessageSubmitter, SubmissionHandle
from executor_relay.core.utils import get_logger

LOGGER = get_logger("executor_relay.pipeline")


@dataclass(frozen=True)
class Route:
    """Source and destination of a delivery, with what the price maths needs."""

    source_chain: int
    destination_chain: int
    payee_family: ChainFamily
    source_decimals: int
    destination_decimals: int


@dataclass(frozen=True)
class DeliveryReport:
    """Everything observed while delivering one message."""

    handle: SubmissionHandle
    outcome: DeliveryOutcome
    attestation: Optional[Attestation] = None
    requests: List[RelayRequest] = field(default_factory=list)
    sequence_race: bool = False

    @property
    def delivered(self) -> bool:
        return self.outcome.delivered


class RelayPipeline:
    """Runs one message through quote -> request -> submit -> attestation -> status."""

    def __init__(
        self,
        *,
        route: Route,
        quote_client: QuoteClient,
        submitter: MessageSubmitter,
        attestation_poller: AttestationPoller,
        status_poller: RelayStatusPoller,
        defaults: DefaultsConfig,
        bundle: bool = True,
        capabilities: Optional[ExecutorCapabilities] = None,
        sleep: Callable[[float], object] = time.sleep,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.route = route
        self.quote_client = quote_client
        self.submitter = submitter
        self.attestation_poller = attestation_poller
        self.status_poller = status_poller
        self.defaults = defaults
        self.bundle = bundle
        self.capabilities = capabilities
        self.sleep = sleep
        self.cancel_event = cancel_event

    def default_instructions(self) -> RelayInstructions:
        return RelayInstructions(gas_limit=self.defaults.gas_limit, msg_value=self.defaults.msg_value)

    def _backoff(self, attempt: int) -> float:
        return min(self.defaults.poll_interval * 2 ** (attempt - 1), self.defaults.max_poll_interval)

    def fetch_quote(self, instructions: RelayInstructions) -> SignedQuote:
        """Quote with bounded retries on service and format errors."""
        attempts = self.defaults.max_quote_attempts
        for attempt in range(1, attempts + 1):
            try:
                return self.quote_client.get_quote(
                    self.route.source_chain, self.route.destination_chain, instructions
                )
            except (QuoteUnavailable, QuoteMalformed) as exc:
                if attempt == attempts:
                    LOGGER.error("Giving up on quote after %s attempts: %s", attempt, exc)
                    raise
                delay = self._backoff(attempt)
                LOGGER.warning("Quote attempt %s/%s failed (%s); retrying in %.1fs", attempt, attempts, exc, delay)
                self.sleep(delay)
        raise AssertionError("unreachable")

    def prepare_request(self, instructions: RelayInstructions) -> RelayRequest:
        """Quote, price and build a relay request.

        A quote whose payee fails validation is discarded and a new one
        fetched; when every attempt yields an invalid payee nothing is built.
        """
        if self.capabilities is not None:
            check_relay_instructions(self.capabilities, instructions)

        attempts = self.defaults.max_quote_attempts
        for attempt in range(1, attempts + 1):
            quote = self.fetch_quote(instructions)
            amount = payment_amount(
                quote,
                instructions,
                source_decimals=self.route.source_decimals,
                destination_decimals=self.route.destination_decimals,
            )
            try:
                return build_request(
                    self.route.destination_chain,
                    amount,
                    quote,
                    instructions,
                    payee_family=self.route.payee_family,
                )
            except InvalidPayeeFormat as exc:
                if attempt == attempts:
                    LOGGER.error("Refusing to pay: %s", exc)
                    raise
                LOGGER.warning("Discarding quote with invalid payee (%s); re-quoting", exc)
        raise AssertionError("unreachable")

    def _publish(self, greeting: str, request: RelayRequest, instructions: RelayInstructions):
        """Publish (bundled with the relay request when enabled); returns the handle, request and race flag."""
        attempts = self.defaults.max_quote_attempts
        for attempt in range(1, attempts + 1):
            try:
                if self.bundle:
                    return self.submitter.submit_with_relay(greeting, request), request, False
                return self.submitter.submit_message(greeting), request, False
            except QuoteExpired as exc:
                if not self.bundle or attempt == attempts:
                    raise
                LOGGER.warning("Quote expired before submission (%s); fetching a fresh one", exc)
                request = self.prepare_request(instructions)
            except SequenceRaceDetected as exc:
                if not exc.committed:
                    if attempt == attempts:
                        LOGGER.error("Publish lost the sequence race %s times; giving up", attempt)
                        raise
                    LOGGER.warning(
                        "Publish rejected: counter moved to %s before our send; re-predicting", exc.observed
                    )
                    continue
                handle = exc.handle if isinstance(exc.handle, SubmissionHandle) else SubmissionHandle(
                    tx_id=exc.tx_id or "",
                    sequence=exc.observed,
                    relay_tx_id=exc.tx_id if self.bundle else None,
                )
                LOGGER.warning(
                    "Sequence race (predicted %s, counter now %s); following sequence %s",
                    exc.predicted,
                    exc.observed,
                    handle.sequence,
                )
                return handle, request, True
        raise AssertionError("unreachable")

    def _submit_relay(self, request: RelayRequest, instructions: RelayInstructions, handle: SubmissionHandle):
        """Pay for relay of ``handle``'s message; refused if a later message has been published since."""
        attempts = self.defaults.max_quote_attempts
        for attempt in range(1, attempts + 1):
            try:
                return self.submitter.submit_relay_request(request, sequence=handle.sequence), request
            except QuoteExpired as exc:
                if attempt == attempts:
                    raise
                LOGGER.warning("Quote expired before relay request (%s); fetching a fresh one", exc)
                request = self.prepare_request(instructions)
        raise AssertionError("unreachable")

    def send(self, greeting: str, instructions: Optional[RelayInstructions] = None) -> DeliveryReport:
        """Deliver ``greeting`` and report the terminal outcome.

        Local validation failures raise before anything is spent. Failures
        seen after payment are reported in the returned outcome.
        """
        check_greeting(greeting)
        instructions = instructions or self.default_instructions()
        request = self.prepare_request(instructions)
        handle, request, raced = self._publish(greeting, request, instructions)
        requests_sent = [request]

        if handle.relay_tx_id is None:
            relay_tx_id, request = self._submit_relay(request, instructions, handle)
            requests_sent[-1] = request
            handle = handle.with_relay(relay_tx_id)

        return self._follow(handle, instructions, requests_sent, sequence_race=raced)

    def resume(self, handle: SubmissionHandle, instructions: Optional[RelayInstructions] = None) -> DeliveryReport:
        """Finish a delivery whose message was published without a relay request."""
        instructions = instructions or self.default_instructions()
        requests_sent: List[RelayRequest] = []
        if handle.relay_tx_id is None:
            LOGGER.info("Resuming message %s at sequence %s with a relay request", handle.tx_id, handle.sequence)
            relay_tx_id, request = self._submit_relay(self.prepare_request(instructions), instructions, handle)
            requests_sent.append(request)
            handle = handle.with_relay(relay_tx_id)
        return self._follow(handle, instructions, requests_sent)

    def _follow(
        self,
        handle: SubmissionHandle,
        instructions: RelayInstructions,
        requests_sent: List[RelayRequest],
        *,
        sequence_race: bool = False,
    ) -> DeliveryReport:
        attestation = self.attestation_poller.wait_for_attestation(
            self.route.source_chain,
            self.submitter.emitter,
            handle.attestation_sequence,
            self.defaults.attestation_timeout,
            cancel_event=self.cancel_event,
        )
        if attestation is None:
            LOGGER.warning(
                "No attestation for sequence %s yet; still checking relay status",
                handle.attestation_sequence,
            )

        outcome = self.status_poller.wait_for_delivery(
            self.route.source_chain,
            handle.status_tx_id,
            self.defaults.delivery_timeout,
            cancel_event=self.cancel_event,
        )

        relay_attempt = 1
        while outcome.status is DeliveryStatus.UNDERPAID and relay_attempt < self.defaults.max_relay_attempts:
            relay_attempt += 1
            LOGGER.warning(
                "Relay request %s underpaid; resubmitting with a fresh quote (attempt %s/%s)",
                handle.status_tx_id,
                relay_attempt,
                self.defaults.max_relay_attempts,
            )
            try:
                relay_tx_id, request = self._submit_relay(self.prepare_request(instructions), instructions, handle)
            except SequenceRaceDetected as exc:
                LOGGER.error("Not resubmitting relay for sequence %s: %s", handle.sequence, exc)
                break
            requests_sent.append(request)
            handle = handle.with_relay(relay_tx_id)
            outcome = self.status_poller.wait_for_delivery(
                self.route.source_chain,
                relay_tx_id,
                self.defaults.delivery_timeout,
                cancel_event=self.cancel_event,
            )

        return DeliveryReport(
            handle=handle,
            outcome=outcome,
            attestation=attestation,
            requests=requests_sent,
            sequence_race=sequence_race,
        )


class ManualReceiver:
    """Delivers an attested greeting without the relay service."""

    def __init__(
        self,
        rpc: SolanaRpc,
        payer: Keypair,
        *,
        program_id: Union[str, Pubkey],
        core_bridge: Union[str, Pubkey],
        registry: PeerRegistry,
        local_chain: int,
        confirm_timeout: float = 60,
    ) -> None:
        self.rpc = rpc
        self.payer = payer
        self.program_id = as_pubkey(program_id)
        self.core_bridge = as_pubkey(core_bridge)
        self.registry = registry
        self.local_chain = local_chain
        self.confirm_timeout = confirm_timeout

    def build_manual_receive(self, attestation: Attestation) -> Optional[Instruction]:
        """The receive instruction for ``attestation``, or ``None`` if it was already delivered."""
        vaa = attestation.parse()
        self.registry.verify_inbound(self.local_chain, vaa.emitter_chain, vaa.emitter_address)

        if self.rpc.account_exists(received_account(self.program_id, vaa.emitter_chain, vaa.sequence)):
            LOGGER.info("Message %s/%s was already received", vaa.emitter_chain, vaa.sequence)
            return None

        digest = vaa.digest
        if not self.rpc.account_exists(posted_vaa_account(self.core_bridge, digest)):
            raise AttestationNotPosted(
                f"Attestation {vaa.emitter_chain}/{vaa.sequence} is not posted to core bridge "
                f"{self.core_bridge} (digest {digest.hex()})"
            )

        try:
            LOGGER.info("Delivering greeting manually: %s", decode_payload(vaa.payload))
        except ValueError:
            LOGGER.info("Delivering %s-byte payload manually", len(vaa.payload))
        return receive_greeting_instruction(
            self.program_id,
            self.core_bridge,
            self.payer.pubkey(),
            body_digest=digest,
            emitter_chain=vaa.emitter_chain,
            sequence=vaa.sequence,
        )

    def receive(self, attestation: Attestation) -> Optional[str]:
        instruction = self.build_manual_receive(attestation)
        if instruction is None:
            return None
        return self.rpc.send_and_confirm([instruction], self.payer, timeout=self.confirm_timeout)


__all__ = ["DeliveryReport", "ManualReceiver", "RelayPipeline", "Route"]
