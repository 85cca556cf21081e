"""CLI entrypoint for sending greetings through the Executor relay service."""

from __future__ import annotations

import argparse
import itertools
import json
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import requests
from dotenv import load_dotenv
from solders.keypair import Keypair
from web3 import Web3

from executor_relay.config import ChainConfig, RelayConfig, load_config, load_evm_account, load_solana_keypair
from executor_relay.core.addresses import ChainFamily, UniversalAddress, emitter_account, to_universal
from executor_relay.core.attestations import AttestationPoller
from executor_relay.core.errors import DeliveryTimedOut
from executor_relay.core.peers import EvmPeerStore, PeerRegistry, PeerStore, SolanaPeerStore
from executor_relay.core.pipeline import DeliveryReport, ManualReceiver, RelayPipeline, Route
from executor_relay.core.quotes import QuoteClient, payment_amount
from executor_relay.core.relay import RelayInstructions
from executor_relay.core.sequence import SequenceTracker, SolanaSequenceSource
from executor_relay.core.solana import SolanaRpc
from executor_relay.core.status import RelayStatusPoller
from executor_relay.core.submitter import SolanaMessageSubmitter
from executor_relay.core.utils import ensure_web3_connected, get_logger

LOGGER = get_logger("executor_relay.cli")

load_dotenv()


class RelayClient:
    """Wires configuration, credentials and core components together."""

    def __init__(
        self,
        config: RelayConfig,
        *,
        session_factory: Callable[[], requests.Session] = requests.Session,
        web3_factory: Callable[[str], Web3] = lambda url: Web3(Web3.HTTPProvider(url)),
        keypair_loader: Callable[[], Keypair] = load_solana_keypair,
    ) -> None:
        self.config = config
        self.defaults = config.defaults
        self.session = session_factory()
        self.web3_factory = web3_factory
        self.keypair_loader = keypair_loader
        self._keypair: Optional[Keypair] = None

        self.quote_client = QuoteClient(
            config.api_urls.executor, timeout=self.defaults.api_timeout, session=self.session
        )
        self.attestation_poller = AttestationPoller(
            config.api_urls.wormholescan,
            timeout=self.defaults.api_timeout,
            poll_interval=self.defaults.poll_interval,
            max_poll_interval=self.defaults.max_poll_interval,
            session=self.session,
        )
        self.status_poller = RelayStatusPoller(
            config.api_urls.executor,
            network=config.network,
            chain_names={chain.wormhole_chain_id: chain.executor_chain_name for chain in config.chains.values()},
            timeout=self.defaults.api_timeout,
            poll_interval=self.defaults.poll_interval,
            max_poll_interval=self.defaults.max_poll_interval,
            session=self.session,
        )

    @property
    def keypair(self) -> Keypair:
        if self._keypair is None:
            self._keypair = self.keypair_loader()
            LOGGER.info("Using Solana signer %s", self._keypair.pubkey())
        return self._keypair

    def rpc(self, chain: ChainConfig) -> SolanaRpc:
        return SolanaRpc(chain.ensure_rpc_url(), timeout=self.defaults.api_timeout, session=self.session)

    def web3(self, chain: ChainConfig) -> Web3:
        web3 = self.web3_factory(chain.ensure_rpc_url())
        ensure_web3_connected(web3)
        return web3

    @staticmethod
    def identities(chain: ChainConfig) -> Tuple[UniversalAddress, UniversalAddress]:
        """``(routing, attestation)`` identities other chains register for ``chain``."""
        if chain.family is ChainFamily.SVM:
            program_id = chain.ensure_program_id()
            return to_universal(program_id), to_universal(emitter_account(program_id))
        contract = to_universal(chain.ensure_contract_address(), ChainFamily.EVM)
        return contract, contract

    def instructions(self, gas_limit: Optional[int], msg_value: Optional[int]) -> RelayInstructions:
        return RelayInstructions(
            gas_limit=self.defaults.gas_limit if gas_limit is None else gas_limit,
            msg_value=self.defaults.msg_value if msg_value is None else msg_value,
        )

    def route(self, source: ChainConfig, destination: ChainConfig) -> Route:
        # Payment is transferred on the source chain, so the payee must be a source-chain identity.
        return Route(
            source_chain=source.wormhole_chain_id,
            destination_chain=destination.wormhole_chain_id,
            payee_family=source.family,
            source_decimals=source.native_decimals,
            destination_decimals=destination.native_decimals,
        )

    def pipeline(self, source: ChainConfig, destination: ChainConfig, *, bundle: bool = True) -> RelayPipeline:
        if source.family is not ChainFamily.SVM:
            raise ValueError(f"Sending is supported from SVM chains only; {source.name} is {source.family.value}")
        rpc = self.rpc(source)
        submitter = SolanaMessageSubmitter(
            rpc,
            self.keypair,
            program_id=source.ensure_program_id(),
            core_bridge=source.ensure_core_bridge(),
            executor_program=source.ensure_executor_program(),
            tracker=SequenceTracker(SolanaSequenceSource(rpc, source.ensure_core_bridge())),
            confirm_timeout=self.defaults.confirm_timeout,
        )
        capabilities = self.quote_client.get_capabilities().get(destination.wormhole_chain_id)
        if capabilities is None:
            LOGGER.warning("Relay service advertises no capabilities for %s", destination.name)
        return RelayPipeline(
            route=self.route(source, destination),
            quote_client=self.quote_client,
            submitter=submitter,
            attestation_poller=self.attestation_poller,
            status_poller=self.status_poller,
            defaults=self.defaults,
            bundle=bundle,
            capabilities=capabilities,
        )

    def peer_store(self, chain: ChainConfig) -> PeerStore:
        if chain.family is ChainFamily.SVM:
            return SolanaPeerStore(
                self.rpc(chain),
                chain.ensure_program_id(),
                self.keypair,
                chain.wormhole_chain_id,
                confirm_timeout=self.defaults.confirm_timeout,
            )
        return EvmPeerStore(
            self.web3(chain),
            chain.ensure_contract_address(),
            load_evm_account(),
            chain.wormhole_chain_id,
        )

    def registry(self, chains: List[ChainConfig]) -> PeerRegistry:
        return PeerRegistry({chain.wormhole_chain_id: self.peer_store(chain) for chain in chains})

    # Commands.

    def quote(self, source: ChainConfig, destination: ChainConfig, instructions: RelayInstructions) -> Dict[str, object]:
        quote = self.quote_client.get_quote(source.wormhole_chain_id, destination.wormhole_chain_id, instructions)
        amount = payment_amount(
            quote,
            instructions,
            source_decimals=source.native_decimals,
            destination_decimals=destination.native_decimals,
        )
        return {
            "signedQuote": quote.hex(),
            "quoter": quote.quoter_address,
            "payee": quote.payee_field.hex(),
            "expiry": quote.expiry_time,
            "baseFee": quote.base_fee,
            "estimatedCost": quote.estimated_cost,
            "payment": amount,
            "relayInstructions": instructions.to_hex(),
        }

    def send(
        self,
        source: ChainConfig,
        destination: ChainConfig,
        greeting: str,
        instructions: RelayInstructions,
        *,
        bundle: bool = True,
    ) -> DeliveryReport:
        self.registry([source]).require_peer(source.wormhole_chain_id, destination.wormhole_chain_id)
        return self.pipeline(source, destination, bundle=bundle).send(greeting, instructions)

    def register_peers(self, chains: List[ChainConfig]) -> List[str]:
        registry = self.registry(chains)
        tx_ids: List[str] = []
        for local, remote in itertools.permutations(chains, 2):
            routing, attestation = self.identities(remote)
            tx_ids.extend(
                registry.register_remote(
                    local.wormhole_chain_id,
                    remote.wormhole_chain_id,
                    routing_identity=routing,
                    attestation_identity=attestation,
                )
            )
        return tx_ids

    def receive(self, source: ChainConfig, destination: ChainConfig, sequence: int) -> Optional[str]:
        if destination.family is not ChainFamily.SVM:
            raise ValueError("Manual receive is supported on SVM chains only")
        _routing, emitter = self.identities(source)
        attestation = self.attestation_poller.wait_for_attestation(
            source.wormhole_chain_id, emitter, sequence, self.defaults.attestation_timeout
        )
        if attestation is None:
            raise DeliveryTimedOut(f"No attestation found for {source.name} sequence {sequence}")
        receiver = ManualReceiver(
            self.rpc(destination),
            self.keypair,
            program_id=destination.ensure_program_id(),
            core_bridge=destination.ensure_core_bridge(),
            registry=self.registry([destination]),
            local_chain=destination.wormhole_chain_id,
            confirm_timeout=self.defaults.confirm_timeout,
        )
        return receiver.receive(attestation)


def _report(report: DeliveryReport) -> Dict[str, object]:
    outcome = report.outcome
    return {
        "status": outcome.status.value,
        "sourceTx": report.handle.tx_id,
        "relayTx": report.handle.relay_tx_id,
        "sequence": report.handle.sequence,
        "attested": report.attestation is not None,
        "destinationTx": outcome.destination_tx_id,
        "failureCause": outcome.failure_cause,
        "relayRequests": len(report.requests),
        "sequenceRace": report.sequence_race,
    }


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Send greetings across chains through the Executor relay")
    parser.add_argument("--config", type=Path, help="Path to config JSON (default: config.json)")
    sub = parser.add_subparsers(dest="command", required=True)

    def with_route(command: argparse.ArgumentParser) -> None:
        command.add_argument("--from", dest="source", required=True, help="Source chain name")
        command.add_argument("--to", dest="destination", required=True, help="Destination chain name")

    def with_budget(command: argparse.ArgumentParser) -> None:
        command.add_argument("--gas-limit", type=int, help="Destination compute/gas budget")
        command.add_argument("--msg-value", type=int, help="Extra native value to forward")

    quote = sub.add_parser("quote", help="Fetch and decode a relay quote")
    with_route(quote)
    with_budget(quote)

    send = sub.add_parser("send", help="Send a greeting and follow it to delivery")
    with_route(send)
    with_budget(send)
    send.add_argument("greeting")
    send.add_argument("--separate", action="store_true", help="Submit the relay request in its own transaction")

    status = sub.add_parser("status", help="Poll the relay status of a source transaction")
    status.add_argument("--from", dest="source", required=True)
    status.add_argument("tx_id")
    status.add_argument("--timeout", type=float)
    status.add_argument("--post", action="store_true", help="Use the POST form of the status endpoint")

    attestation = sub.add_parser("attestation", help="Look up the attestation for a sequence")
    attestation.add_argument("--from", dest="source", required=True)
    attestation.add_argument("sequence", type=int)
    attestation.add_argument("--timeout", type=float)

    peers = sub.add_parser("register-peers", help="Register every configured chain as a peer of the others")
    peers.add_argument("chains", nargs="*", help="Chain names (default: all configured)")

    receive = sub.add_parser("receive", help="Deliver an attested greeting without the relay service")
    with_route(receive)
    receive.add_argument("sequence", type=int)

    return parser.parse_args(argv)


def _run(args: argparse.Namespace, client: RelayClient) -> object:
    config = client.config
    defaults = config.defaults

    if args.command == "quote":
        return client.quote(
            config.chain(args.source),
            config.chain(args.destination),
            client.instructions(args.gas_limit, args.msg_value),
        )
    if args.command == "send":
        report = client.send(
            config.chain(args.source),
            config.chain(args.destination),
            args.greeting,
            client.instructions(args.gas_limit, args.msg_value),
            bundle=not args.separate,
        )
        return _report(report)
    if args.command == "status":
        source = config.chain(args.source)
        client.status_poller.use_post = args.post
        outcome = client.status_poller.wait_for_delivery(
            source.wormhole_chain_id, args.tx_id, args.timeout or defaults.delivery_timeout
        )
        return {
            "status": outcome.status.value,
            "destinationTx": outcome.destination_tx_id,
            "failureCause": outcome.failure_cause,
            "polls": outcome.polls,
        }
    if args.command == "attestation":
        source = config.chain(args.source)
        _routing, emitter = client.identities(source)
        found = client.attestation_poller.wait_for_attestation(
            source.wormhole_chain_id, emitter, args.sequence, args.timeout or defaults.attestation_timeout
        )
        if found is None:
            return {"found": False}
        vaa = found.parse()
        return {
            "found": True,
            "emitterChain": vaa.emitter_chain,
            "emitter": vaa.emitter_address.hex(),
            "sequence": vaa.sequence,
            "digest": vaa.digest.hex(),
            "timestamp": found.timestamp,
        }
    if args.command == "register-peers":
        names = args.chains or sorted(config.chains)
        return {"transactions": client.register_peers([config.chain(name) for name in names])}
    if args.command == "receive":
        tx_id = client.receive(config.chain(args.source), config.chain(args.destination), args.sequence)
        return {"received": tx_id is not None, "tx": tx_id}
    raise ValueError(f"Unknown command {args.command}")


def main(argv: Optional[List[str]] = None) -> None:
    args = _parse_args(argv)

    try:
        client = RelayClient(load_config(args.config))
        result = _run(args, client)
    except Exception as exc:
        print(f"\n❌ Error: {exc}")
        sys.exit(1)

    print(json.dumps(result, indent=2, default=str))
    if isinstance(result, dict) and result.get("status") not in (None, "delivered"):
        sys.exit(1)


if __name__ == "__main__":  # pragma: no cover - CLI entry
    main()
