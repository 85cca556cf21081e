"""Peer registration: which remote identity each chain trusts, per role."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Protocol, Union

from eth_account.signers.local import LocalAccount
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from web3 import Web3

from executor_relay.contracts import load_contract_abi
from executor_relay.core.addresses import UniversalAddress, as_pubkey, peer_account
from executor_relay.core.errors import PeerRoleConflict, TransactionFailed, UnknownPeer
from executor_relay.core.program import register_peer_instruction
from executor_relay.core.solana import SolanaRpc
from executor_relay.core.utils import get_logger

LOGGER = get_logger("executor_relay.peers")

_PEER_RECORD = struct.Struct("<8sH32s")


class PeerRole(str, enum.Enum):
    ROUTING = "routing"
    ATTESTATION = "attestation"


@dataclass(frozen=True)
class PeerKey:
    local_chain: int
    remote_chain: int
    role: PeerRole


class PeerStore(Protocol):
    """On-chain peer mapping of one local chain."""

    local_chain: int
    shared_roles: bool

    def read(self, remote_chain: int, role: PeerRole) -> Optional[UniversalAddress]:
        ...

    def write(self, remote_chain: int, role: PeerRole, address: UniversalAddress) -> str:
        ...


class SolanaPeerStore:
    """One ``Peer`` account per remote chain serves both roles."""

    shared_roles = True

    def __init__(
        self,
        rpc: SolanaRpc,
        program_id: Union[str, Pubkey],
        owner: Keypair,
        local_chain: int,
        *,
        confirm_timeout: float = 60,
    ) -> None:
        self.rpc = rpc
        self.program_id = as_pubkey(program_id)
        self.owner = owner
        self.local_chain = local_chain
        self.confirm_timeout = confirm_timeout

    def read(self, remote_chain: int, role: PeerRole) -> Optional[UniversalAddress]:
        account = self.rpc.get_account_info(peer_account(self.program_id, remote_chain))
        if account is None:
            return None
        if len(account.data) < _PEER_RECORD.size:
            raise ValueError(f"Peer account for chain {remote_chain} is truncated")
        _discriminator, chain, address = _PEER_RECORD.unpack_from(account.data)
        if chain != remote_chain:
            raise ValueError(f"Peer account for chain {remote_chain} records chain {chain}")
        return UniversalAddress(address)

    def write(self, remote_chain: int, role: PeerRole, address: UniversalAddress) -> str:
        instruction = register_peer_instruction(self.program_id, self.owner.pubkey(), remote_chain, address)
        return self.rpc.send_and_confirm([instruction], self.owner, timeout=self.confirm_timeout)


class EvmPeerStore:
    """``peers``/``setPeer`` for routing and ``vaaEmitters``/``setVaaEmitter`` for attestation."""

    shared_roles = False

    _GETTERS = {PeerRole.ROUTING: "peers", PeerRole.ATTESTATION: "vaaEmitters"}
    _SETTERS = {PeerRole.ROUTING: "setPeer", PeerRole.ATTESTATION: "setVaaEmitter"}

    def __init__(
        self,
        web3: Web3,
        contract_address: str,
        account: LocalAccount,
        local_chain: int,
        *,
        receipt_timeout: float = 120,
    ) -> None:
        self.web3 = web3
        self.account = account
        self.local_chain = local_chain
        self.receipt_timeout = receipt_timeout
        self.contract = web3.eth.contract(
            address=Web3.to_checksum_address(contract_address),
            abi=load_contract_abi("hello_wormhole.json"),
        )

    def read(self, remote_chain: int, role: PeerRole) -> Optional[UniversalAddress]:
        value = getattr(self.contract.functions, self._GETTERS[role])(remote_chain).call()
        address = UniversalAddress(bytes(value))
        return None if address.is_zero else address

    def write(self, remote_chain: int, role: PeerRole, address: UniversalAddress) -> str:
        function = getattr(self.contract.functions, self._SETTERS[role])(remote_chain, address.raw)
        tx = function.build_transaction(
            {
                "from": self.account.address,
                "nonce": self.web3.eth.get_transaction_count(self.account.address),
                "chainId": self.web3.eth.chain_id,
            }
        )
        signed = self.account.sign_transaction(tx)
        tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
        tx_hex = tx_hash.hex()
        receipt = self.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        if receipt["status"] != 1:
            raise TransactionFailed(f"{self._SETTERS[role]} reverted", signature=tx_hex)
        return tx_hex


class PeerRegistry:
    """Registers and checks trusted peers across the configured local chains.

    Registration is idempotent: a value already in place is left alone.
    """

    def __init__(self, stores: Mapping[int, PeerStore]) -> None:
        self.stores = dict(stores)
        self._desired: Dict[PeerKey, UniversalAddress] = {}

    def _store(self, local_chain: int) -> PeerStore:
        try:
            return self.stores[local_chain]
        except KeyError as exc:
            raise UnknownPeer(f"No peer store configured for chain {local_chain}") from exc

    @staticmethod
    def _validate(local_chain: int, remote_chain: int, address: UniversalAddress) -> None:
        if not 0 < remote_chain < 2**16:
            raise ValueError(f"remote chain id {remote_chain} is not a valid non-zero u16")
        if remote_chain == local_chain:
            raise ValueError(f"chain {local_chain} cannot register itself as a peer")
        if address.is_zero:
            raise ValueError("peer address cannot be the zero address")

    def _register(
        self,
        local_chain: int,
        remote_chain: int,
        role: PeerRole,
        address: UniversalAddress,
    ) -> Optional[str]:
        self._validate(local_chain, remote_chain, address)
        store = self._store(local_chain)
        key = PeerKey(local_chain, remote_chain, role)

        if store.shared_roles:
            other_role = PeerRole.ATTESTATION if role is PeerRole.ROUTING else PeerRole.ROUTING
            other = self._desired.get(PeerKey(local_chain, remote_chain, other_role))
            if other is not None and other != address:
                raise PeerRoleConflict(
                    f"Chain {local_chain} keeps one peer record for chain {remote_chain}: "
                    f"{other_role.value} is {other.hex()}, {role.value} asked for {address.hex()}"
                )

        current = store.read(remote_chain, role)
        self._desired[key] = address
        if current == address:
            LOGGER.info("Peer %s/%s (%s) already %s", local_chain, remote_chain, role.value, address.hex())
            return None

        LOGGER.info(
            "Registering %s peer on chain %s for chain %s: %s (was %s)",
            role.value,
            local_chain,
            remote_chain,
            address.hex(),
            current.hex() if current else "unset",
        )
        tx_id = store.write(remote_chain, role, address)
        LOGGER.info("Peer registered in %s", tx_id)
        return tx_id

    def register_routing_peer(
        self, local_chain: int, remote_chain: int, routing_identity: UniversalAddress
    ) -> Optional[str]:
        """Set the callable identity the relay service targets; ``None`` when already in place."""
        return self._register(local_chain, remote_chain, PeerRole.ROUTING, routing_identity)

    def register_attestation_peer(
        self, local_chain: int, remote_chain: int, attestation_identity: UniversalAddress
    ) -> Optional[str]:
        """Set the emitter identity inbound attestations must come from."""
        return self._register(local_chain, remote_chain, PeerRole.ATTESTATION, attestation_identity)

    def register_remote(
        self,
        local_chain: int,
        remote_chain: int,
        *,
        routing_identity: UniversalAddress,
        attestation_identity: UniversalAddress,
    ) -> List[str]:
        """Register both roles of ``remote_chain`` on ``local_chain``.

        A store with one shared record per chain gets the attestation
        identity only, since inbound verification reads that record.
        """
        store = self._store(local_chain)
        if store.shared_roles and routing_identity != attestation_identity:
            LOGGER.warning(
                "Chain %s keeps one peer record for chain %s; storing emitter %s, not routing identity %s",
                local_chain,
                remote_chain,
                attestation_identity.hex(),
                routing_identity.hex(),
            )
            tx_ids = [self.register_attestation_peer(local_chain, remote_chain, attestation_identity)]
        else:
            tx_ids = [
                self.register_routing_peer(local_chain, remote_chain, routing_identity),
                self.register_attestation_peer(local_chain, remote_chain, attestation_identity),
            ]
        return [tx_id for tx_id in tx_ids if tx_id]

    def require_peer(
        self, local_chain: int, remote_chain: int, role: PeerRole = PeerRole.ROUTING
    ) -> UniversalAddress:
        address = self._store(local_chain).read(remote_chain, role)
        if address is None:
            raise UnknownPeer(f"Chain {local_chain} has no {role.value} peer for chain {remote_chain}")
        return address

    def verify_inbound(self, local_chain: int, emitter_chain: int, emitter_address: UniversalAddress) -> None:
        """Reject an attested message whose emitter is not the registered attestation peer."""
        expected = self._store(local_chain).read(emitter_chain, PeerRole.ATTESTATION)
        if expected is None:
            raise UnknownPeer(f"Chain {local_chain} has no registered peer for chain {emitter_chain}")
        if expected != emitter_address:
            raise UnknownPeer(
                f"Emitter {emitter_address.hex()} on chain {emitter_chain} is not the registered peer "
                f"{expected.hex()}"
            )


__all__ = [
    "EvmPeerStore",
    "PeerKey",
    "PeerRegistry",
    "PeerRole",
    "PeerStore",
    "SolanaPeerStore",
]
