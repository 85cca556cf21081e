"""Tests for peer registration across shared and split peer stores."""

import struct
from unittest.mock import MagicMock

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from executor_relay.core.addresses import UniversalAddress, peer_account, to_universal
from executor_relay.core.errors import PeerRoleConflict, TransactionFailed, UnknownPeer
from executor_relay.core.peers import EvmPeerStore, PeerRegistry, PeerRole, SolanaPeerStore
from executor_relay.core.program import instruction_discriminator
from executor_relay.core.solana import AccountInfo

SOLANA, FOGO, SEPOLIA = 1, 51, 10002
PROGRAM_ID = UniversalAddress(b"\x01" * 32)
EMITTER_ID = UniversalAddress(b"\x02" * 32)
CONTRACT_ID = to_universal("0xC83dcae38111019e8efbA0B78CE6BA055e7A3f2c")


class FakeStore:
    """In-memory peer store that counts writes."""

    def __init__(self, local_chain, shared_roles):
        self.local_chain = local_chain
        self.shared_roles = shared_roles
        self.records = {}
        self.writes = []

    def _key(self, remote_chain, role):
        return remote_chain if self.shared_roles else (remote_chain, role)

    def read(self, remote_chain, role):
        return self.records.get(self._key(remote_chain, role))

    def write(self, remote_chain, role, address):
        self.records[self._key(remote_chain, role)] = address
        self.writes.append((remote_chain, role, address))
        return f"tx-{len(self.writes)}"


@pytest.fixture
def stores():
    return {SOLANA: FakeStore(SOLANA, shared_roles=True), SEPOLIA: FakeStore(SEPOLIA, shared_roles=False)}


def test_registration_is_idempotent(stores):
    registry = PeerRegistry(stores)

    assert registry.register_attestation_peer(SOLANA, FOGO, EMITTER_ID) == "tx-1"
    assert registry.register_attestation_peer(SOLANA, FOGO, EMITTER_ID) is None
    assert len(stores[SOLANA].writes) == 1


def test_shared_record_refuses_conflicting_roles(stores):
    registry = PeerRegistry(stores)
    registry.register_routing_peer(SOLANA, FOGO, PROGRAM_ID)

    with pytest.raises(PeerRoleConflict):
        registry.register_attestation_peer(SOLANA, FOGO, EMITTER_ID)
    assert stores[SOLANA].read(FOGO, PeerRole.ATTESTATION) == PROGRAM_ID


def test_split_store_holds_both_roles(stores):
    registry = PeerRegistry(stores)

    registry.register_routing_peer(SEPOLIA, SOLANA, PROGRAM_ID)
    registry.register_attestation_peer(SEPOLIA, SOLANA, EMITTER_ID)

    assert stores[SEPOLIA].read(SOLANA, PeerRole.ROUTING) == PROGRAM_ID
    assert stores[SEPOLIA].read(SOLANA, PeerRole.ATTESTATION) == EMITTER_ID


def test_register_remote_on_shared_store_keeps_emitter(stores):
    registry = PeerRegistry(stores)

    tx_ids = registry.register_remote(SOLANA, FOGO, routing_identity=PROGRAM_ID, attestation_identity=EMITTER_ID)

    assert tx_ids == ["tx-1"]
    assert stores[SOLANA].writes == [(FOGO, PeerRole.ATTESTATION, EMITTER_ID)]


def test_register_remote_on_split_store_writes_both(stores):
    registry = PeerRegistry(stores)

    tx_ids = registry.register_remote(SEPOLIA, SOLANA, routing_identity=PROGRAM_ID, attestation_identity=EMITTER_ID)
    again = registry.register_remote(SEPOLIA, SOLANA, routing_identity=PROGRAM_ID, attestation_identity=EMITTER_ID)

    assert tx_ids == ["tx-1", "tx-2"]
    assert again == []


@pytest.mark.parametrize(
    "local, remote, address",
    [
        (SOLANA, 0, EMITTER_ID),
        (SOLANA, 2**16, EMITTER_ID),
        (SOLANA, SOLANA, EMITTER_ID),
        (SOLANA, FOGO, UniversalAddress(bytes(32))),
    ],
)
def test_invalid_registrations_are_rejected(stores, local, remote, address):
    with pytest.raises(ValueError):
        PeerRegistry(stores).register_attestation_peer(local, remote, address)
    assert stores[SOLANA].writes == []


def test_unconfigured_local_chain_is_unknown(stores):
    with pytest.raises(UnknownPeer):
        PeerRegistry(stores).register_routing_peer(FOGO, SOLANA, PROGRAM_ID)


def test_require_peer_and_verify_inbound(stores):
    registry = PeerRegistry(stores)
    with pytest.raises(UnknownPeer):
        registry.require_peer(SOLANA, FOGO)

    registry.register_attestation_peer(SOLANA, FOGO, EMITTER_ID)

    assert registry.require_peer(SOLANA, FOGO) == EMITTER_ID
    registry.verify_inbound(SOLANA, FOGO, EMITTER_ID)
    with pytest.raises(UnknownPeer):
        registry.verify_inbound(SOLANA, FOGO, PROGRAM_ID)
    with pytest.raises(UnknownPeer):
        registry.verify_inbound(SOLANA, SEPOLIA, EMITTER_ID)


def test_solana_store_reads_peer_record():
    program = Pubkey.new_unique()
    rpc = MagicMock()
    rpc.get_account_info.return_value = AccountInfo(
        data=struct.pack("<8sH32s", b"\x00" * 8, FOGO, EMITTER_ID.raw), owner=program, lamports=1
    )
    store = SolanaPeerStore(rpc, program, Keypair(), SOLANA)

    assert store.read(FOGO, PeerRole.ROUTING) == EMITTER_ID
    rpc.get_account_info.assert_called_once_with(peer_account(program, FOGO))
    with pytest.raises(ValueError):
        store.read(SEPOLIA, PeerRole.ROUTING)


def test_solana_store_writes_register_peer_instruction():
    program = Pubkey.new_unique()
    owner = Keypair()
    rpc = MagicMock()
    rpc.send_and_confirm.return_value = "sig-peer"
    store = SolanaPeerStore(rpc, program, owner, SOLANA, confirm_timeout=5)

    assert store.write(FOGO, PeerRole.ATTESTATION, EMITTER_ID) == "sig-peer"
    (instructions, signer), kwargs = rpc.send_and_confirm.call_args
    assert signer is owner
    assert kwargs == {"timeout": 5}
    assert instructions[0].data == (
        instruction_discriminator("register_peer") + struct.pack("<H", FOGO) + EMITTER_ID.raw
    )


def _evm_store(web3):
    account = MagicMock()
    account.address = "0x00000000000000000000000000000000000000aa"
    return EvmPeerStore(web3, "0xC83dcae38111019e8efbA0B78CE6BA055e7A3f2c", account, SEPOLIA), account


def test_evm_store_reads_each_role_from_its_own_mapping():
    web3 = MagicMock()
    functions = web3.eth.contract.return_value.functions
    functions.peers.return_value.call.return_value = PROGRAM_ID.raw
    functions.vaaEmitters.return_value.call.return_value = bytes(32)
    store, _account = _evm_store(web3)

    assert store.read(SOLANA, PeerRole.ROUTING) == PROGRAM_ID
    assert store.read(SOLANA, PeerRole.ATTESTATION) is None
    functions.peers.assert_called_once_with(SOLANA)
    functions.vaaEmitters.assert_called_once_with(SOLANA)


def test_evm_store_write_signs_and_checks_receipt():
    web3 = MagicMock()
    web3.eth.send_raw_transaction.return_value = bytes.fromhex("ab" * 32)
    web3.eth.wait_for_transaction_receipt.return_value = {"status": 1}
    store, account = _evm_store(web3)

    tx_id = store.write(SOLANA, PeerRole.ATTESTATION, EMITTER_ID)

    assert tx_id == "ab" * 32
    web3.eth.contract.return_value.functions.setVaaEmitter.assert_called_once_with(SOLANA, EMITTER_ID.raw)
    web3.eth.send_raw_transaction.assert_called_once_with(account.sign_transaction.return_value.raw_transaction)


def test_evm_store_write_raises_on_revert():
    web3 = MagicMock()
    web3.eth.send_raw_transaction.return_value = bytes.fromhex("cd" * 32)
    web3.eth.wait_for_transaction_receipt.return_value = {"status": 0}
    store, _account = _evm_store(web3)

    with pytest.raises(TransactionFailed):
        store.write(SOLANA, PeerRole.ROUTING, PROGRAM_ID)
