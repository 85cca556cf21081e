"""Tests for the universal address codec and account derivation."""

import pytest
from solders.pubkey import Pubkey

from executor_relay.core.addresses import (
    ChainFamily,
    UniversalAddress,
    derive_account,
    derive_program_accounts,
    emitter_account,
    from_universal,
    peer_account,
    received_account,
    sequence_account,
    to_universal,
)
from executor_relay.core.errors import AddressWidthError

EVM_ADDRESS = "0xC83dcae38111019e8efbA0B78CE6BA055e7A3f2c"
PROGRAM = Pubkey.from_string("He11oExec1111111111111111111111111111111111")
CORE_BRIDGE = Pubkey.from_string("3u8hJUVTA4jH1wYAyUur7FFZVQ8H635K3tSHHF4ssjQ5")


def test_evm_address_is_left_padded():
    address = to_universal(EVM_ADDRESS, ChainFamily.EVM)

    assert address.raw[:12] == bytes(12)
    assert address.raw[12:] == bytes.fromhex(EVM_ADDRESS[2:])
    assert address.hex() == "00" * 12 + EVM_ADDRESS[2:].lower()


@pytest.mark.parametrize("native", [bytes.fromhex("ab" * 20), bytes(20), b"\x01" + bytes(19)])
def test_round_trip_preserves_narrow_native_bytes(native):
    universal = to_universal(native)

    assert from_universal(universal, ChainFamily.EVM) == native


def test_svm_address_passes_through():
    universal = to_universal(PROGRAM)

    assert universal.raw == bytes(PROGRAM)
    assert universal.to_pubkey() == PROGRAM
    assert to_universal(str(PROGRAM), ChainFamily.SVM) == universal


def test_family_is_inferred_from_width():
    assert to_universal(bytes(20)).raw == bytes(32)
    with pytest.raises(AddressWidthError):
        to_universal(bytes(25))


def test_width_mismatch_for_explicit_family():
    with pytest.raises(AddressWidthError):
        to_universal(bytes(32), ChainFamily.EVM)


def test_evm_extraction_refuses_to_drop_high_bytes():
    with pytest.raises(AddressWidthError):
        from_universal(UniversalAddress(bytes(range(32))), ChainFamily.EVM)


def test_universal_address_rejects_wrong_length():
    with pytest.raises(AddressWidthError):
        UniversalAddress(bytes(31))


def test_from_hex_pads_short_input():
    assert UniversalAddress.from_hex("0x01").raw == bytes(31) + b"\x01"


def test_to_evm_address_is_checksummed():
    assert to_universal(EVM_ADDRESS, ChainFamily.EVM).to_evm_address() == EVM_ADDRESS


def test_derive_account_is_deterministic():
    first = derive_account(PROGRAM, "peer", (51).to_bytes(2, "little"))
    second = derive_account(PROGRAM, b"peer", (51).to_bytes(2, "little"))

    assert first == second
    assert first == peer_account(PROGRAM, 51)
    assert peer_account(PROGRAM, 51) != peer_account(PROGRAM, 1)


def test_received_account_seeds_are_concatenated():
    expected, _bump = Pubkey.find_program_address(
        [b"received", (1).to_bytes(2, "little"), (7).to_bytes(8, "little")], PROGRAM
    )

    assert received_account(PROGRAM, 1, 7) == expected


def test_program_accounts_use_emitter_for_sequence():
    accounts = derive_program_accounts(PROGRAM, CORE_BRIDGE)

    assert accounts.emitter == emitter_account(PROGRAM)
    assert accounts.sequence == sequence_account(CORE_BRIDGE, accounts.emitter)
