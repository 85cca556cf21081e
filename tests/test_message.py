"""Tests for the greeting payload codec."""

import pytest
from solders.pubkey import Pubkey

from executor_relay.core.errors import MessageTooLarge
from executor_relay.core.message import (
    GREETING_MAX_LENGTH,
    Alive,
    Hello,
    decode_payload,
    encode_alive,
    encode_hello,
)


def test_hello_layout():
    assert encode_hello("Hi") == b"\x01\x00\x02Hi"
    assert decode_payload(b"\x01\x00\x02Hi") == Hello("Hi")


def test_alive_carries_program_id():
    program = Pubkey.new_unique()

    assert decode_payload(encode_alive(program)) == Alive(program)


def test_raw_utf8_greeting_from_evm_sender():
    assert decode_payload("Hello from Sepolia".encode("utf-8")) == Hello("Hello from Sepolia")


def test_greeting_length_limit():
    encode_hello("x" * GREETING_MAX_LENGTH)
    with pytest.raises(MessageTooLarge):
        encode_hello("x" * (GREETING_MAX_LENGTH + 1))


@pytest.mark.parametrize("payload", [b"", b"\x01\x00", b"\x01\x00\x09short", b"\x00" + bytes(5)])
def test_malformed_payloads(payload):
    with pytest.raises(ValueError):
        decode_payload(payload)
