"""Shared fixtures for the relay client tests (no network, no wall-clock waits)."""

import struct
from typing import Callable
from unittest.mock import MagicMock

import pytest

from executor_relay.config.loader import DefaultsConfig

QUOTE_BODY = struct.Struct(">4s20s32sHHQQQQQ")

SVM_PAYEE = bytes(range(1, 33))
EVM_PAYEE_PADDED = bytes(12) + bytes.fromhex("11" * 20)
QUOTER = bytes.fromhex("22" * 20)


class FakeClock:
    """Monotonic clock advanced only by ``sleep``."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def build_quote_bytes(
    *,
    payee: bytes = SVM_PAYEE,
    src: int = 1,
    dst: int = 10002,
    expiry: int = 2_000_000_000,
    base_fee: int = 1000,
    dst_gas_price: int = 10,
    src_price: int = 300,
    dst_price: int = 200,
    prefix: bytes = b"EQ01",
) -> bytes:
    body = QUOTE_BODY.pack(
        prefix, QUOTER, payee, src, dst, expiry, base_fee, dst_gas_price, src_price, dst_price
    )
    return body + b"\x33" * 65


def json_response(payload, status_code: int = 200) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    response.headers = {}
    return response


def build_vaa(
    *,
    emitter: bytes = bytes(range(32)),
    sequence: int = 42,
    emitter_chain: int = 1,
    payload: bytes = b"\x01hello",
    signatures: int = 1,
):
    """A VAA with dummy guardian signatures; returns ``(raw, body)``."""
    header = struct.pack(">BIB", 1, 4, signatures)
    sigs = b"".join(bytes([index]) + b"\xaa" * 65 for index in range(signatures))
    body = struct.pack(">IIH32sQB", 1_700_000_000, 7, emitter_chain, emitter, sequence, 1) + payload
    return header + sigs + body, body


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def quote_bytes() -> Callable[..., bytes]:
    return build_quote_bytes


@pytest.fixture
def defaults() -> DefaultsConfig:
    return DefaultsConfig(
        api_timeout=10,
        poll_interval=3,
        max_poll_interval=30,
        attestation_timeout=60,
        delivery_timeout=60,
        confirm_timeout=30,
        gas_limit=200_000,
        msg_value=0,
        max_quote_attempts=3,
        max_relay_attempts=2,
    )
