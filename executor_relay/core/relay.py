"""Relay instruction encoding and relay request construction."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from executor_relay.core.addresses import ChainFamily, UniversalAddress
from executor_relay.core.quotes import SignedQuote, decode_payee
from executor_relay.core.utils import get_logger, hex_to_bytes

LOGGER = get_logger("executor_relay.relay")

RELAY_INSTRUCTIONS_VERSION = 0x01
U128_MAX = 2**128 - 1
_FIELD_WIDTH = 16
RELAY_INSTRUCTIONS_LENGTH = 1 + 2 * _FIELD_WIDTH


@dataclass(frozen=True)
class RelayInstructions:
    """Compute/gas budget and extra native value the relay must forward."""

    gas_limit: int
    msg_value: int = 0

    def __post_init__(self) -> None:
        for name in ("gas_limit", "msg_value"):
            value = getattr(self, name)
            if not 0 <= value <= U128_MAX:
                raise ValueError(f"{name} must fit in an unsigned 128-bit integer, got {value}")

    def to_bytes(self) -> bytes:
        return encode_relay_instructions(self.gas_limit, self.msg_value)

    def to_hex(self) -> str:
        return "0x" + self.to_bytes().hex()


def encode_relay_instructions(compute_budget: int, extra_value: int) -> bytes:
    """``version(1) | gas_limit u128 BE | msg_value u128 BE``."""
    if not 0 <= compute_budget <= U128_MAX or not 0 <= extra_value <= U128_MAX:
        raise ValueError("relay instruction fields must fit in unsigned 128-bit integers")
    return (
        bytes([RELAY_INSTRUCTIONS_VERSION])
        + compute_budget.to_bytes(_FIELD_WIDTH, "big")
        + extra_value.to_bytes(_FIELD_WIDTH, "big")
    )


def decode_relay_instructions(data: Union[bytes, str]) -> RelayInstructions:
    raw = hex_to_bytes(data) if isinstance(data, str) else bytes(data)
    if len(raw) != RELAY_INSTRUCTIONS_LENGTH:
        raise ValueError(f"relay instructions must be {RELAY_INSTRUCTIONS_LENGTH} bytes, got {len(raw)}")
    if raw[0] != RELAY_INSTRUCTIONS_VERSION:
        raise ValueError(f"unsupported relay instructions version {raw[0]:#04x}")
    return RelayInstructions(
        gas_limit=int.from_bytes(raw[1 : 1 + _FIELD_WIDTH], "big"),
        msg_value=int.from_bytes(raw[1 + _FIELD_WIDTH :], "big"),
    )


@dataclass(frozen=True)
class RelayRequest:
    """Everything the on-chain request-relay entry point needs, in argument order."""

    destination_chain: int
    payment_amount: int
    signed_quote: bytes
    relay_instructions: bytes
    payee: UniversalAddress


def build_request(
    destination_chain: int,
    payment_amount: int,
    signed_quote: SignedQuote,
    relay_instructions: RelayInstructions,
    *,
    payee_family: ChainFamily,
) -> RelayRequest:
    """Assemble a relay request; the payee is validated before anything is built."""
    if signed_quote.destination_chain != destination_chain:
        raise ValueError(
            f"Quote targets chain {signed_quote.destination_chain}, request targets {destination_chain}"
        )
    if payment_amount <= 0:
        raise ValueError("payment_amount must be positive")

    payee = decode_payee(signed_quote, payee_family)

    LOGGER.info(
        "Prepared relay request dst=%s payment=%s payee=%s gas_limit=%s msg_value=%s",
        destination_chain,
        payment_amount,
        payee.hex(),
        relay_instructions.gas_limit,
        relay_instructions.msg_value,
    )

    return RelayRequest(
        destination_chain=destination_chain,
        payment_amount=payment_amount,
        signed_quote=signed_quote.raw,
        relay_instructions=relay_instructions.to_bytes(),
        payee=payee,
    )


__all__ = [
    "RELAY_INSTRUCTIONS_LENGTH",
    "RELAY_INSTRUCTIONS_VERSION",
    "RelayInstructions",
    "RelayRequest",
    "U128_MAX",
    "build_request",
    "decode_relay_instructions",
    "encode_relay_instructions",
]
