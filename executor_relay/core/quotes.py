"""Quoting utilities for the Executor relay service."""

from __future__ import annotations

import struct
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import requests
from web3 import Web3

from executor_relay.core.addresses import ChainFamily, UniversalAddress
from executor_relay.core.errors import InvalidPayeeFormat, QuoteMalformed, QuoteUnavailable
from executor_relay.core.utils import ceil_div, decode_blob, get_logger

if TYPE_CHECKING:
    from executor_relay.core.relay import RelayInstructions

LOGGER = get_logger("executor_relay.quotes")

QUOTE_PREFIX = "EQ01"

# prefix(4) | quoter(20) | payee(32) | src_chain u16 | dst_chain u16 | expiry u64
# | base_fee u64 | dst_gas_price u64 | src_price u64 | dst_price u64 | signature(65)
_BODY = struct.Struct(">4s20s32sHHQQQQQ")
SIGNATURE_LENGTH = 65
SIGNED_QUOTE_LENGTH = _BODY.size + SIGNATURE_LENGTH
PAYEE_OFFSET = 24


@dataclass(frozen=True)
class SignedQuote:
    """A service-signed price quote; ``raw`` is passed on-chain untouched."""

    raw: bytes
    prefix: str
    quoter: bytes
    payee_field: bytes
    source_chain: int
    destination_chain: int
    expiry_time: int
    base_fee: int
    destination_gas_price: int
    source_price: int
    destination_price: int
    signature: bytes
    estimated_cost: Optional[int] = None

    @property
    def quoter_address(self) -> str:
        return Web3.to_checksum_address(self.quoter)

    def hex(self) -> str:
        return "0x" + self.raw.hex()

    def is_expired(self, now: Optional[float] = None) -> bool:
        current = time.time() if now is None else now
        return current >= self.expiry_time


def parse_signed_quote(raw: bytes, *, estimated_cost: Optional[int] = None) -> SignedQuote:
    """Decode the fields of an ``EQ01`` signed quote needed to build a payment."""
    if len(raw) < 4:
        raise QuoteMalformed(f"Signed quote is too short ({len(raw)} bytes)")
    try:
        prefix = raw[:4].decode("ascii")
    except UnicodeDecodeError as exc:
        raise QuoteMalformed("Signed quote prefix is not ASCII") from exc
    if prefix != QUOTE_PREFIX:
        raise QuoteMalformed(f"Unknown quote prefix: {prefix!r}")
    if len(raw) < SIGNED_QUOTE_LENGTH:
        raise QuoteMalformed(f"Signed quote is {len(raw)} bytes, expected at least {SIGNED_QUOTE_LENGTH}")

    (
        _prefix,
        quoter,
        payee,
        src_chain,
        dst_chain,
        expiry,
        base_fee,
        dst_gas_price,
        src_price,
        dst_price,
    ) = _BODY.unpack_from(raw)
    signature = raw[_BODY.size : _BODY.size + SIGNATURE_LENGTH]

    return SignedQuote(
        raw=bytes(raw),
        prefix=prefix,
        quoter=quoter,
        payee_field=payee,
        source_chain=src_chain,
        destination_chain=dst_chain,
        expiry_time=expiry,
        base_fee=base_fee,
        destination_gas_price=dst_gas_price,
        source_price=src_price,
        destination_price=dst_price,
        signature=signature,
        estimated_cost=estimated_cost,
    )


def decode_payee(quote: SignedQuote, chain_family: ChainFamily) -> UniversalAddress:
    """Extract the payee and check it is a well-formed identity for ``chain_family``.

    The payee receives funds on the chain where the relay request executes, so
    ``chain_family`` is the family of that chain. Anything that is not a
    plausible native identity for it is rejected rather than paid.
    """
    payee = UniversalAddress(quote.payee_field)
    if payee.is_zero:
        raise InvalidPayeeFormat("Quote payee is the zero address")

    evm_width = ChainFamily.EVM.native_width
    if chain_family is ChainFamily.EVM and not payee.has_padding_for(evm_width):
        raise InvalidPayeeFormat(
            f"Quote payee {payee.hex()} does not fit a 20-byte EVM address"
        )
    if chain_family is ChainFamily.SVM and payee.has_padding_for(evm_width):
        # A 20-byte identity zero-padded into the slot, i.e. quoted for the wrong chain family.
        raise InvalidPayeeFormat(
            f"Quote payee {payee.hex()} is a left-padded 20-byte identity, not a 32-byte account"
        )
    return payee


def required_payment(
    quote: SignedQuote,
    instructions: "RelayInstructions",
    *,
    source_decimals: int,
    destination_decimals: int,
) -> int:
    """Payment in source-chain base units implied by the quote's own price fields."""
    if quote.source_price == 0:
        raise QuoteMalformed("Quote source price is zero")
    destination_cost = instructions.gas_limit * quote.destination_gas_price + instructions.msg_value
    converted = ceil_div(
        destination_cost * quote.destination_price * 10**source_decimals,
        quote.source_price * 10**destination_decimals,
    )
    return quote.base_fee + converted


def payment_amount(
    quote: SignedQuote,
    instructions: "RelayInstructions",
    *,
    source_decimals: int,
    destination_decimals: int,
) -> int:
    """The larger of the price-field derivation and the service's own estimate."""
    derived = required_payment(
        quote,
        instructions,
        source_decimals=source_decimals,
        destination_decimals=destination_decimals,
    )
    if quote.estimated_cost is not None and quote.estimated_cost > derived:
        LOGGER.info("Using service estimate %s over derived payment %s", quote.estimated_cost, derived)
        return quote.estimated_cost
    return derived


@dataclass(frozen=True)
class ExecutorCapabilities:
    """Per-chain limits advertised by the relay service."""

    request_prefixes: List[str] = field(default_factory=list)
    gas_drop_off_limit: Optional[int] = None
    max_gas_limit: Optional[int] = None
    max_msg_value: Optional[int] = None


def _optional_int(value: Any) -> Optional[int]:
    return None if value is None or value == "" else int(value)


def check_relay_instructions(capabilities: ExecutorCapabilities, instructions: "RelayInstructions") -> None:
    """Reject a budget the destination's advertised limits cannot honour."""
    if capabilities.max_gas_limit is not None and instructions.gas_limit > capabilities.max_gas_limit:
        raise ValueError(
            f"gas limit {instructions.gas_limit} exceeds destination maximum {capabilities.max_gas_limit}"
        )
    if capabilities.max_msg_value is not None and instructions.msg_value > capabilities.max_msg_value:
        raise ValueError(
            f"msg value {instructions.msg_value} exceeds destination maximum {capabilities.max_msg_value}"
        )


class QuoteClient:
    """HTTP client for the relay service's quote and capabilities endpoints."""

    def __init__(
        self,
        api_url: str,
        *,
        timeout: float = 10,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def get_quote(
        self,
        source_chain: int,
        destination_chain: int,
        relay_instructions: Optional["RelayInstructions"] = None,
    ) -> SignedQuote:
        """Request a signed quote for delivering one message from ``source_chain``."""
        url = f"{self.api_url}/quote"
        body: Dict[str, Any] = {"srcChain": source_chain, "dstChain": destination_chain}
        if relay_instructions is not None:
            body["relayInstructions"] = relay_instructions.to_hex()

        LOGGER.info(
            "Requesting quote src=%s dst=%s instructions=%s",
            source_chain,
            destination_chain,
            body.get("relayInstructions"),
        )
        try:
            response = self.session.post(url, json=body, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise QuoteUnavailable(f"Failed to fetch quote from {url}: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise QuoteMalformed("Quote response is not JSON") from exc

        signed = payload.get("signedQuote") if isinstance(payload, dict) else None
        if not signed or not isinstance(signed, str):
            raise QuoteMalformed("Quote response missing signedQuote")

        try:
            raw = decode_blob(signed)
        except ValueError as exc:
            raise QuoteMalformed(f"signedQuote could not be decoded: {exc}") from exc

        estimated = payload.get("estimatedCost")
        try:
            estimated_cost = _optional_int(estimated)
        except (TypeError, ValueError) as exc:
            raise QuoteMalformed(f"estimatedCost is not an integer: {estimated!r}") from exc

        quote = parse_signed_quote(raw, estimated_cost=estimated_cost)
        if (quote.source_chain, quote.destination_chain) != (source_chain, destination_chain):
            raise QuoteMalformed(
                f"Quote is for route {quote.source_chain}->{quote.destination_chain}, "
                f"requested {source_chain}->{destination_chain}"
            )

        LOGGER.info(
            "Quote received quoter=%s expiry=%s base_fee=%s estimated_cost=%s",
            quote.quoter_address,
            quote.expiry_time,
            quote.base_fee,
            quote.estimated_cost,
        )
        return quote

    def get_capabilities(self) -> Dict[int, ExecutorCapabilities]:
        """Fetch the per-chain capabilities advertised by the relay service."""
        url = f"{self.api_url}/capabilities"
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as exc:
            raise QuoteUnavailable(f"Failed to fetch capabilities from {url}: {exc}") from exc
        except ValueError as exc:
            raise QuoteMalformed("Capabilities response is not JSON") from exc

        result: Dict[int, ExecutorCapabilities] = {}
        for chain_id, caps in payload.items():
            result[int(chain_id)] = ExecutorCapabilities(
                request_prefixes=list(caps.get("requestPrefixes", [])),
                gas_drop_off_limit=_optional_int(caps.get("gasDropOffLimit")),
                max_gas_limit=_optional_int(caps.get("maxGasLimit")),
                max_msg_value=_optional_int(caps.get("maxMsgValue")),
            )
        return result


__all__ = [
    "ExecutorCapabilities",
    "PAYEE_OFFSET",
    "QUOTE_PREFIX",
    "QuoteClient",
    "SIGNED_QUOTE_LENGTH",
    "SignedQuote",
    "check_relay_instructions",
    "decode_payee",
    "parse_signed_quote",
    "payment_amount",
    "required_payment",
]
