"""Address codec: universal (32-byte) addresses and deterministic protocol accounts."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from solders.pubkey import Pubkey
from web3 import Web3

from executor_relay.core.errors import AddressWidthError
from executor_relay.core.utils import hex_to_bytes

UNIVERSAL_WIDTH = 32

NativeAddress = Union[str, bytes, bytearray, Pubkey]


class ChainFamily(str, enum.Enum):
    """Address families known to the codec, keyed by native width."""

    EVM = "evm"
    SVM = "svm"

    @property
    def native_width(self) -> int:
        return 20 if self is ChainFamily.EVM else 32

    @classmethod
    def from_width(cls, width: int) -> "ChainFamily":
        for family in cls:
            if family.native_width == width:
                return family
        raise AddressWidthError(f"No chain family uses {width}-byte addresses")


@dataclass(frozen=True)
class UniversalAddress:
    """A 32-byte cross-chain identity; shorter native addresses are left-padded with zeros."""

    raw: bytes

    def __post_init__(self) -> None:
        if len(self.raw) != UNIVERSAL_WIDTH:
            raise AddressWidthError(f"Universal address must be {UNIVERSAL_WIDTH} bytes, got {len(self.raw)}")
        object.__setattr__(self, "raw", bytes(self.raw))

    @classmethod
    def from_hex(cls, value: str) -> "UniversalAddress":
        data = hex_to_bytes(value)
        if len(data) > UNIVERSAL_WIDTH:
            raise AddressWidthError(f"Universal address hex is {len(data)} bytes long")
        return cls(data.rjust(UNIVERSAL_WIDTH, b"\x00"))

    def hex(self) -> str:
        """64 lowercase hex characters, no prefix (the attestation index format)."""
        return self.raw.hex()

    def to_bytes32(self) -> str:
        """``0x``-prefixed hex as expected by ``bytes32`` contract arguments."""
        return "0x" + self.raw.hex()

    @property
    def is_zero(self) -> bool:
        return not any(self.raw)

    def has_padding_for(self, width: int) -> bool:
        """True if every byte above the low ``width`` bytes is zero."""
        return not any(self.raw[: UNIVERSAL_WIDTH - width])

    def to_native(self, family: ChainFamily) -> bytes:
        return from_universal(self, family)

    def to_pubkey(self) -> Pubkey:
        return Pubkey.from_bytes(self.raw)

    def to_evm_address(self) -> str:
        return Web3.to_checksum_address(self.to_native(ChainFamily.EVM))

    def __str__(self) -> str:
        return self.to_bytes32()


def _native_bytes(native: NativeAddress, family: Optional[ChainFamily]) -> bytes:
    if isinstance(native, Pubkey):
        return bytes(native)
    if isinstance(native, (bytes, bytearray)):
        return bytes(native)
    if isinstance(native, str):
        value = native.strip()
        if value.startswith(("0x", "0X")):
            try:
                return hex_to_bytes(value)
            except ValueError as exc:
                raise AddressWidthError(f"Invalid hex address: {native}") from exc
        if family is ChainFamily.EVM:
            raise AddressWidthError(f"EVM address must be 0x-prefixed hex: {native}")
        try:
            return bytes(Pubkey.from_string(value))
        except ValueError as exc:
            raise AddressWidthError(f"Invalid base58 address: {native}") from exc
    raise TypeError(f"Unsupported address type: {type(native).__name__}")


def to_universal(native: NativeAddress, family: Optional[ChainFamily] = None) -> UniversalAddress:
    """Pad (EVM) or pass through (SVM) a native address into universal form.

    When ``family`` is omitted it is inferred from the native width.
    """
    data = _native_bytes(native, family)
    resolved = family or ChainFamily.from_width(len(data))
    if len(data) != resolved.native_width:
        raise AddressWidthError(
            f"{resolved.value} addresses are {resolved.native_width} bytes, got {len(data)}"
        )
    return UniversalAddress(data.rjust(UNIVERSAL_WIDTH, b"\x00"))


def from_universal(address: UniversalAddress, family: ChainFamily) -> bytes:
    """Extract the native bytes for ``family``; refuses to drop non-zero high bytes."""
    width = family.native_width
    if not address.has_padding_for(width):
        raise AddressWidthError(f"{address.hex()} does not fit in a {width}-byte {family.value} address")
    return address.raw[UNIVERSAL_WIDTH - width :]


def u16_le(value: int) -> bytes:
    return struct.pack("<H", value)


def u64_le(value: int) -> bytes:
    return struct.pack("<Q", value)


def as_pubkey(value: Union[str, bytes, Pubkey]) -> Pubkey:
    if isinstance(value, Pubkey):
        return value
    if isinstance(value, (bytes, bytearray)):
        return Pubkey.from_bytes(bytes(value))
    return Pubkey.from_string(value)


def derive_account(
    program_id: Union[str, Pubkey],
    seed_label: Union[str, bytes],
    variable_part: Union[None, bytes, Iterable[bytes]] = None,
) -> Pubkey:
    """Derive a program account from a fixed seed label and optional variable seeds."""
    label = seed_label.encode("utf-8") if isinstance(seed_label, str) else bytes(seed_label)
    seeds = [label]
    if isinstance(variable_part, (bytes, bytearray)):
        seeds.append(bytes(variable_part))
    elif variable_part is not None:
        seeds.extend(bytes(part) for part in variable_part)
    address, _bump = Pubkey.find_program_address(seeds, as_pubkey(program_id))
    return address


# Message program accounts.

def config_account(program_id: Union[str, Pubkey]) -> Pubkey:
    return derive_account(program_id, "config")


def emitter_account(program_id: Union[str, Pubkey]) -> Pubkey:
    return derive_account(program_id, "emitter")


def peer_account(program_id: Union[str, Pubkey], chain_id: int) -> Pubkey:
    return derive_account(program_id, "peer", u16_le(chain_id))


def sent_account(program_id: Union[str, Pubkey], slot: int) -> Pubkey:
    return derive_account(program_id, "sent", u64_le(slot))


def received_account(program_id: Union[str, Pubkey], emitter_chain: int, sequence: int) -> Pubkey:
    return derive_account(program_id, "received", [u16_le(emitter_chain), u64_le(sequence)])


# Core bridge accounts.

def bridge_account(core_bridge: Union[str, Pubkey]) -> Pubkey:
    return derive_account(core_bridge, "Bridge")


def fee_collector_account(core_bridge: Union[str, Pubkey]) -> Pubkey:
    return derive_account(core_bridge, "fee_collector")


def sequence_account(core_bridge: Union[str, Pubkey], emitter: Union[str, Pubkey]) -> Pubkey:
    return derive_account(core_bridge, "Sequence", bytes(as_pubkey(emitter)))


def posted_vaa_account(core_bridge: Union[str, Pubkey], body_digest: bytes) -> Pubkey:
    return derive_account(core_bridge, "PostedVAA", body_digest)


@dataclass(frozen=True)
class ProgramAccounts:
    """The fixed accounts a message program and its core bridge use for every publish."""

    config: Pubkey
    emitter: Pubkey
    bridge: Pubkey
    fee_collector: Pubkey
    sequence: Pubkey


def derive_program_accounts(program_id: Union[str, Pubkey], core_bridge: Union[str, Pubkey]) -> ProgramAccounts:
    emitter = emitter_account(program_id)
    return ProgramAccounts(
        config=config_account(program_id),
        emitter=emitter,
        bridge=bridge_account(core_bridge),
        fee_collector=fee_collector_account(core_bridge),
        sequence=sequence_account(core_bridge, emitter),
    )


__all__ = [
    "ChainFamily",
    "ProgramAccounts",
    "UNIVERSAL_WIDTH",
    "UniversalAddress",
    "as_pubkey",
    "bridge_account",
    "config_account",
    "derive_account",
    "derive_program_accounts",
    "emitter_account",
    "fee_collector_account",
    "from_universal",
    "peer_account",
    "posted_vaa_account",
    "received_account",
    "sent_account",
    "sequence_account",
    "to_universal",
    "u16_le",
    "u64_le",
]
