"""Greeting payload codec.

The relay client treats payloads as opaque; this codec exists for the CLI and
the manual receive path, which display what was delivered.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Union

from solders.pubkey import Pubkey

from executor_relay.core.errors import MessageTooLarge

PAYLOAD_ID_ALIVE = 0x00
PAYLOAD_ID_HELLO = 0x01
GREETING_MAX_LENGTH = 512


@dataclass(frozen=True)
class Alive:
    program_id: Pubkey


@dataclass(frozen=True)
class Hello:
    greeting: str


GreetingMessage = Union[Alive, Hello]


def check_greeting(greeting: str) -> bytes:
    """Return the utf-8 bytes of ``greeting``, refusing anything over the program's limit."""
    data = greeting.encode("utf-8")
    if len(data) > GREETING_MAX_LENGTH:
        raise MessageTooLarge(f"greeting is {len(data)} bytes, maximum is {GREETING_MAX_LENGTH}")
    return data


def encode_hello(greeting: str) -> bytes:
    data = check_greeting(greeting)
    return bytes([PAYLOAD_ID_HELLO]) + struct.pack(">H", len(data)) + data


def encode_alive(program_id: Pubkey) -> bytes:
    return bytes([PAYLOAD_ID_ALIVE]) + bytes(program_id)


def decode_payload(payload: bytes) -> GreetingMessage:
    """Decode a delivered payload.

    Structured payloads start with a payload id. EVM senders publish the raw
    utf-8 greeting, which is recognised by any other leading byte.
    """
    if not payload:
        raise ValueError("empty payload")
    kind = payload[0]
    if kind == PAYLOAD_ID_HELLO:
        if len(payload) < 3:
            raise ValueError("hello payload is truncated")
        (length,) = struct.unpack_from(">H", payload, 1)
        if length > GREETING_MAX_LENGTH or len(payload) < 3 + length:
            raise ValueError(f"hello payload declares {length} bytes, has {len(payload) - 3}")
        return Hello(payload[3 : 3 + length].decode("utf-8"))
    if kind == PAYLOAD_ID_ALIVE:
        if len(payload) != 33:
            raise ValueError("alive payload must carry a 32-byte program id")
        return Alive(Pubkey.from_bytes(payload[1:]))
    if len(payload) > GREETING_MAX_LENGTH:
        raise ValueError(f"raw greeting is {len(payload)} bytes, maximum is {GREETING_MAX_LENGTH}")
    return Hello(payload.decode("utf-8"))


__all__ = [
    "Alive",
    "GREETING_MAX_LENGTH",
    "GreetingMessage",
    "Hello",
    "PAYLOAD_ID_ALIVE",
    "PAYLOAD_ID_HELLO",
    "check_greeting",
    "decode_payload",
    "encode_alive",
    "encode_hello",
]
