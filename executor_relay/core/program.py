"""Instruction builders for the greeting message program."""

from __future__ import annotations

import hashlib
import struct
from typing import Union

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.sysvar import CLOCK, RENT

from executor_relay.core.addresses import (
    UniversalAddress,
    as_pubkey,
    config_account,
    derive_program_accounts,
    peer_account,
    posted_vaa_account,
    received_account,
    sent_account,
)
from executor_relay.core.message import check_greeting
from executor_relay.core.relay import RelayRequest

U64_MAX = 2**64 - 1


def instruction_discriminator(name: str) -> bytes:
    """First eight bytes of ``sha256("global:<name>")``."""
    return hashlib.sha256(f"global:{name}".encode("utf-8")).digest()[:8]


def _vec(data: bytes) -> bytes:
    return struct.pack("<I", len(data)) + data


def _meta(pubkey: Pubkey, *, signer: bool = False, writable: bool = False) -> AccountMeta:
    return AccountMeta(pubkey=pubkey, is_signer=signer, is_writable=writable)


def send_greeting_instruction(
    program_id: Union[str, Pubkey],
    core_bridge: Union[str, Pubkey],
    payer: Pubkey,
    greeting: str,
    sequence: int,
) -> Instruction:
    """Publish ``greeting``; ``sequence`` is the predicted value (counter plus one).

    The program stores the message in the sent account for ``sequence``.
    """
    program = as_pubkey(program_id)
    bridge_program = as_pubkey(core_bridge)
    accounts = derive_program_accounts(program, bridge_program)
    data = instruction_discriminator("send_greeting") + _vec(check_greeting(greeting))
    return Instruction(
        program,
        data,
        [
            _meta(payer, signer=True, writable=True),
            _meta(accounts.config),
            _meta(bridge_program),
            _meta(accounts.bridge, writable=True),
            _meta(accounts.fee_collector, writable=True),
            _meta(accounts.emitter, writable=True),
            _meta(accounts.sequence, writable=True),
            _meta(sent_account(program, sequence), writable=True),
            _meta(SYSTEM_PROGRAM_ID),
            _meta(CLOCK),
            _meta(RENT),
        ],
    )


def register_peer_instruction(
    program_id: Union[str, Pubkey],
    owner: Pubkey,
    chain_id: int,
    address: UniversalAddress,
) -> Instruction:
    program = as_pubkey(program_id)
    data = instruction_discriminator("register_peer") + struct.pack("<H", chain_id) + address.raw
    return Instruction(
        program,
        data,
        [
            _meta(owner, signer=True, writable=True),
            _meta(config_account(program)),
            _meta(peer_account(program, chain_id), writable=True),
            _meta(SYSTEM_PROGRAM_ID),
        ],
    )


def request_relay_instruction(
    program_id: Union[str, Pubkey],
    core_bridge: Union[str, Pubkey],
    executor_program: Union[str, Pubkey],
    payer: Pubkey,
    request: RelayRequest,
) -> Instruction:
    """Pay ``request.payee`` and record the relay request for the relay service.

    Arguments are encoded in the entry point's order: destination chain,
    payment amount, signed quote bytes, relay instruction bytes.
    """
    if not 0 <= request.payment_amount <= U64_MAX:
        raise ValueError(f"payment amount {request.payment_amount} does not fit in u64")
    program = as_pubkey(program_id)
    accounts = derive_program_accounts(program, core_bridge)
    data = (
        instruction_discriminator("request_relay")
        + struct.pack("<HQ", request.destination_chain, request.payment_amount)
        + _vec(request.signed_quote)
        + _vec(request.relay_instructions)
    )
    return Instruction(
        program,
        data,
        [
            _meta(payer, signer=True, writable=True),
            _meta(request.payee.to_pubkey(), writable=True),
            _meta(accounts.config),
            _meta(peer_account(program, request.destination_chain)),
            _meta(accounts.emitter),
            _meta(as_pubkey(core_bridge)),
            _meta(accounts.sequence),
            _meta(as_pubkey(executor_program)),
            _meta(SYSTEM_PROGRAM_ID),
        ],
    )


def receive_greeting_instruction(
    program_id: Union[str, Pubkey],
    core_bridge: Union[str, Pubkey],
    payer: Pubkey,
    *,
    body_digest: bytes,
    emitter_chain: int,
    sequence: int,
) -> Instruction:
    """Consume a posted attestation; fails on-chain if the emitter is not the registered peer."""
    if len(body_digest) != 32:
        raise ValueError("body digest must be 32 bytes")
    program = as_pubkey(program_id)
    data = instruction_discriminator("receive_greeting") + bytes(body_digest)
    return Instruction(
        program,
        data,
        [
            _meta(payer, signer=True, writable=True),
            _meta(config_account(program)),
            _meta(as_pubkey(core_bridge)),
            _meta(posted_vaa_account(core_bridge, body_digest)),
            _meta(peer_account(program, emitter_chain)),
            _meta(received_account(program, emitter_chain, sequence), writable=True),
            _meta(SYSTEM_PROGRAM_ID),
        ],
    )


__all__ = [
    "U64_MAX",
    "instruction_discriminator",
    "receive_greeting_instruction",
    "register_peer_instruction",
    "request_relay_instruction",
    "send_greeting_instruction",
]
