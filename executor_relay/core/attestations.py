"""Guardian attestation (VAA) lookup and parsing."""

from __future__ import annotations

import base64
import struct
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

import requests
from web3 import Web3

from executor_relay.core.addresses import UniversalAddress
from executor_relay.core.polling import Throttled, poll_until
from executor_relay.core.utils import get_logger

LOGGER = get_logger("executor_relay.attestations")

GUARDIAN_SIGNATURE_LENGTH = 66
_HEADER = struct.Struct(">BIB")
# timestamp u32 | nonce u32 | emitter_chain u16 | emitter_address 32 | sequence u64 | consistency u8
_BODY = struct.Struct(">IIH32sQB")


@dataclass(frozen=True)
class ParsedVaa:
    version: int
    guardian_set_index: int
    signatures: List[bytes]
    timestamp: int
    nonce: int
    emitter_chain: int
    emitter_address: UniversalAddress
    sequence: int
    consistency_level: int
    payload: bytes
    body: bytes

    @property
    def digest(self) -> bytes:
        """keccak256 of the body; the posted-attestation account is derived from it."""
        return bytes(Web3.keccak(self.body))


def parse_vaa(raw: bytes) -> ParsedVaa:
    if len(raw) < _HEADER.size:
        raise ValueError("VAA is too short for its header")
    version, guardian_set_index, signature_count = _HEADER.unpack_from(raw)
    body_offset = _HEADER.size + signature_count * GUARDIAN_SIGNATURE_LENGTH
    if len(raw) < body_offset + _BODY.size:
        raise ValueError(f"VAA with {signature_count} signatures is truncated ({len(raw)} bytes)")

    signatures = [
        raw[offset : offset + GUARDIAN_SIGNATURE_LENGTH]
        for offset in range(_HEADER.size, body_offset, GUARDIAN_SIGNATURE_LENGTH)
    ]
    body = raw[body_offset:]
    timestamp, nonce, emitter_chain, emitter_address, sequence, consistency = _BODY.unpack_from(body)
    return ParsedVaa(
        version=version,
        guardian_set_index=guardian_set_index,
        signatures=signatures,
        timestamp=timestamp,
        nonce=nonce,
        emitter_chain=emitter_chain,
        emitter_address=UniversalAddress(emitter_address),
        sequence=sequence,
        consistency_level=consistency,
        payload=body[_BODY.size :],
        body=body,
    )


@dataclass(frozen=True)
class Attestation:
    """A signed attestation as served by the index."""

    emitter_chain: int
    emitter_address: UniversalAddress
    sequence: int
    vaa: bytes
    timestamp: Optional[str] = None

    def parse(self) -> ParsedVaa:
        return parse_vaa(self.vaa)


class AttestationPoller:
    """Looks up attestations by ``(chain, emitter, sequence)`` until one appears."""

    def __init__(
        self,
        api_url: str,
        *,
        timeout: float = 10,
        poll_interval: float = 3,
        max_poll_interval: float = 30,
        backoff: float = 1.5,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], object]] = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.max_poll_interval = max_poll_interval
        self.backoff = backoff
        self.session = session or requests.Session()
        self.clock = clock
        self.sleep = sleep

    def poll_once(
        self,
        source_chain: int,
        emitter: Union[UniversalAddress, str],
        sequence: int,
    ) -> Optional[Attestation]:
        """One idempotent read; ``None`` while the attestation is not yet available."""
        emitter_address = emitter if isinstance(emitter, UniversalAddress) else UniversalAddress.from_hex(emitter)
        url = f"{self.api_url}/api/v1/vaas/{source_chain}/{emitter_address.hex()}/{sequence}"
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            LOGGER.warning("Attestation lookup failed: %s", exc)
            return None

        if response.status_code == 404:
            return None
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise Throttled(float(retry_after) if retry_after and retry_after.isdigit() else None)
        try:
            response.raise_for_status()
            body = response.json()
            data = (body.get("data") if isinstance(body, dict) else None) or {}
            if not isinstance(data, dict):
                raise ValueError(f"unexpected data field of type {type(data).__name__}")
            encoded = data.get("vaa")
            vaa = base64.b64decode(encoded, validate=True) if encoded else None
        except (requests.RequestException, ValueError, TypeError) as exc:
            LOGGER.warning("Unusable attestation response from %s: %s", url, exc)
            return None

        if not vaa:
            return None
        return Attestation(
            emitter_chain=source_chain,
            emitter_address=emitter_address,
            sequence=sequence,
            vaa=vaa,
            timestamp=data.get("timestamp"),
        )

    def wait_for_attestation(
        self,
        source_chain: int,
        emitter: Union[UniversalAddress, str],
        sequence: int,
        timeout: float,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> Optional[Attestation]:
        """Poll until the attestation is found; ``None`` on timeout or cancellation."""
        LOGGER.info("Waiting for attestation chain=%s emitter=%s sequence=%s", source_chain, emitter, sequence)
        result = poll_until(
            lambda: self.poll_once(source_chain, emitter, sequence),
            timeout=timeout,
            interval=self.poll_interval,
            max_interval=self.max_poll_interval,
            backoff=self.backoff,
            clock=self.clock,
            sleep=self.sleep,
            cancel_event=cancel_event,
            label=f"attestation {source_chain}/{sequence}",
        )
        if result.value is not None:
            LOGGER.info("Attestation found after %s polls (%.1fs)", result.attempts, result.elapsed)
        return result.value


__all__ = [
    "Attestation",
    "AttestationPoller",
    "GUARDIAN_SIGNATURE_LENGTH",
    "ParsedVaa",
    "parse_vaa",
]
