"""Utility helpers shared across executor_relay core modules."""

from __future__ import annotations

import base64
import binascii
import logging
import re
from typing import Optional

from web3 import Web3

_HEX_RE = re.compile(r"^[0-9a-fA-F]*$")


def get_logger(name: str = "executor_relay") -> logging.Logger:
    """Return a configured logger that prints to stdout."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger


def ensure_web3_connected(web3: Web3, *, expected_chain_id: Optional[int] = None) -> None:
    """Validate that ``web3`` is connected and optionally matches the expected chain id."""
    if not web3.is_connected():
        raise ConnectionError("Failed to connect to the configured RPC endpoint")
    if expected_chain_id is not None and web3.eth.chain_id != expected_chain_id:
        raise ValueError(f"RPC chain ID mismatch: expected {expected_chain_id}, got {web3.eth.chain_id}")


def hex_to_bytes(data: str) -> bytes:
    """Convert a hex string (with or without ``0x``) to bytes."""
    data = data[2:] if data.startswith(("0x", "0X")) else data
    return bytes.fromhex(data)


def bytes_to_hex(data: bytes, *, prefix: bool = True) -> str:
    """Render ``data`` as lowercase hex."""
    rendered = bytes(data).hex()
    return f"0x{rendered}" if prefix else rendered


def decode_blob(data: str) -> bytes:
    """Decode a service-provided blob that may be ``0x`` hex, bare hex or base64."""
    trimmed = data.strip()
    if trimmed.startswith(("0x", "0X")):
        return hex_to_bytes(trimmed)
    if _HEX_RE.match(trimmed) and len(trimmed) % 2 == 0:
        return bytes.fromhex(trimmed)
    try:
        return base64.b64decode(trimmed, validate=True)
    except binascii.Error as exc:
        raise ValueError("Blob is neither hex nor base64 encoded") from exc


def ceil_div(numerator: int, denominator: int) -> int:
    """Integer division rounding towards positive infinity."""
    return -(-numerator // denominator)


__all__ = [
    "bytes_to_hex",
    "ceil_div",
    "decode_blob",
    "ensure_web3_connected",
    "get_logger",
    "hex_to_bytes",
]
