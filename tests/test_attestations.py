"""Tests for attestation lookup and VAA parsing."""

import base64
from unittest.mock import MagicMock

import pytest
from web3 import Web3

from executor_relay.core.addresses import UniversalAddress
from executor_relay.core.attestations import AttestationPoller, parse_vaa

from conftest import build_vaa, json_response

EMITTER = UniversalAddress(bytes(range(32)))


def _found(vaa):
    return json_response({"data": {"vaa": base64.b64encode(vaa).decode(), "timestamp": "2024-01-01T00:00:00Z"}})


def _poller(session, clock):
    return AttestationPoller(
        "https://api.wormholescan.example/",
        session=session,
        clock=clock,
        sleep=clock.sleep,
        poll_interval=2,
        backoff=1.0,
    )


def test_parse_vaa_fields_and_digest():
    raw, body = build_vaa(signatures=2)

    parsed = parse_vaa(raw)

    assert parsed.version == 1
    assert parsed.guardian_set_index == 4
    assert len(parsed.signatures) == 2
    assert parsed.signatures[1][0] == 1
    assert (parsed.emitter_chain, parsed.emitter_address, parsed.sequence) == (1, EMITTER, 42)
    assert parsed.nonce == 7
    assert parsed.payload == b"\x01hello"
    assert parsed.body == body
    assert parsed.digest == bytes(Web3.keccak(body))


def test_parse_vaa_rejects_truncated_input():
    raw, _body = build_vaa()

    with pytest.raises(ValueError):
        parse_vaa(raw[:4])
    with pytest.raises(ValueError):
        parse_vaa(raw[:80])


def test_wait_for_attestation_polls_until_found(clock):
    raw, _body = build_vaa()
    session = MagicMock()
    session.get.side_effect = [json_response({}, status_code=404), json_response({}, status_code=404), _found(raw)]

    attestation = _poller(session, clock).wait_for_attestation(1, EMITTER, 42, timeout=60)

    assert attestation.vaa == raw
    assert attestation.sequence == 42
    assert attestation.parse().sequence == 42
    assert session.get.call_count == 3
    session.get.assert_called_with(
        f"https://api.wormholescan.example/api/v1/vaas/1/{EMITTER.hex()}/42", timeout=10
    )


def test_emitter_may_be_given_as_hex(clock):
    raw, _body = build_vaa()
    session = MagicMock()
    session.get.return_value = _found(raw)

    attestation = _poller(session, clock).wait_for_attestation(1, "0x" + EMITTER.hex(), 42, timeout=5)

    assert attestation.emitter_address == EMITTER


def test_rate_limit_honours_retry_after(clock):
    raw, _body = build_vaa()
    throttled = json_response({}, status_code=429)
    throttled.headers = {"Retry-After": "9"}
    session = MagicMock()
    session.get.side_effect = [throttled, _found(raw)]

    attestation = _poller(session, clock).wait_for_attestation(1, EMITTER, 42, timeout=60)

    assert attestation is not None
    assert clock.sleeps == [9.0]


def test_timeout_returns_none_at_or_after_deadline(clock):
    session = MagicMock()
    session.get.return_value = json_response({}, status_code=404)

    assert _poller(session, clock).wait_for_attestation(1, EMITTER, 42, timeout=7) is None
    assert clock.now >= 7


@pytest.mark.parametrize(
    "bad",
    [
        json_response({"data": {"vaa": "!!not-base64!!"}}),
        json_response([{"vaa": "AQ=="}]),
        json_response({"data": ["AQ=="]}),
    ],
)
def test_malformed_responses_count_as_not_ready(clock, bad):
    raw, _body = build_vaa()
    session = MagicMock()
    session.get.side_effect = [bad, _found(raw)]

    attestation = _poller(session, clock).wait_for_attestation(1, EMITTER, 42, timeout=60)

    assert attestation.vaa == raw
    assert session.get.call_count == 2


def test_empty_payload_counts_as_not_ready(clock):
    raw, _body = build_vaa()
    session = MagicMock()
    session.get.side_effect = [json_response({"data": {}}), _found(raw)]

    assert _poller(session, clock).wait_for_attestation(1, EMITTER, 42, timeout=60) is not None
    assert session.get.call_count == 2
