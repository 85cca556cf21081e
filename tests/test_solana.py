"""Tests for the Solana JSON-RPC client."""

import base64
from unittest.mock import MagicMock

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer

from executor_relay.core.errors import QuoteExpired, TransactionFailed
from executor_relay.core.solana import SolanaRpc

from conftest import json_response


def _rpc(*results):
    session = MagicMock()
    session.post.side_effect = [json_response({"jsonrpc": "2.0", "id": 1, **result}) for result in results]
    return SolanaRpc("https://rpc.example", session=session), session


def test_get_account_info_decodes_base64():
    owner = Pubkey.new_unique()
    rpc, session = _rpc(
        {"result": {"value": {"data": [base64.b64encode(b"\x2a\x00").decode(), "base64"], "owner": str(owner),
                              "lamports": 5}}}
    )
    address = Pubkey.new_unique()

    account = rpc.get_account_info(address)

    assert account.data == b"\x2a\x00"
    assert account.owner == owner
    assert account.lamports == 5
    payload = session.post.call_args[1]["json"]
    assert payload["method"] == "getAccountInfo"
    assert payload["params"][0] == str(address)


def test_missing_account():
    rpc, _session = _rpc({"result": {"value": None}})

    assert not rpc.account_exists(Pubkey.new_unique())


def test_send_and_confirm_signs_one_transaction():
    payer = Keypair()
    blockhash = str(Hash.new_unique())
    rpc, session = _rpc(
        {"result": {"value": {"blockhash": blockhash, "lastValidBlockHeight": 1}}},
        {"result": "sig-1"},
        {"result": {"value": [{"err": None, "confirmationStatus": "confirmed"}]}},
    )
    instruction = transfer(TransferParams(from_pubkey=payer.pubkey(), to_pubkey=Pubkey.new_unique(), lamports=1))

    assert rpc.send_and_confirm([instruction], payer) == "sig-1"
    methods = [call[1]["json"]["method"] for call in session.post.call_args_list]
    assert methods == ["getLatestBlockhash", "sendTransaction", "getSignatureStatuses"]


def test_expired_quote_rejection_is_recognised():
    rpc, _session = _rpc(
        {"error": {"code": -32002, "message": "Transaction simulation failed",
                   "data": {"logs": ["Program log: Error: QuoteExpired"]}}}
    )

    with pytest.raises(QuoteExpired):
        rpc.get_latest_blockhash()


def test_other_rpc_errors_are_transaction_failures():
    rpc, _session = _rpc({"error": {"code": -32002, "message": "insufficient funds"}})

    with pytest.raises(TransactionFailed):
        rpc.get_latest_blockhash()


def test_confirm_raises_on_failed_transaction():
    rpc, _session = _rpc({"result": {"value": [{"err": {"InstructionError": [0, "Custom"]}}]}})

    with pytest.raises(TransactionFailed) as excinfo:
        rpc.confirm("sig-1")
    assert excinfo.value.signature == "sig-1"


def test_confirm_times_out(clock):
    rpc, _session = _rpc(*[{"result": {"value": [None]}}] * 4)

    with pytest.raises(TransactionFailed, match="not confirmed"):
        rpc.confirm("sig-1", timeout=3, interval=1, clock=clock, sleep=clock.sleep)
    assert clock.now >= 3
