from unittest.mock import MagicMock

import pytest
import requests

from moove_money.batch import EqualAmount
from moove_money.client import LedgerClient
from moove_money.crypto import LocalAccount, verify_signature
from moove_money.errors import LedgerError, ResourceNotFound, TransientQueryFailure
from moove_money.payload import batch_payload, coin_store_type

from conftest import MODULE_ADDRESS

BASE_URL = "https://node.example/v1"


def make_response(status_code=200, body=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body
    response.text = str(body)
    return response


@pytest.fixture()
def client():
    client = LedgerClient(BASE_URL + "/", faucet_url="https://faucet.example")
    client.session = MagicMock()
    return client


def test_get_account_resource_encodes_type(client):
    client.session.request.return_value = make_response(body={"data": {"coin": {"value": "5"}}})

    resource = client.get_account_resource("ABC", coin_store_type())

    assert resource["data"]["coin"]["value"] == "5"
    method, url = client.session.request.call_args[0]
    assert method == "GET"
    assert url == (
        f"{BASE_URL}/accounts/0xabc/resource/"
        "0x1%3A%3Acoin%3A%3ACoinStore%3C0x1%3A%3Aaptos_coin%3A%3AAptosCoin%3E"
    )


def test_not_found_maps_to_resource_not_found(client):
    client.session.request.return_value = make_response(
        404, {"message": "Resource not found", "error_code": "resource_not_found"}
    )
    with pytest.raises(ResourceNotFound) as exc:
        client.get_account_resource("0x1", coin_store_type())
    assert exc.value.status_code == 404
    assert "resource_not_found" in str(exc.value)


@pytest.mark.parametrize("status", [429, 500, 503])
def test_server_errors_are_transient(client, status):
    client.session.request.return_value = make_response(status, {"message": "busy"})
    with pytest.raises(TransientQueryFailure):
        client.get_transaction_by_hash("0x1")


def test_connection_errors_are_transient(client):
    client.session.request.side_effect = requests.ConnectionError("refused")
    with pytest.raises(TransientQueryFailure):
        client.get_transaction_by_version(7)


def test_client_errors_are_hard(client):
    client.session.request.return_value = make_response(400, {"message": "invalid"})
    with pytest.raises(LedgerError) as exc:
        client.get_account("0x1")
    assert not isinstance(exc.value, TransientQueryFailure)


def test_account_transactions_params(client):
    client.session.request.return_value = make_response(body=[])
    client.get_account_transactions("0x1", limit=5, start=2)
    assert client.session.request.call_args[1]["params"] == {"limit": 5, "start": 2}


def test_submit_signs_encoded_message(client):
    signer = LocalAccount.generate()
    message = bytes(range(16))
    payload = batch_payload(MODULE_ADDRESS, ["0x1", "0x2"], EqualAmount(10))
    client.session.request.side_effect = [
        make_response(body={"sequence_number": "4", "authentication_key": signer.address}),
        make_response(body="0x" + message.hex()),
        make_response(202, {"type": "pending_transaction", "hash": "0xfeed"}),
    ]

    pending = client.submit_transaction(payload, signer)

    assert pending["hash"] == "0xfeed"
    encode_call, submit_call = client.session.request.call_args_list[1:]
    assert encode_call[0][1] == f"{BASE_URL}/transactions/encode_submission"
    body = submit_call[1]["json"]
    assert body["sender"] == signer.address
    assert body["sequence_number"] == "4"
    assert body["payload"]["function"] == f"{MODULE_ADDRESS}::moove_money::send_move_equal_to_multiple"
    assert body["payload"]["arguments"] == [["0x1", "0x2"], "10"]
    signature = bytes.fromhex(body["signature"]["signature"][2:])
    assert verify_signature(body["signature"]["public_key"], message, signature)


def test_fund_account_uses_faucet(client):
    client.session.request.return_value = make_response(body=["0xabc"])
    assert client.fund_account("0x1", 100) == ["0xabc"]
    method, url = client.session.request.call_args[0]
    assert (method, url) == ("POST", "https://faucet.example/mint")
    assert client.session.request.call_args[1]["params"] == {"amount": 100, "address": "0x1"}


def test_fund_account_without_faucet():
    with pytest.raises(LedgerError):
        LedgerClient(BASE_URL).fund_account("0x1", 1)
