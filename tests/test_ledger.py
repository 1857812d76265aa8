from __future__ import annotations

import base64
import json

import httpx
import pytest
from cosmpy.protos.cosmos.bank.v1beta1.tx_pb2 import MsgSend
from cosmpy.protos.cosmos.base.v1beta1.coin_pb2 import Coin
from cosmpy.protos.cosmos.tx.v1beta1.tx_pb2 import AuthInfo, Fee, TxBody, TxRaw
from google.protobuf.any_pb2 import Any

from taxfiller.sources.ledger import (
    MSG_SEND_TYPE_URL,
    DecodedTx,
    LedgerClient,
    OtherMessage,
    TxDecoder,
    ValueTransfer,
    extract_tx_bytes,
)

AUCTION_HOUSE = "juno10auctionhouse"
NODE = "http://node.test:26657"


def _send(sender: str, receiver: str, amount: int, denom: str = "ujuno") -> Any:
    msg = MsgSend(from_address=sender, to_address=receiver, amount=[Coin(denom=denom, amount=str(amount))])
    return Any(type_url=MSG_SEND_TYPE_URL, value=msg.SerializeToString())


def _raw_tx(messages: list[Any], fee: int | None = 5) -> bytes:
    body = TxBody(messages=messages)
    fee_coins = [Coin(denom="ujuno", amount=str(fee))] if fee is not None else []
    auth_info = AuthInfo(fee=Fee(amount=fee_coins, gas_limit=200_000))
    raw = TxRaw(body_bytes=body.SerializeToString(), auth_info_bytes=auth_info.SerializeToString())
    return raw.SerializeToString()


def _rpc_body(raw: bytes) -> dict:
    return {"jsonrpc": "2.0", "id": -1, "result": {"hash": "ABC", "height": "10", "tx": base64.b64encode(raw).decode()}}


def _client(handler) -> LedgerClient:
    ledger = LedgerClient(node_address=NODE, auction_house=AUCTION_HOUSE, max_attempts=2)
    ledger._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ledger


class TestTxDecoder:
    def test_decodes_value_transfer_and_fee(self) -> None:
        decoded = TxDecoder().decode(_raw_tx([_send("juno1a", AUCTION_HOUSE, 1000)], fee=5))

        assert decoded == DecodedTx(fee=5, messages=(ValueTransfer("juno1a", AUCTION_HOUSE, 1000),))
        assert decoded.payment_into(AUCTION_HOUSE) == (1000, 5)
        assert decoded.payment_from(AUCTION_HOUSE) is None

    def test_unregistered_messages_become_other(self) -> None:
        wasm = Any(type_url="/cosmwasm.wasm.v1.MsgExecuteContract", value=b"\x0a\x03abc")
        decoded = TxDecoder().decode(_raw_tx([wasm, _send(AUCTION_HOUSE, "juno1val", 7)]))

        assert decoded is not None
        assert decoded.messages[0] == OtherMessage("/cosmwasm.wasm.v1.MsgExecuteContract")
        assert decoded.payment_from(AUCTION_HOUSE) == "juno1val"

    def test_send_without_coins_is_not_a_transfer(self) -> None:
        empty = Any(
            type_url=MSG_SEND_TYPE_URL,
            value=MsgSend(from_address="juno1a", to_address=AUCTION_HOUSE).SerializeToString(),
        )
        decoded = TxDecoder().decode(_raw_tx([empty]))

        assert decoded is not None
        assert decoded.transfers == ()
        assert decoded.payment_into(AUCTION_HOUSE) is None

    def test_tx_without_fee_is_ignored(self) -> None:
        assert TxDecoder().decode(_raw_tx([_send("juno1a", AUCTION_HOUSE, 1000)], fee=None)) is None

    def test_garbage_bytes_are_ignored(self) -> None:
        assert TxDecoder().decode(b"\xff\xff\xff\xff") is None

    def test_registry_is_read_only(self) -> None:
        decoder = TxDecoder()
        with pytest.raises(TypeError):
            decoder.registry["/x"] = MsgSend  # type: ignore[index]

    def test_first_matching_transfer_wins_within_a_tx(self) -> None:
        decoded = TxDecoder().decode(
            _raw_tx([_send("juno1a", AUCTION_HOUSE, 10), _send("juno1b", AUCTION_HOUSE, 20)], fee=3)
        )
        assert decoded is not None
        assert decoded.payment_into(AUCTION_HOUSE) == (10, 3)


@pytest.mark.parametrize(
    "payload",
    [
        None,
        [],
        {"error": {"code": -32603, "message": "tx not found"}},
        {"result": "nope"},
        {"result": {"hash": "ABC"}},
        {"result": {"tx": 12}},
        {"result": {"tx": "***not base64***"}},
    ],
)
def test_extract_tx_bytes_handles_missing_data(payload: object) -> None:
    assert extract_tx_bytes(payload) is None


@pytest.mark.asyncio
async def test_resolve_requests_hash_with_0x_prefix() -> None:
    raw = _raw_tx([_send("juno1a", AUCTION_HOUSE, 1000)])
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_rpc_body(raw))

    async with _client(handler) as ledger:
        decoded = await ledger.resolve("DEADBEEF")

    assert decoded is not None
    assert seen[0].url.path == "/tx"
    assert seen[0].url.params["hash"] == "0xDEADBEEF"


@pytest.mark.asyncio
async def test_check_auction_fee_and_validator_payment() -> None:
    bodies = {
        "0xFEE": _rpc_body(_raw_tx([_send("juno1searcher", AUCTION_HOUSE, 1000)], fee=5)),
        "0xPAY": _rpc_body(_raw_tx([_send(AUCTION_HOUSE, "junovaloper1val", 500)], fee=2)),
    }

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=bodies[request.url.params["hash"]])

    async with _client(handler) as ledger:
        assert await ledger.check_auction_fee("FEE") == (1000, 5)
        assert await ledger.check_auction_fee("PAY") == (0, 0)
        assert await ledger.check_validator_payment("PAY") == "junovaloper1val"
        assert await ledger.check_validator_payment("FEE") is None


@pytest.mark.asyncio
async def test_http_errors_are_not_a_match_and_not_retried() -> None:
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        return httpx.Response(500, text="internal error")

    async with _client(handler) as ledger:
        assert await ledger.resolve("ABC") is None
        assert await ledger.check_auction_fee("ABC") == (0, 0)
        assert await ledger.check_validator_payment("ABC") is None

    assert attempts == 3


@pytest.mark.asyncio
async def test_non_json_body_is_not_a_match() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>gateway</html>")

    async with _client(handler) as ledger:
        assert await ledger.resolve("ABC") is None


@pytest.mark.asyncio
async def test_transport_errors_are_retried() -> None:
    raw = _raw_tx([_send("juno1a", AUCTION_HOUSE, 42)], fee=1)
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise httpx.ConnectError("Connection refused", request=request)
        return httpx.Response(200, content=json.dumps(_rpc_body(raw)).encode())

    async with _client(handler) as ledger:
        assert await ledger.check_auction_fee("ABC") == (42, 1)

    assert attempts == 2


@pytest.mark.asyncio
async def test_exhausted_retries_are_not_a_match() -> None:
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        raise httpx.ReadTimeout("timed out", request=request)

    async with _client(handler) as ledger:
        assert await ledger.resolve("ABC") is None

    assert attempts == 2
