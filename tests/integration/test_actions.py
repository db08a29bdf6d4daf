import base64

import pytest
from unittest.mock import AsyncMock, patch
from solders.hash import Hash
from solders.keypair import Keypair
from solders.transaction import Transaction

from mcp_solana_curve import actions
from mcp_solana_curve.config import PROGRAM_ID
from mcp_solana_curve.errors import AccountFetchError
from mcp_solana_curve.instructions import BuyTokens, decode_instruction

SCALE = 1_000_000_000


@pytest.fixture
def client():
    actions.app.config["TESTING"] = True
    with actions.app.test_client() as client:
        yield client


@pytest.fixture
def curve(make_curve):
    return make_curve(current_supply=SCALE, fee_basis_points=100, max_supply=5 * SCALE)


@pytest.fixture
def rpc(curve):
    with patch("mcp_solana_curve.solana_utils.get_bonding_curve", new_callable=AsyncMock) as mock_curve, \
         patch("mcp_solana_curve.solana_utils.get_latest_blockhash", new_callable=AsyncMock) as mock_blockhash:
        mock_curve.return_value = (Keypair().pubkey(), curve)
        mock_blockhash.return_value = Hash.default()
        yield mock_curve


def test_metadata(client):
    response = client.get("/buy_tokens_action?mint=abc")
    assert response.status_code == 200
    body = response.get_json()
    assert body["label"] == actions.ACTION_LABEL
    assert body["links"]["actions"][0]["href"].startswith("/buy_tokens_action?mint=abc")
    assert response.headers["Access-Control-Allow-Origin"] == "*"


def test_preflight(client):
    response = client.options("/buy_tokens_action")
    assert response.status_code == 204
    assert "POST" in response.headers["Access-Control-Allow-Methods"]


def test_post_requires_json(client):
    response = client.post("/buy_tokens_action", data="account=x")
    assert response.status_code == 415


def test_post_builds_buy_transaction(client, rpc, curve):
    buyer = Keypair().pubkey()
    response = client.post(
        f"/buy_tokens_action?mint={curve.mint}&amount={SCALE}",
        json={"account": str(buyer), "slippage_bps": 0},
    )

    assert response.status_code == 200, response.get_json()
    tx = Transaction.from_bytes(base64.b64decode(response.get_json()["transaction"]))
    assert tx.message.account_keys[0] == buyer
    ix = tx.message.instructions[0]
    assert tx.message.account_keys[ix.program_id_index] == PROGRAM_ID
    # spot price 2e9 per 1e9 tokens plus 1% fee, no slippage allowance
    assert decode_instruction(bytes(ix.data)) == BuyTokens(SCALE, 2 * SCALE + 20_000_000)


def test_slippage_allowance_rounds_up():
    assert actions.max_payment_with_slippage(1_000, 100) == 1_010
    assert actions.max_payment_with_slippage(999, 1) == 1_000


def test_post_past_max_supply(client, rpc, curve):
    response = client.post(
        f"/buy_tokens_action?mint={curve.mint}&amount={4 * SCALE + 1}",
        json={"account": str(Keypair().pubkey())},
    )
    assert response.status_code == 400


def test_post_invalid_account(client, rpc, curve):
    response = client.post(f"/buy_tokens_action?mint={curve.mint}&amount=1", json={"account": "nope"})
    assert response.status_code == 400
    rpc.assert_not_awaited()


def test_post_rpc_unavailable(client, curve):
    with patch("mcp_solana_curve.solana_utils.get_bonding_curve", new_callable=AsyncMock) as mock_curve:
        mock_curve.side_effect = AccountFetchError("connection refused")
        response = client.post(
            f"/buy_tokens_action?mint={curve.mint}&amount=1",
            json={"account": str(Keypair().pubkey())},
        )
    assert response.status_code == 503
