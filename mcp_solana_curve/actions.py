import base64
import os
from typing import Any, Dict, Tuple

import httpx
from flask import Flask, jsonify, request
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from mcp_solana_curve import config
from mcp_solana_curve import pricing
from mcp_solana_curve import solana_utils
from mcp_solana_curve.errors import AccountFetchError, CurveProgramError
from mcp_solana_curve.fees import BPS_DENOM
from mcp_solana_curve.instruction_builder import buy_instruction
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


app = Flask(__name__)

# --- Action Metadata ---
ACTION_TITLE = "Bonding Curve Token"
ACTION_DESCRIPTION = "Buy tokens from the bonding curve. Price rises with every token issued."
ACTION_LABEL = "Buy Tokens"
MAX_SERIALIZED_TRANSACTION_BYTES = 1232


def get_cors_headers(origin: str) -> Dict[str, str]:
    """Get CORS headers with origin validation."""
    allowed_origin = "*"
    if "*" not in config.CORS_ALLOWED_ORIGINS:
        if origin in config.CORS_ALLOWED_ORIGINS:
            allowed_origin = origin
        else:
            allowed_origin = config.CORS_ALLOWED_ORIGINS[0] if config.CORS_ALLOWED_ORIGINS else "null"

    return {
        'Access-Control-Allow-Origin': allowed_origin,
        'Access-Control-Allow-Methods': 'GET, POST, OPTIONS',
        'Access-Control-Allow-Headers': 'Content-Type, Authorization',
        'Access-Control-Max-Age': '3600',
        'Access-Control-Allow-Credentials': 'false'
    }


def max_payment_with_slippage(total: int, slippage_bps: int) -> int:
    """Upper bound on what the buyer agrees to pay, rounded up."""
    return -(-total * (BPS_DENOM + slippage_bps) // BPS_DENOM)


# --- Flask Routes ---

@app.route('/buy_tokens_action', methods=['OPTIONS'])
def handle_options_buy_tokens() -> Tuple[str, int, Dict[str, str]]:
    """Handles CORS preflight requests."""
    origin = request.headers.get('Origin', '*')
    return '', 204, get_cors_headers(origin)


@app.route('/buy_tokens_action', methods=['GET'])
def get_buy_tokens_action_metadata() -> Tuple[Any, int, Dict[str, str]]:
    """Provides metadata for the Solana Action."""
    cors_headers = get_cors_headers(request.headers.get('Origin', '*'))
    mint = request.args.get("mint", "")
    metadata = {
        "icon": config.ACTION_ICON_URL,
        "title": ACTION_TITLE,
        "description": ACTION_DESCRIPTION,
        "label": ACTION_LABEL,
        "links": {
            "actions": [
                {
                    "label": ACTION_LABEL,
                    "href": f"/buy_tokens_action?mint={mint}&amount={{amount}}",
                    "parameters": [
                        {"name": "amount", "label": "Amount of tokens to buy (base units)", "required": True}
                    ],
                }
            ]
        },
    }
    return jsonify(metadata), 200, cors_headers


@app.route('/buy_tokens_action', methods=['POST'])
async def post_buy_tokens_action() -> Tuple[Any, int, Dict[str, str]]:
    """Builds an unsigned BuyTokens transaction for the wallet to sign and send."""
    cors_headers = get_cors_headers(request.headers.get('Origin', '*'))

    try:
        if not request.is_json:
            return jsonify({"message": "Content-Type must be application/json"}), 415, cors_headers
        payload = request.get_json(silent=True)
        if not payload:
            return jsonify({"message": "Empty or invalid JSON payload"}), 400, cors_headers

        account_str = payload.get("account")
        if not isinstance(account_str, str) or not account_str.strip():
            return jsonify({"message": "Account not provided in request"}), 400, cors_headers
        try:
            buyer = Pubkey.from_string(account_str.strip())
        except ValueError:
            logger.warning(f"Invalid user account address: {account_str}")
            return jsonify({"message": f"Invalid user account address: {account_str}"}), 400, cors_headers

        mint_str = request.args.get("mint") or payload.get("mint")
        if not mint_str:
            return jsonify({"message": "Mint parameter is required"}), 400, cors_headers
        try:
            mint = Pubkey.from_string(mint_str)
        except ValueError:
            return jsonify({"message": f"Invalid mint address: {mint_str}"}), 400, cors_headers

        try:
            amount = int(request.args.get("amount") or payload.get("amount"))
            slippage_bps = int(payload.get("slippage_bps", config.DEFAULT_SLIPPAGE_BPS))
        except (ValueError, TypeError):
            return jsonify({"message": "Amount and slippage must be valid integers"}), 400, cors_headers
        if amount <= 0 or amount > pricing.U64_MAX:
            return jsonify({"message": "Amount must be a positive u64"}), 400, cors_headers
        if not 0 <= slippage_bps <= BPS_DENOM:
            return jsonify({"message": f"Slippage must be between 0 and {BPS_DENOM} basis points"}), 400, cors_headers

        try:
            async with httpx.AsyncClient(timeout=config.RPC_TIMEOUT_SECONDS) as client:
                _, curve = await solana_utils.get_bonding_curve(client, mint, config.PROGRAM_ID)
                blockhash = await solana_utils.get_latest_blockhash(client)
        except AccountFetchError as e:
            logger.error(f"Could not prepare buy of {mint}: {e}")
            return jsonify({"message": "Bonding curve or blockhash unavailable"}), 503, cors_headers

        if curve.current_supply + amount > curve.max_supply:
            return jsonify({"message": f"Only {curve.remaining_supply} tokens remain"}), 400, cors_headers
        try:
            quote = pricing.quote_buy(curve, amount)
        except CurveProgramError as e:
            return jsonify({"message": f"{e.code}: {e.message}"}), 400, cors_headers

        max_sol_amount = min(max_payment_with_slippage(quote.net_amount, slippage_bps), pricing.U64_MAX)
        ix = buy_instruction(buyer, mint, curve.fee_recipient, amount, max_sol_amount, config.PROGRAM_ID)
        message = Message.new_with_blockhash([ix], buyer, blockhash)
        serialized = bytes(Transaction.new_unsigned(message))
        if len(serialized) > MAX_SERIALIZED_TRANSACTION_BYTES:
            logger.error(f"Transaction too large for mint {mint}")
            return jsonify({"message": "Transaction too large to process"}), 400, cors_headers

        logger.info(f"Generated buy transaction for {buyer}: {amount} tokens of {mint}, max {max_sol_amount} lamports")
        response_body = {
            "transaction": base64.b64encode(serialized).decode("ascii"),
            "message": f"Buy {amount} tokens for about {quote.net_amount} lamports (fee {quote.fee})",
        }
        return jsonify(response_body), 200, cors_headers

    except Exception as e:
        logger.exception(f"Unexpected error in post_buy_tokens_action: {e}")
        return jsonify({"message": "An unexpected server error occurred"}), 500, cors_headers


# --- Main Execution (for running Flask app directly) ---
if __name__ == '__main__':
    port = config.ACTIONS_PORT
    logger.info(f"Starting Flask Action API server on port {port}...")
    app.run(debug=os.getenv("FLASK_DEBUG", "False").lower() == "true", port=port, host="0.0.0.0")
