"""
Bonding Curve Server - MCP Server Implementation

This module exposes read-only views of the bonding curve program as MCP tools. Every
tool fetches the relevant accounts over JSON-RPC, decodes them with the same record
layouts the program writes, and prices trades with the same integer pricing engine the
program executes, so a quote here is exactly what the program would charge at the
current supply.

Tools:
- get_curve_info: Curve parameters, supply, reserve and current spot price for a mint
- quote_buy / quote_sell: Cost or proceeds of a trade, fee included
- get_token_balance: A wallet's token balance for a mint
- get_profile: A user's on-chain profile
- get_leaderboard: Traders ranked by volume

Error Handling:
- Invalid input and program errors are returned as short messages
- RPC failures are reported without internal details
- Unexpected errors are logged with traceback
"""

import httpx

from pydantic import Field
from solders.pubkey import Pubkey

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.fastmcp.utilities.logging import get_logger

from mcp_solana_curve import config
from mcp_solana_curve import leaderboard
from mcp_solana_curve import pricing
from mcp_solana_curve import solana_utils
from mcp_solana_curve.errors import AccountFetchError, CurveProgramError
from mcp_solana_curve.schemas import CurveInfoModel, ProfileModel, TradeQuoteModel

logger = get_logger(__name__)

# Constants
MAX_PUBKEY_LENGTH = 44

# --- Server Setup ---
mcp = FastMCP(name="Solana Bonding Curve Server")


def _http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(config.RPC_TIMEOUT_SECONDS, connect=5.0),
        limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
    )


def parse_pubkey(value: str, name: str) -> Pubkey:
    """Parses a base58 address, raising ValueError with a readable message."""
    if not value or not isinstance(value, str):
        raise ValueError(f"{name} must be a non-empty string")
    if len(value) > MAX_PUBKEY_LENGTH:
        raise ValueError(f"{name} is too long")
    try:
        return Pubkey.from_string(value)
    except ValueError:
        raise ValueError(f"{name} is not a valid public key")


def validate_token_amount(amount: int) -> None:
    if not isinstance(amount, int) or amount <= 0:
        raise ValueError("Amount must be a positive integer")
    if amount > pricing.U64_MAX:
        raise ValueError("Amount is too large")


def to_quote_model(quote: pricing.TradeQuote) -> TradeQuoteModel:
    return TradeQuoteModel(
        side=quote.side,
        token_amount=quote.token_amount,
        unit_price=quote.unit_price,
        gross_amount=quote.gross_amount,
        fee=quote.fee,
        net_amount=quote.net_amount,
        new_supply=quote.new_supply,
    )


# --- MCP Tools ---

@mcp.tool()
async def get_curve_info(context: Context, mint: str = Field(..., description="The token mint address.")) -> str:
    """Get the parameters and current state of a token's bonding curve."""
    try:
        mint_key = parse_pubkey(mint, "Mint")
        async with _http_client() as client:
            address, curve = await solana_utils.get_bonding_curve(client, mint_key, config.PROGRAM_ID)

        info = CurveInfoModel(
            address=str(address),
            authority=str(curve.authority),
            mint=str(curve.mint),
            treasury=str(curve.treasury),
            fee_recipient=str(curve.fee_recipient),
            curve_type=curve.curve_type,
            base_price=curve.base_price,
            slope=curve.slope,
            max_supply=curve.max_supply,
            current_supply=curve.current_supply,
            reserve_balance=curve.reserve_balance,
            fee_basis_points=curve.fee_basis_points,
            spot_price=pricing.price_at(curve.curve_type, curve.base_price, curve.slope, curve.current_supply),
            remaining_supply=curve.remaining_supply,
        )
        return info.model_dump_json(indent=2)
    except ValueError as e:
        logger.error(f"Invalid input to get_curve_info: {e}")
        return f"Error: {e}"
    except AccountFetchError as e:
        logger.warning(f"Could not load bonding curve for {mint}: {e}")
        return f"Bonding curve for mint {mint} not found."
    except CurveProgramError as e:
        logger.error(f"Pricing error in get_curve_info for {mint}: {e.message}")
        return f"Error: {e.code}: {e.message}"
    except Exception as e:
        logger.exception(f"Unexpected error getting curve info for {mint}: {e}")
        return "An unexpected error occurred while retrieving curve information."


async def _quote(side: str, mint: str, amount: int) -> str:
    try:
        mint_key = parse_pubkey(mint, "Mint")
        validate_token_amount(amount)
        async with _http_client() as client:
            _, curve = await solana_utils.get_bonding_curve(client, mint_key, config.PROGRAM_ID)

        if side == "buy":
            if curve.current_supply + amount > curve.max_supply:
                return f"Error: only {curve.remaining_supply} tokens remain on this curve."
            quote = pricing.quote_buy(curve, amount)
        else:
            if amount > curve.current_supply:
                return f"Error: only {curve.current_supply} tokens are in circulation."
            quote = pricing.quote_sell(curve, amount)
        logger.info(f"Quoted {side} of {amount} on {mint}: net={quote.net_amount} lamports")
        return to_quote_model(quote).model_dump_json(indent=2)
    except ValueError as e:
        logger.error(f"Invalid input to quote_{side}: {e}")
        return f"Error: {e}"
    except AccountFetchError as e:
        logger.warning(f"Could not load bonding curve for {mint}: {e}")
        return f"Bonding curve for mint {mint} not found."
    except CurveProgramError as e:
        logger.error(f"Pricing error quoting {side} on {mint}: {e.message}")
        return f"Error: {e.code}: {e.message}"
    except Exception as e:
        logger.exception(f"Unexpected error quoting {side} on {mint}: {e}")
        return "An unexpected error occurred while computing the quote."


@mcp.tool()
async def quote_buy(
    context: Context,
    mint: str = Field(..., description="The token mint address."),
    amount: int = Field(..., description="Number of tokens to buy (in base units)."),
) -> str:
    """Quote the total lamports needed to buy tokens, protocol fee included."""
    return await _quote("buy", mint, amount)


@mcp.tool()
async def quote_sell(
    context: Context,
    mint: str = Field(..., description="The token mint address."),
    amount: int = Field(..., description="Number of tokens to sell (in base units)."),
) -> str:
    """Quote the lamports received for selling tokens, after the protocol fee."""
    return await _quote("sell", mint, amount)


@mcp.tool()
async def get_token_balance(
    context: Context,
    owner: str = Field(..., description="The wallet address."),
    mint: str = Field(..., description="The token mint address."),
) -> str:
    """Get a wallet's token balance (in base units)."""
    try:
        owner_key = parse_pubkey(owner, "Owner")
        mint_key = parse_pubkey(mint, "Mint")
        async with _http_client() as client:
            balance = await solana_utils.get_token_balance(client, owner_key, mint_key)
        return f"{balance}"
    except ValueError as e:
        logger.error(f"Invalid input to get_token_balance: {e}")
        return f"Error: {e}"
    except AccountFetchError as e:
        logger.warning(f"Could not fetch token balance of {owner}: {e}")
        return "Error: token balance could not be retrieved."
    except Exception as e:
        logger.exception(f"Unexpected error getting token balance of {owner}: {e}")
        return "An unexpected error occurred while retrieving the token balance."


@mcp.tool()
async def get_profile(context: Context, user: str = Field(..., description="The wallet address.")) -> str:
    """Get a user's on-chain profile."""
    try:
        user_key = parse_pubkey(user, "User")
        async with _http_client() as client:
            profile = await solana_utils.get_user_profile(client, user_key, config.PROGRAM_ID)
        if profile is None:
            return f"No profile found for {user}."
        return ProfileModel(owner=str(profile.owner), username=profile.username, bio=profile.bio).model_dump_json(indent=2)
    except ValueError as e:
        logger.error(f"Invalid input to get_profile: {e}")
        return f"Error: {e}"
    except (AccountFetchError, CurveProgramError) as e:
        logger.warning(f"Could not load profile of {user}: {e}")
        return f"Profile for {user} could not be loaded."
    except Exception as e:
        logger.exception(f"Unexpected error getting profile of {user}: {e}")
        return "An unexpected error occurred while retrieving the profile."


@mcp.tool()
async def get_leaderboard(
    context: Context,
    limit: int = Field(10, description="Number of traders to return (1-100)."),
    offset: int = Field(0, description="Number of top traders to skip."),
    mint: str = Field("", description="Only rank traders of this mint (optional)."),
) -> str:
    """Rank traders by total tokens bought and sold."""
    try:
        mint_key = parse_pubkey(mint, "Mint") if mint else None
        async with _http_client() as client:
            board = await leaderboard.fetch_leaderboard(client, config.PROGRAM_ID, limit, offset, mint_key)
        return board.model_dump_json(indent=2)
    except ValueError as e:
        logger.error(f"Invalid input to get_leaderboard: {e}")
        return f"Error: {e}"
    except CurveProgramError as e:
        logger.error(f"Invalid leaderboard request: {e.message}")
        return f"Error: {e.code}: {e.message}"
    except AccountFetchError as e:
        logger.warning(f"Leaderboard scan failed: {e}")
        return "Error: leaderboard could not be retrieved."
    except Exception as e:
        logger.exception(f"Unexpected error building leaderboard: {e}")
        return "An unexpected error occurred while building the leaderboard."


# --- Main Execution ---
if __name__ == "__main__":
    logger.info(f"Starting Solana Bonding Curve MCP Server for program {config.PROGRAM_ID}...")
    try:
        mcp.run(transport="stdio")
    except KeyboardInterrupt:
        logger.info("Server shutdown requested by user")
    except Exception as e:
        logger.exception(f"Server error: {e}")
    finally:
        logger.info("Solana Bonding Curve MCP Server stopped.")
