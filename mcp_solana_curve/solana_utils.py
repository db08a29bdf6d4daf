import base64
from typing import List, Optional, Sequence, Tuple

import httpx
from solders.hash import Hash as Blockhash
from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from mcp_solana_curve.accounts import (
    find_bonding_curve_address,
    find_trading_stats_address,
    find_user_profile_address,
)
from mcp_solana_curve.config import RPC_ENDPOINT, PROGRAM_ID
from mcp_solana_curve.errors import AccountFetchError, CurveProgramError
from mcp_solana_curve.state import BondingCurve, TradingStats, UserProfile
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


# --- JSON-RPC ---

async def _rpc(client: httpx.AsyncClient, method: str, params: list):
    """Performs one JSON-RPC call and returns its ``result``."""
    try:
        resp = await client.post(
            RPC_ENDPOINT,
            json={"jsonrpc": "2.0", "id": 1, "method": method, "params": params},
        )
        resp.raise_for_status()
        payload = resp.json()
    except httpx.HTTPStatusError as e:
        logger.error(f"HTTP error calling {method}: {e.response.status_code} - {e.response.text}")
        raise AccountFetchError(f"HTTP error calling {method}: {e.response.status_code}")
    except httpx.HTTPError as e:
        logger.error(f"Transport error calling {method}: {e}")
        raise AccountFetchError(f"Could not reach RPC endpoint for {method}: {e}")

    if payload.get("error"):
        raise AccountFetchError(f"RPC error from {method}: {payload['error']}")
    if "result" not in payload:
        raise AccountFetchError(f"Unexpected response format from {method}")
    return payload["result"]


def _decode_account_data(value: Optional[dict]) -> Optional[bytes]:
    if not value:
        return None
    try:
        return base64.b64decode(value["data"][0])
    except (KeyError, IndexError, TypeError) as e:
        raise AccountFetchError(f"Malformed account data in RPC response: {e}")


async def get_account_info(client: httpx.AsyncClient, address: Pubkey) -> Optional[bytes]:
    """Returns the raw data of an account, or None if it does not exist."""
    result = await _rpc(
        client, "getAccountInfo", [str(address), {"encoding": "base64", "commitment": "confirmed"}]
    )
    return _decode_account_data(result.get("value"))


async def get_multiple_accounts(client: httpx.AsyncClient, addresses: Sequence[Pubkey]) -> List[Optional[bytes]]:
    if not addresses:
        return []
    result = await _rpc(
        client,
        "getMultipleAccounts",
        [[str(address) for address in addresses], {"encoding": "base64", "commitment": "confirmed"}],
    )
    return [_decode_account_data(value) for value in result.get("value", [])]


async def get_program_accounts(
    client: httpx.AsyncClient, program_id: Pubkey, data_size: Optional[int] = None
) -> List[Tuple[Pubkey, bytes]]:
    """Lists ``(address, data)`` for every account owned by ``program_id``."""
    config = {"encoding": "base64", "commitment": "confirmed"}
    if data_size is not None:
        config["filters"] = [{"dataSize": data_size}]
    result = await _rpc(client, "getProgramAccounts", [str(program_id), config])

    accounts = []
    for entry in result:
        try:
            address = Pubkey.from_string(entry["pubkey"])
        except (KeyError, ValueError) as e:
            raise AccountFetchError(f"Malformed program account entry: {e}")
        accounts.append((address, _decode_account_data(entry.get("account"))))
    return accounts


async def get_latest_blockhash(client: httpx.AsyncClient) -> Blockhash:
    result = await _rpc(client, "getLatestBlockhash", [{"commitment": "finalized"}])
    try:
        return Blockhash.from_string(result["value"]["blockhash"])
    except (KeyError, ValueError) as e:
        raise AccountFetchError(f"Malformed blockhash response: {e}")


# --- Token Balance ---

async def get_token_balance(client: httpx.AsyncClient, owner: Pubkey, mint: Pubkey) -> int:
    """Balance of the owner's associated token account for ``mint``; 0 if it does not exist."""
    account = get_associated_token_address(owner, mint)
    try:
        result = await _rpc(client, "getTokenAccountBalance", [str(account), {"commitment": "confirmed"}])
    except AccountFetchError as e:
        logger.debug(f"No token balance for {account}: {e}")
        return 0
    try:
        return int(result["value"]["amount"])
    except (KeyError, TypeError, ValueError):
        raise AccountFetchError(f"Unexpected response format for token balance of {account}")


# --- Program Records ---

async def get_bonding_curve(
    client: httpx.AsyncClient, mint: Pubkey, program_id: Pubkey = PROGRAM_ID
) -> Tuple[Pubkey, BondingCurve]:
    """Fetches and decodes the bonding curve of ``mint``."""
    address, _ = find_bonding_curve_address(mint, program_id)
    data = await get_account_info(client, address)
    if data is None:
        raise AccountFetchError(f"No bonding curve found for mint {mint}")
    try:
        curve = BondingCurve.from_bytes(data)
    except CurveProgramError as e:
        raise AccountFetchError(f"Bonding curve {address} could not be decoded: {e.message}")
    if not curve.initialized:
        raise AccountFetchError(f"Bonding curve {address} is not initialized")
    logger.debug(f"Fetched bonding curve {address}: supply={curve.current_supply}, reserve={curve.reserve_balance}")
    return address, curve


async def get_trading_stats(
    client: httpx.AsyncClient, mint: Pubkey, trader: Pubkey, program_id: Pubkey = PROGRAM_ID
) -> Optional[TradingStats]:
    address, _ = find_trading_stats_address(mint, trader, program_id)
    data = await get_account_info(client, address)
    return TradingStats.from_bytes(data) if data else None


async def get_user_profile(
    client: httpx.AsyncClient, user: Pubkey, program_id: Pubkey = PROGRAM_ID
) -> Optional[UserProfile]:
    address, _ = find_user_profile_address(user, program_id)
    data = await get_account_info(client, address)
    return UserProfile.from_bytes(data) if data else None
