"""
Trader leaderboard.

Ranking is a pure function over TradingStats records: volume (tokens bought plus tokens
sold) descending, then earliest last trade, then owner key. The same function serves
two callers:

- the GetLeaderboard instruction, which ranks only the read-only stats accounts passed
  to it and returns the page as return data, and
- ``fetch_leaderboard``, an off-chain scan of every stats account the program owns
  through ``getProgramAccounts``.
"""
from typing import Iterable, List, Optional

import httpx
from construct import PrefixedArray, Int8ul
from solders.pubkey import Pubkey

from mcp_solana_curve import solana_utils
from mcp_solana_curve.accounts import find_trading_stats_address, find_user_profile_address
from mcp_solana_curve.errors import InvalidInstructionError
from mcp_solana_curve.schemas import LeaderboardEntryModel, LeaderboardModel
from mcp_solana_curve.state import TRADING_STATS_LAYOUT, TRADING_STATS_SIZE, TradingStats, UserProfile
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

MAX_LEADERBOARD_LIMIT = 100

RANKING_LAYOUT = PrefixedArray(Int8ul, TRADING_STATS_LAYOUT)


def validate_page(limit: int, offset: int) -> None:
    if not 1 <= limit <= MAX_LEADERBOARD_LIMIT:
        raise InvalidInstructionError(f"Leaderboard limit must be 1-{MAX_LEADERBOARD_LIMIT}, got {limit}")
    if offset < 0:
        raise InvalidInstructionError(f"Leaderboard offset must be non-negative, got {offset}")


def ranking_key(stats: TradingStats):
    return (-stats.volume, stats.last_trade_timestamp, bytes(stats.owner))


def rank_traders(stats: Iterable[TradingStats], limit: int, offset: int = 0) -> List[TradingStats]:
    """Returns one page of traders, best first."""
    validate_page(limit, offset)
    ranked = sorted(stats, key=ranking_key)
    return ranked[offset:offset + limit]


def encode_ranking(ranked: List[TradingStats]) -> bytes:
    return RANKING_LAYOUT.build(
        [TRADING_STATS_LAYOUT.parse(entry.to_bytes()) for entry in ranked]
    )


def decode_ranking(data: bytes) -> List[TradingStats]:
    return [TradingStats.from_bytes(TRADING_STATS_LAYOUT.build(raw)) for raw in RANKING_LAYOUT.parse(data)]


def to_model(ranked: List[TradingStats], limit: int, offset: int, usernames: Optional[dict] = None) -> LeaderboardModel:
    usernames = usernames or {}
    entries = [
        LeaderboardEntryModel(
            rank=offset + index + 1,
            owner=str(stats.owner),
            volume=stats.volume,
            total_bought=stats.total_bought,
            total_sold=stats.total_sold,
            buy_count=stats.buy_count,
            sell_count=stats.sell_count,
            last_trade_timestamp=stats.last_trade_timestamp,
            username=usernames.get(stats.owner),
        )
        for index, stats in enumerate(ranked)
    ]
    return LeaderboardModel(limit=limit, offset=offset, entries=entries)


async def fetch_leaderboard(
    client: httpx.AsyncClient,
    program_id: Pubkey,
    limit: int,
    offset: int = 0,
    mint: Optional[Pubkey] = None,
) -> LeaderboardModel:
    """
    Scans every TradingStats account owned by the program and ranks them.

    When ``mint`` is given only stats records derived for that mint are kept; the
    record itself does not store its mint, so membership is checked by re-deriving
    each account's address.
    """
    validate_page(limit, offset)
    raw_accounts = await solana_utils.get_program_accounts(client, program_id, data_size=TRADING_STATS_SIZE)

    stats = []
    for address, data in raw_accounts:
        record = TradingStats.from_bytes(data)
        if mint is not None and find_trading_stats_address(mint, record.owner, program_id)[0] != address:
            continue
        stats.append(record)
    logger.info(f"Leaderboard scan found {len(stats)} trading stats accounts")

    ranked = rank_traders(stats, limit, offset)
    profile_addresses = [find_user_profile_address(entry.owner, program_id)[0] for entry in ranked]
    profiles = await solana_utils.get_multiple_accounts(client, profile_addresses)

    usernames = {}
    for entry, data in zip(ranked, profiles):
        if data:
            usernames[entry.owner] = UserProfile.from_bytes(data).username
    return to_model(ranked, limit, offset, usernames)
