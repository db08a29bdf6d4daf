import os
import logging
from typing import List, Optional
from solders.pubkey import Pubkey
from dotenv import load_dotenv

# Import custom errors
from mcp_solana_curve.errors import ConfigurationError

"""
Configuration Management for the Bonding Curve Program

This module loads the settings shared by the instruction processor, the local host,
the RPC helpers, the MCP server and the Actions endpoint. Values come from
environment variables (optionally via a .env file) with defaults suitable for a
local validator.

Configuration Sources (in order of precedence):
1. Environment variables
2. Default values defined in this module

Environment Variables:
    PROGRAM_ID: Address of the deployed bonding curve program
    RPC_ENDPOINT: Solana RPC endpoint URL
    RESERVE_CAP_LAMPORTS: Maximum reserve a curve may hold (0 disables the cap)
    DEFAULT_SLIPPAGE_BPS: Slippage allowance applied to quotes built by the Actions API
    RPC_TIMEOUT_SECONDS: Timeout for JSON-RPC requests
    CORS_ALLOWED_ORIGINS: Comma-separated allowed CORS origins
    ACTIONS_PORT: Port for the Action API server
    ACTION_ICON_URL: Icon shown by wallets rendering the Action
"""

# Set up logger
logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()


def _get_env_str(key: str, default: str, required: bool = False) -> str:
    """Get environment variable as string with validation."""
    value = os.getenv(key, default)
    if required and not value:
        raise ConfigurationError(f"Required environment variable {key} is not set")
    return value


def _get_env_int(key: str, default: int, min_val: Optional[int] = None, max_val: Optional[int] = None) -> int:
    """Get environment variable as integer with validation."""
    try:
        value = int(os.getenv(key, str(default)))
    except ValueError:
        raise ConfigurationError(f"Environment variable {key} must be a valid integer")
    if min_val is not None and value < min_val:
        raise ConfigurationError(f"Environment variable {key} must be >= {min_val}")
    if max_val is not None and value > max_val:
        raise ConfigurationError(f"Environment variable {key} must be <= {max_val}")
    return value


def _get_env_float(key: str, default: float, min_val: Optional[float] = None) -> float:
    """Get environment variable as float with validation."""
    try:
        value = float(os.getenv(key, str(default)))
    except ValueError:
        raise ConfigurationError(f"Environment variable {key} must be a valid float")
    if min_val is not None and value < min_val:
        raise ConfigurationError(f"Environment variable {key} must be >= {min_val}")
    return value


def _get_env_pubkey(key: str, default: str) -> Pubkey:
    """Get environment variable as Pubkey with validation."""
    value = os.getenv(key, default)
    try:
        return Pubkey.from_string(value)
    except ValueError as e:
        raise ConfigurationError(f"Environment variable {key} must be a valid public key: {e}")


def _get_env_list(key: str, default: str) -> List[str]:
    """Get environment variable as a comma-separated list."""
    return [item.strip() for item in os.getenv(key, default).split(",") if item.strip()]


LAMPORTS_PER_SOL = 10**9
U64_MAX = 2**64 - 1

# --- Program Configuration ---
try:
    PROGRAM_ID = _get_env_pubkey("PROGRAM_ID", "7utv7LmctA7qFDHnKKdHAXuUV2WWSG49a4QaYythRZNZ")
    RPC_ENDPOINT = _get_env_str("RPC_ENDPOINT", "http://localhost:8899", required=True)
    RPC_TIMEOUT_SECONDS = _get_env_float("RPC_TIMEOUT_SECONDS", 10.0, min_val=0.1)

    # --- Trading Limits ---
    RESERVE_CAP_LAMPORTS = _get_env_int("RESERVE_CAP_LAMPORTS", 0, min_val=0, max_val=U64_MAX)
    DEFAULT_SLIPPAGE_BPS = _get_env_int("DEFAULT_SLIPPAGE_BPS", 100, min_val=0, max_val=10_000)

    # --- Action API Configuration ---
    CORS_ALLOWED_ORIGINS = _get_env_list("CORS_ALLOWED_ORIGINS", "*")
    ACTIONS_PORT = _get_env_int("ACTIONS_PORT", 5000, min_val=1024, max_val=65535)
    ACTION_ICON_URL = _get_env_str("ACTION_ICON_URL", "https://via.placeholder.com/150/0000FF/FFFFFF?text=CURVE")

    logger.info("Configuration loaded successfully")

except ConfigurationError as e:
    logger.error(f"Configuration error: {e}")
    raise
