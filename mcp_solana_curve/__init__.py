"""
Solana Bonding Curve Package Initialization

This package implements the core of a bonding-curve token program: a deterministic
integer pricing engine, the instruction decoder and account validator, and a pure
instruction processor that turns one instruction into a state diff plus explicit
effect requests. Around the core it provides a local in-memory host, JSON-RPC read
helpers, instruction builders, an MCP server and a Solana Actions endpoint.

The package includes:
- Linear, exponential and logarithmic curves in 1e9 fixed point
- Basis-point protocol fees
- BondingCurve, TradingStats and UserProfile record layouts
- Initialize, BuyTokens, SellTokens, UpdateProfile and GetLeaderboard instructions
- Custom error handling with stable error codes
"""
