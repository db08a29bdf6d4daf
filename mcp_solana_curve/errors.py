"""
Custom Exception Classes for the Bonding Curve Program

This module defines the exception hierarchy raised by the bonding curve core while
decoding, validating and executing instructions, plus the few errors raised at the
configuration and RPC edges.

Exception Categories:
- ValidationError: Malformed payloads, wrong account roles, owners or derived addresses
- StateError: Record lifecycle and balance preconditions (initialized, supply, reserve)
- EconomicError: Slippage bounds, fee rates, zero amounts, curve parameters
- CurveArithmeticError: Overflow/underflow in fixed-point math

Every exception carries a stable ``code`` string. The processor entrypoint converts
raised errors into a tagged ``ProcessResult`` so callers receive the code without
having to catch anything.

Usage:
    Handlers raise the most specific subclass; callers that only care about the
    category catch the category class (e.g. ``except StateError``).
"""


class CurveProgramError(Exception):
    """Base class for every error raised by the bonding curve core."""

    code = "ProgramError"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__doc__)
        self.message = message or (self.__doc__ or self.code)


# --- Validation Errors ---

class ValidationError(CurveProgramError):
    """Raised when instruction data or accounts fail validation."""

    code = "ValidationError"


class InvalidInstructionError(ValidationError):
    """Raised for an unknown discriminator or a payload of the wrong size."""

    code = "InvalidInstructionData"


class InvalidCurveTypeError(ValidationError):
    """Raised when a curve type tag is not one of the enumerated curve shapes."""

    code = "InvalidCurveType"


class InvalidProfileDataError(ValidationError):
    """Raised when a username or bio is empty, too long or not valid UTF-8."""

    code = "InvalidProfileData"


class AccountValidationError(ValidationError):
    """Raised when a supplied account does not have its expected role."""

    code = "AccountValidationError"


class NotEnoughAccountKeysError(AccountValidationError):
    """Raised when an instruction is supplied fewer accounts than it requires."""

    code = "NotEnoughAccountKeys"


class MissingSignatureError(AccountValidationError):
    """Raised when a required signer did not sign."""

    code = "MissingRequiredSignature"


class AccountNotWritableError(AccountValidationError):
    """Raised when an account that must be written is passed read-only."""

    code = "AccountNotWritable"


class InvalidSeedsError(AccountValidationError):
    """Raised when a supplied address does not match its derived address."""

    code = "InvalidSeeds"


class IncorrectProgramIdError(AccountValidationError):
    """Raised when a program account is not the expected program."""

    code = "IncorrectProgramId"


class InvalidAccountOwnerError(AccountValidationError):
    """Raised when an account is owned by an unexpected program."""

    code = "InvalidAccountOwner"


class InvalidAccountDataError(AccountValidationError):
    """Raised when account data cannot be decoded or references the wrong keys."""

    code = "InvalidAccountData"


# --- State Errors ---

class StateError(CurveProgramError):
    """Raised when a record is not in the state an instruction requires."""

    code = "StateError"


class AlreadyInitializedError(StateError):
    """Raised when initializing a bonding curve that already exists."""

    code = "AccountAlreadyInitialized"


class NotInitializedError(StateError):
    """Raised when trading against a bonding curve that was never initialized."""

    code = "AccountNotInitialized"


class SupplyExceededError(StateError):
    """Raised when a buy would push current supply past the maximum supply."""

    code = "SupplyExceeded"


class InsufficientFundsError(StateError):
    """Raised when the paying account cannot cover the total cost of a buy."""

    code = "InsufficientFunds"


class InsufficientReserveError(StateError):
    """Raised when the reserve cannot cover the proceeds of a sell."""

    code = "InsufficientReserve"


class InsufficientTokenBalanceError(StateError):
    """Raised when a seller holds fewer tokens than the amount being sold."""

    code = "InsufficientTokenBalance"


class ReserveCapExceededError(StateError):
    """Raised when a buy would push the reserve past the configured cap."""

    code = "ReserveCapExceeded"


# --- Economic Errors ---

class EconomicError(CurveProgramError):
    """Raised when trade economics or curve parameters are out of bounds."""

    code = "EconomicError"


class SlippageExceededError(EconomicError):
    """Raised when the computed price is worse than the caller's slippage bound."""

    code = "SlippageExceeded"


class InvalidFeeBasisPointsError(EconomicError):
    """Raised when a fee rate is above 10000 basis points."""

    code = "InvalidFeeBasisPoints"


class InvalidTokenAmountError(EconomicError):
    """Raised for a zero-amount trade."""

    code = "InvalidTokenAmount"


class InvalidCurveParametersError(EconomicError):
    """Raised for a zero maximum supply, zero base price or invalid decimals."""

    code = "InvalidCurveParameters"


# --- Arithmetic Errors ---

class CurveArithmeticError(CurveProgramError, ArithmeticError):
    """Raised when fixed-point math overflows or underflows its integer width."""

    code = "ArithmeticOverflow"


# --- Edge Errors (configuration, RPC, host) ---

class ConfigurationError(Exception):
    """Raised when there are configuration-related errors."""


class AccountFetchError(Exception):
    """Raised when an account cannot be fetched or decoded from the RPC node."""


class TransactionFailedError(CurveProgramError):
    """Raised when the host cannot apply an instruction's effect requests."""

    code = "ExternalRequestFailed"
