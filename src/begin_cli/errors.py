"""Error taxonomy for begin-cli.

Every failure raised by the package is a :class:`BeginCliError` tagged with
an :class:`ErrorKind`.  Callers dispatch on ``err.kind`` instead of on
exception subclasses, and the structured fields (``stage``, ``wallet``,
``tx_id``) tell the operator how far an operation progressed.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    INPUT = "input"
    AUTHENTICATION_FAILED = "authentication_failed"
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    INVALID_MNEMONIC = "invalid_mnemonic"
    UNSUPPORTED_FORMAT = "unsupported_format"
    NETWORK = "network"
    BUILD_FAILED = "build_failed"
    SIGNING_FAILED = "signing_failed"
    SUBMISSION_FAILED = "submission_failed"
    UNCONFIRMED_TIMEOUT = "unconfirmed_timeout"


# Kinds the operator can fix by changing their input; these exit with 2.
USER_ERROR_KINDS = frozenset({
    ErrorKind.INPUT,
    ErrorKind.AUTHENTICATION_FAILED,
    ErrorKind.NOT_FOUND,
    ErrorKind.ALREADY_EXISTS,
    ErrorKind.INVALID_MNEMONIC,
})

_DEFAULT_CODES: dict[ErrorKind, str] = {
    ErrorKind.INPUT: "INVALID_INPUT",
    ErrorKind.AUTHENTICATION_FAILED: "WALLET_LOCKED",
    ErrorKind.NOT_FOUND: "WALLET_NOT_FOUND",
    ErrorKind.ALREADY_EXISTS: "WALLET_EXISTS",
    ErrorKind.INVALID_MNEMONIC: "INVALID_MNEMONIC",
    ErrorKind.UNSUPPORTED_FORMAT: "UNSUPPORTED_FORMAT",
    ErrorKind.NETWORK: "NETWORK_ERROR",
    ErrorKind.BUILD_FAILED: "BUILD_FAILED",
    ErrorKind.SIGNING_FAILED: "SIGNING_FAILED",
    ErrorKind.SUBMISSION_FAILED: "SUBMISSION_FAILED",
    ErrorKind.UNCONFIRMED_TIMEOUT: "TIMEOUT",
}

AUTH_FAILED_MESSAGE = "Incorrect password or corrupted wallet file"

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_USER_ERROR = 2


class BeginCliError(Exception):
    """A tagged failure.

    Parameters
    ----------
    kind:
        The error category used for dispatch and exit codes.
    message:
        Human-readable description, safe to print.
    code:
        Stable machine-readable code for JSON output.  Defaults per *kind*.
    stage:
        Lifecycle stage that was active when the failure happened.
    wallet:
        Wallet name involved, if any.
    tx_id:
        Transaction identifier already obtained, if any.
    retryable:
        Whether the Retrying Remote Client may try the call again.
    status:
        HTTP status code of the failed call, for network errors.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        code: Optional[str] = None,
        stage: Optional[str] = None,
        wallet: Optional[str] = None,
        tx_id: Optional[str] = None,
        retryable: bool = False,
        status: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.code = code or _DEFAULT_CODES[kind]
        self.stage = stage
        self.wallet = wallet
        self.tx_id = tx_id
        self.retryable = retryable
        self.status = status

    @property
    def exit_code(self) -> int:
        return EXIT_USER_ERROR if self.kind in USER_ERROR_KINDS else EXIT_FAILURE

    def with_context(
        self,
        *,
        stage: Optional[str] = None,
        wallet: Optional[str] = None,
        tx_id: Optional[str] = None,
    ) -> BeginCliError:
        """Fill in missing context fields and return ``self``."""
        self.stage = self.stage or stage
        self.wallet = self.wallet or wallet
        self.tx_id = self.tx_id or tx_id
        return self

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": False,
            "error": self.message,
            "code": self.code,
        }
        for key in ("stage", "wallet", "tx_id"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data

    def __repr__(self) -> str:
        return f"BeginCliError({self.kind.value}, {self.code}, {self.message!r})"


# ---------------------------------------------------------------------------
# Constructors
# ---------------------------------------------------------------------------

def input_error(message: str, code: str = "INVALID_INPUT") -> BeginCliError:
    return BeginCliError(ErrorKind.INPUT, message, code=code)


def auth_failed(wallet: Optional[str] = None) -> BeginCliError:
    """Wrong password and corrupted ciphertext share one message."""
    return BeginCliError(ErrorKind.AUTHENTICATION_FAILED, AUTH_FAILED_MESSAGE, wallet=wallet)


def not_found(name: str) -> BeginCliError:
    return BeginCliError(
        ErrorKind.NOT_FOUND,
        f"Wallet '{name}' not found",
        wallet=name,
    )


def already_exists(name: str) -> BeginCliError:
    return BeginCliError(
        ErrorKind.ALREADY_EXISTS,
        f"Wallet '{name}' already exists. Delete it first or choose another name.",
        wallet=name,
    )


def invalid_mnemonic(message: str = "Invalid mnemonic: checksum or word list check failed") -> BeginCliError:
    return BeginCliError(ErrorKind.INVALID_MNEMONIC, message)


def unsupported_format(message: str) -> BeginCliError:
    return BeginCliError(ErrorKind.UNSUPPORTED_FORMAT, message)


def network_error(
    message: str,
    *,
    retryable: bool,
    status: Optional[int] = None,
    code: Optional[str] = None,
) -> BeginCliError:
    if code is None:
        code = "PROVIDER_ERROR" if status is not None else "NETWORK_ERROR"
    return BeginCliError(
        ErrorKind.NETWORK,
        message,
        code=code,
        retryable=retryable,
        status=status,
    )


def stage_failed(
    kind: ErrorKind,
    stage: str,
    cause: BaseException,
    *,
    wallet: Optional[str] = None,
    tx_id: Optional[str] = None,
) -> BeginCliError:
    """Wrap *cause* into a lifecycle-stage error, keeping its code if it has one."""
    code = cause.code if isinstance(cause, BeginCliError) else None
    err = BeginCliError(
        kind,
        str(cause) or cause.__class__.__name__,
        code=code,
        stage=stage,
        wallet=wallet,
        tx_id=tx_id,
    )
    err.__cause__ = cause
    return err
