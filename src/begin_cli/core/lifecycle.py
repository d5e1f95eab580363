"""Transaction lifecycle controller.

Every transaction (a transfer, a delegation, a reward withdrawal, a swap
or an order cancellation) moves through an explicit finite-state machine::

    Idle -> ResolvingSecret -> [PasswordPrompt] -> SecretLoaded -> Building
         -> Signing -> Submitting -> Confirming -> Succeeded
                                              +-> TimedOutUnconfirmed

``Failed`` is reachable from every non-terminal state and ``Cancelled``
from every state before submission.  The offline variant stops at
``SavedUnsigned`` after building; a later run resumes at ``Signing`` and
stops at ``SavedSigned``; a third resumes at ``Submitting``.

:func:`transition` is pure.  :class:`TransactionLifecycle` drives it,
calling out to the chain SDK for building and signing and to the chain
data provider for submission and confirmation polling.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Protocol, TypeVar

from begin_cli.core.sdk import ChainSDK
from begin_cli.core.transaction import (
    SignedTransaction,
    Intent,
    TxFile,
    UnsignedTransaction,
    default_signed_path,
    default_unsigned_path,
    load_tx_file,
    save_tx_file,
)
from begin_cli.errors import (
    BeginCliError,
    ErrorKind,
    input_error,
    stage_failed,
)
from begin_cli.services.blockfrost import ConfirmationStatus
from begin_cli.wallet.keystore import SigningHandle
from begin_cli.wallet.manager import SecretSource, WalletManager
from begin_cli.wallet.networks import Network

if TYPE_CHECKING:
    from begin_cli.storage.journal import TransactionJournal

logger = logging.getLogger("begin_cli.core.lifecycle")

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_MAX_ATTEMPTS = 60
DEFAULT_PASSWORD_ATTEMPTS = 3

_T = TypeVar("_T")


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

class TxState(str, Enum):
    IDLE = "idle"
    RESOLVING_SECRET = "resolving_secret"
    PASSWORD_PROMPT = "password_prompt"
    SECRET_LOADED = "secret_loaded"
    BUILDING = "building"
    SAVED_UNSIGNED = "saved_unsigned"
    SIGNING = "signing"
    SAVED_SIGNED = "saved_signed"
    SUBMITTING = "submitting"
    CONFIRMING = "confirming"
    SUCCEEDED = "succeeded"
    TIMED_OUT_UNCONFIRMED = "timed_out_unconfirmed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TxEvent(str, Enum):
    START = "start"
    NEED_PASSWORD = "need_password"
    AUTH_FAILED = "auth_failed"
    SECRET_LOADED = "secret_loaded"
    BUILD = "build"
    SIGN = "sign"
    BUILT = "built"
    SAVED = "saved"
    SIGNED = "signed"
    RESUME_SUBMIT = "resume_submit"
    SUBMITTED = "submitted"
    DETACHED = "detached"
    CONFIRMED = "confirmed"
    POLL_EXHAUSTED = "poll_exhausted"
    DECLINED = "declined"
    FAILED = "failed"


TERMINAL_STATES = frozenset({
    TxState.SAVED_UNSIGNED,
    TxState.SAVED_SIGNED,
    TxState.SUCCEEDED,
    TxState.TIMED_OUT_UNCONFIRMED,
    TxState.FAILED,
    TxState.CANCELLED,
})

# Nothing chain-visible has happened yet in these states.
PRE_COMMIT_STATES = frozenset({
    TxState.IDLE,
    TxState.RESOLVING_SECRET,
    TxState.PASSWORD_PROMPT,
    TxState.SECRET_LOADED,
    TxState.BUILDING,
    TxState.SIGNING,
})

_TRANSITIONS: dict[tuple[TxState, TxEvent], TxState] = {
    (TxState.IDLE, TxEvent.START): TxState.RESOLVING_SECRET,
    (TxState.IDLE, TxEvent.RESUME_SUBMIT): TxState.SUBMITTING,
    (TxState.RESOLVING_SECRET, TxEvent.NEED_PASSWORD): TxState.PASSWORD_PROMPT,
    (TxState.RESOLVING_SECRET, TxEvent.SECRET_LOADED): TxState.SECRET_LOADED,
    # Dry runs build from the cached sender address without unlocking.
    (TxState.RESOLVING_SECRET, TxEvent.BUILD): TxState.BUILDING,
    (TxState.PASSWORD_PROMPT, TxEvent.AUTH_FAILED): TxState.PASSWORD_PROMPT,
    (TxState.PASSWORD_PROMPT, TxEvent.SECRET_LOADED): TxState.SECRET_LOADED,
    (TxState.SECRET_LOADED, TxEvent.BUILD): TxState.BUILDING,
    (TxState.SECRET_LOADED, TxEvent.SIGN): TxState.SIGNING,
    (TxState.BUILDING, TxEvent.BUILT): TxState.SIGNING,
    (TxState.BUILDING, TxEvent.SAVED): TxState.SAVED_UNSIGNED,
    (TxState.SIGNING, TxEvent.SIGNED): TxState.SUBMITTING,
    (TxState.SIGNING, TxEvent.SAVED): TxState.SAVED_SIGNED,
    (TxState.SUBMITTING, TxEvent.SUBMITTED): TxState.CONFIRMING,
    (TxState.SUBMITTING, TxEvent.DETACHED): TxState.SUCCEEDED,
    (TxState.CONFIRMING, TxEvent.CONFIRMED): TxState.SUCCEEDED,
    (TxState.CONFIRMING, TxEvent.POLL_EXHAUSTED): TxState.TIMED_OUT_UNCONFIRMED,
}


# Error kind for a failure nobody anticipated, by the state it happened in.
_UNEXPECTED_KINDS: dict[TxState, ErrorKind] = {
    TxState.SIGNING: ErrorKind.SIGNING_FAILED,
    TxState.SUBMITTING: ErrorKind.SUBMISSION_FAILED,
    TxState.CONFIRMING: ErrorKind.SUBMISSION_FAILED,
}


class InvalidTransition(ValueError):
    def __init__(self, state: TxState, event: TxEvent) -> None:
        super().__init__(f"No transition from {state.value} on {event.value}")
        self.state = state
        self.event = event


def transition(state: TxState, event: TxEvent) -> TxState:
    """Return the state that follows *state* on *event*.

    Raises :class:`InvalidTransition` for pairs the machine does not allow,
    including any event on a terminal state.
    """
    if state in TERMINAL_STATES:
        raise InvalidTransition(state, event)
    if event is TxEvent.FAILED:
        return TxState.FAILED
    if event is TxEvent.DECLINED:
        if state in PRE_COMMIT_STATES:
            return TxState.CANCELLED
        raise InvalidTransition(state, event)
    try:
        return _TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransition(state, event) from None


# ---------------------------------------------------------------------------
# Collaborators and results
# ---------------------------------------------------------------------------

class ChainDataProvider(Protocol):
    async def submit_tx(self, cbor_hex: str) -> str:
        ...

    async def tx_status(self, tx_id: str) -> ConfirmationStatus:
        ...


@dataclass(frozen=True)
class TransferSummary:
    """What the operator is asked to approve before signing."""

    sender: str
    intent: Intent
    fee: Optional[int]
    network: str


PasswordPrompt = Callable[[str, int], str]
Approve = Callable[[TransferSummary], bool]
Sleep = Callable[[float], Awaitable[Any]]
TransitionHook = Callable[[TxState, TxEvent, TxState], None]


@dataclass
class LifecycleResult:
    state: TxState = TxState.IDLE
    tx_id: Optional[str] = None
    error: Optional[BeginCliError] = None
    wallet: Optional[str] = None
    intent: Optional[Intent] = None
    fee: Optional[int] = None
    unsigned_path: Optional[Path] = None
    signed_path: Optional[Path] = None
    confirmed: bool = False
    confirmations: Optional[int] = None
    history: list[TxState] = field(default_factory=lambda: [TxState.IDLE])

    @property
    def ok(self) -> bool:
        return self.state in (
            TxState.SUCCEEDED,
            TxState.SAVED_UNSIGNED,
            TxState.SAVED_SIGNED,
            TxState.TIMED_OUT_UNCONFIRMED,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"state": self.state.value}
        if self.intent is not None:
            data["type"] = self.intent.type
        if self.tx_id:
            data["txId"] = self.tx_id
        if self.fee is not None:
            data["fee"] = str(self.fee)
        if self.unsigned_path:
            data["unsignedFile"] = str(self.unsigned_path)
        if self.signed_path:
            data["signedFile"] = str(self.signed_path)
        if self.state in (TxState.SUCCEEDED, TxState.TIMED_OUT_UNCONFIRMED):
            data["confirmed"] = self.confirmed
            if self.confirmations is not None:
                data["confirmations"] = self.confirmations
        return data


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------

class TransactionLifecycle:
    """Drives one transaction through the state machine.

    One instance per invocation; the offline steps each use a fresh
    instance.

    Parameters
    ----------
    network:
        Network all payloads belong to.
    wallets:
        Secret source resolution and unlocking (send and sign).
    sdk:
        Chain SDK used to build and sign (send and sign).
    provider:
        Chain data provider used to submit and poll (send and submit).
    password_prompt:
        ``(wallet_name, attempt) -> password``.  Called again after a
        wrong password while attempts remain.
    approve:
        Asked before signing a freshly built transfer; returning ``False``
        cancels with no chain-visible effect.  ``None`` approves.
    sleep:
        Awaitable sleep between confirmation polls.
    poll_interval, max_attempts:
        Confirmation polling cadence and ceiling.
    max_password_attempts:
        Password tries before ``AUTHENTICATION_FAILED`` is final.
    journal:
        Optional journal that records every terminal outcome.
    on_transition:
        Called with ``(old_state, event, new_state)`` on every step.
    """

    def __init__(
        self,
        network: Network,
        *,
        wallets: Optional[WalletManager] = None,
        sdk: Optional[ChainSDK] = None,
        provider: Optional[ChainDataProvider] = None,
        password_prompt: Optional[PasswordPrompt] = None,
        approve: Optional[Approve] = None,
        sleep: Sleep = asyncio.sleep,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        max_password_attempts: int = DEFAULT_PASSWORD_ATTEMPTS,
        journal: Optional[TransactionJournal] = None,
        on_transition: Optional[TransitionHook] = None,
    ) -> None:
        self.network = network
        self.wallets = wallets
        self.sdk = sdk
        self.provider = provider
        self.password_prompt = password_prompt
        self.approve = approve
        self._sleep = sleep
        self.poll_interval = poll_interval
        self.max_attempts = max(1, max_attempts)
        self.max_password_attempts = max(1, max_password_attempts)
        self.journal = journal
        self.on_transition = on_transition
        self.result = LifecycleResult()

    @property
    def state(self) -> TxState:
        return self.result.state

    def _fire(self, event: TxEvent) -> TxState:
        old = self.result.state
        new = transition(old, event)
        self.result.state = new
        self.result.history.append(new)
        logger.debug(f"{old.value} --{event.value}--> {new.value}")
        if self.on_transition is not None:
            self.on_transition(old, event, new)
        return new

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    async def send(
        self,
        intent: Intent,
        *,
        wallet: Optional[str] = None,
        dry_run: bool = False,
        output_path: Optional[Path] = None,
        wait: bool = True,
    ) -> LifecycleResult:
        """Build, sign, submit and confirm the transaction *intent* describes.

        With *dry_run* the unsigned payload is written to *output_path*
        and the flow ends at ``SavedUnsigned``.
        """
        self.result.intent = intent
        handle: Optional[SigningHandle] = None
        try:
            self._fire(TxEvent.START)
            source = self._resolve(wallet)
            sender = self.wallets.sender_address(source, self.network.network_id)

            if not dry_run:
                handle = await self._unlock(source)
            self._fire(TxEvent.BUILD)
            unsigned = await self._build(intent, sender)

            if dry_run:
                path = save_tx_file(
                    TxFile(
                        kind="unsigned",
                        network=self.network.name,
                        cbor_hex=unsigned.cbor_hex,
                        intent=intent,
                        fee=unsigned.fee,
                    ),
                    output_path or default_unsigned_path(),
                )
                self.result.unsigned_path = path
                self._fire(TxEvent.SAVED)
                return await self._finish()

            summary = TransferSummary(sender, intent, unsigned.fee, self.network.name)
            if self.approve is not None and not self.approve(summary):
                logger.info("Transfer declined by operator")
                self._fire(TxEvent.DECLINED)
                return await self._finish()

            self._fire(TxEvent.BUILT)
            signed = await self._sign(unsigned, handle)
            handle.close()
            self._fire(TxEvent.SIGNED)
            await self._submit_and_confirm(signed.cbor_hex, wait)
        except BeginCliError as exc:
            self._fail(exc)
        except Exception as exc:
            self._fail(self._unexpected(exc))
        finally:
            if handle is not None:
                handle.close()
        return await self._finish()

    async def sign(
        self,
        unsigned_path: Path,
        *,
        wallet: Optional[str] = None,
        output_path: Optional[Path] = None,
    ) -> LifecycleResult:
        """Sign a previously saved unsigned payload and save the result."""
        handle: Optional[SigningHandle] = None
        try:
            self._fire(TxEvent.START)
            tx_file = self._load(unsigned_path, "unsigned")
            self.result.intent = tx_file.intent
            self.result.fee = tx_file.fee
            source = self._resolve(wallet)
            handle = await self._unlock(source)

            self._fire(TxEvent.SIGN)
            unsigned = UnsignedTransaction(tx_file.cbor_hex, tx_file.intent, tx_file.fee)
            signed = await self._sign(unsigned, handle)
            path = save_tx_file(
                TxFile(
                    kind="signed",
                    network=self.network.name,
                    cbor_hex=signed.cbor_hex,
                    tx_id=signed.tx_id,
                    intent=tx_file.intent,
                    fee=tx_file.fee,
                ),
                output_path or default_signed_path(Path(unsigned_path)),
            )
            self.result.signed_path = path
            self._fire(TxEvent.SAVED)
        except BeginCliError as exc:
            self._fail(exc)
        except Exception as exc:
            self._fail(self._unexpected(exc))
        finally:
            if handle is not None:
                handle.close()
        return await self._finish()

    async def submit(self, signed_path: Path, *, wait: bool = False) -> LifecycleResult:
        """Submit a previously signed payload, optionally waiting for confirmation."""
        try:
            tx_file = self._load(signed_path, "signed")
            self.result.intent = tx_file.intent
            self.result.tx_id = tx_file.tx_id
            self._fire(TxEvent.RESUME_SUBMIT)
            await self._submit_and_confirm(tx_file.cbor_hex, wait)
        except BeginCliError as exc:
            self._fail(exc)
        except Exception as exc:
            self._fail(self._unexpected(exc))
        return await self._finish()

    async def wait_for_confirmation(self, tx_id: str) -> ConfirmationStatus:
        """Poll until *tx_id* confirms or the attempt ceiling is reached.

        Any error during a poll is logged and counts as "not yet"; the
        transaction is already submitted and a failed check proves nothing.
        """
        provider = self._require(self.provider, "A chain data provider is required to poll.")
        for attempt in range(1, self.max_attempts + 1):
            try:
                status = await provider.tx_status(tx_id)
            except Exception as exc:
                reason = exc.message if isinstance(exc, BeginCliError) else f"{exc.__class__.__name__}: {exc}"
                logger.warning(f"Confirmation check {attempt} for {tx_id} failed: {reason}")
            else:
                if status.confirmed:
                    return status
            if attempt < self.max_attempts:
                await self._sleep(self.poll_interval)
        return ConfirmationStatus(tx_id=tx_id, confirmed=False)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _resolve(self, wallet: Optional[str]) -> SecretSource:
        wallets = self._require(self.wallets, "A wallet manager is required to resolve secrets.")
        source = wallets.resolve_source(wallet)
        self.result.wallet = source.wallet
        logger.info(f"Using {source.describe()}")
        return source

    async def _unlock(self, source: SecretSource) -> SigningHandle:
        network_id = self.network.network_id
        if not source.needs_password:
            handle = self.wallets.open(source, network_id)
            self._fire(TxEvent.SECRET_LOADED)
            return handle

        self._fire(TxEvent.NEED_PASSWORD)
        attempt = 1
        while True:
            if self.password_prompt is None:
                raise input_error(
                    f"A password is required to unlock wallet '{source.wallet}'",
                    code="MISSING_ARGUMENT",
                )
            password = self.password_prompt(source.wallet, attempt)
            try:
                handle = await asyncio.to_thread(self.wallets.open, source, network_id, password)
            except BeginCliError as exc:
                if exc.kind is ErrorKind.AUTHENTICATION_FAILED and attempt < self.max_password_attempts:
                    self._fire(TxEvent.AUTH_FAILED)
                    attempt += 1
                    continue
                raise
            self._fire(TxEvent.SECRET_LOADED)
            return handle

    async def _build(self, intent: Intent, sender: str) -> UnsignedTransaction:
        sdk = self._require(self.sdk, "A chain SDK is required to build.")
        try:
            unsigned = await sdk.build(intent, sender)
        except Exception as exc:
            raise self._stage_error(ErrorKind.BUILD_FAILED, exc) from exc
        self.result.fee = unsigned.fee
        return unsigned

    async def _sign(self, unsigned: UnsignedTransaction, handle: SigningHandle) -> SignedTransaction:
        sdk = self._require(self.sdk, "A chain SDK is required to sign.")
        try:
            signed = await sdk.sign(unsigned, handle)
        except Exception as exc:
            raise self._stage_error(ErrorKind.SIGNING_FAILED, exc) from exc
        self.result.tx_id = signed.tx_id
        return signed

    async def _submit_and_confirm(self, cbor_hex: str, wait: bool) -> None:
        provider = self._require(self.provider, "A chain data provider is required to submit.")
        try:
            tx_id = await provider.submit_tx(cbor_hex)
        except Exception as exc:
            raise self._stage_error(ErrorKind.SUBMISSION_FAILED, exc) from exc

        if self.result.tx_id and tx_id != self.result.tx_id:
            logger.warning(f"Provider returned tx id {tx_id}, expected {self.result.tx_id}")
        self.result.tx_id = tx_id

        # Committed from here on: the transaction is on its way regardless.
        if not wait:
            self._fire(TxEvent.DETACHED)
            return

        self._fire(TxEvent.SUBMITTED)
        status = await self.wait_for_confirmation(tx_id)
        if status.confirmed:
            self.result.confirmed = True
            self.result.confirmations = status.confirmations
            self._fire(TxEvent.CONFIRMED)
            return

        self.result.error = BeginCliError(
            ErrorKind.UNCONFIRMED_TIMEOUT,
            f"Transaction {tx_id} was submitted but not confirmed after "
            f"{self.max_attempts} checks. It may still confirm; check it later.",
            stage=TxState.CONFIRMING.value,
            wallet=self.result.wallet,
            tx_id=tx_id,
        )
        self._fire(TxEvent.POLL_EXHAUSTED)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self, path: Path, kind: str) -> TxFile:
        tx_file = load_tx_file(Path(path), kind)
        if tx_file.network and tx_file.network != self.network.name:
            raise input_error(
                f"{path} was built for {tx_file.network}, not {self.network.name}",
                code="INVALID_NETWORK",
            )
        return tx_file

    def _stage_error(self, kind: ErrorKind, exc: Exception) -> BeginCliError:
        """Attach the current stage to *exc*, wrapping foreign exceptions as *kind*."""
        if isinstance(exc, BeginCliError) and exc.kind in (
            kind,
            ErrorKind.INPUT,
            ErrorKind.AUTHENTICATION_FAILED,
        ):
            return exc.with_context(
                stage=self.state.value, wallet=self.result.wallet, tx_id=self.result.tx_id
            )
        return stage_failed(
            kind, self.state.value, exc, wallet=self.result.wallet, tx_id=self.result.tx_id
        )

    @staticmethod
    def _require(collaborator: Optional[_T], message: str) -> _T:
        if collaborator is None:
            raise RuntimeError(message)
        return collaborator

    def _unexpected(self, exc: Exception) -> BeginCliError:
        """Wrap an exception no stage anticipated, tagged by where it happened."""
        logger.debug("Unexpected lifecycle error", exc_info=exc)
        kind = _UNEXPECTED_KINDS.get(self.state, ErrorKind.BUILD_FAILED)
        return stage_failed(
            kind, self.state.value, exc, wallet=self.result.wallet, tx_id=self.result.tx_id
        )

    def _fail(self, exc: BeginCliError) -> None:
        exc.with_context(stage=self.state.value, wallet=self.result.wallet, tx_id=self.result.tx_id)
        logger.error(f"Transaction failed at {self.state.value}: {exc.message}")
        self.result.error = exc
        if self.state not in TERMINAL_STATES:
            self._fire(TxEvent.FAILED)

    async def _finish(self) -> LifecycleResult:
        if self.journal is not None:
            try:
                await self.journal.record(self.result, network=self.network.name)
            except Exception as exc:
                logger.warning(f"Could not record transaction in journal: {exc}")
        return self.result
