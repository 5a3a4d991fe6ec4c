"""PIN rotation.

Rotation runs in two phases. :meth:`PinRotator.begin` claims the scope,
installs a new PIN and clears the counters it owns, all without awaiting.
:meth:`PinRotator.fan_out` then notifies the operator and updates the ledger
concurrently, and releases the scope whatever the outcome.

Scopes are ``GLOBAL_SCOPE`` in global-PIN mode and the account email in
per-account mode. A second trigger for a scope that is already rotating is
rejected: ``begin`` returns None and nothing changes.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field

from .credentials import CredentialStore
from .pin import generate_pin, is_bcrypt_hash
from .ports import LedgerPort, NotifierPort, UpsertResult
from .usage import GlobalPinState, UsageLimiter

logger = logging.getLogger(__name__)

GLOBAL_SCOPE = "*"


class RotationGate:
    """Per-scope ``idle -> rotating -> idle`` state machine."""

    def __init__(self) -> None:
        self._rotating: set[str] = set()
        self._lock = threading.Lock()

    def try_enter(self, scope: str) -> bool:
        """Move ``scope`` to rotating. Returns False if it already was."""
        with self._lock:
            if scope in self._rotating:
                return False
            self._rotating.add(scope)
            return True

    def exit(self, scope: str) -> None:
        """Return ``scope`` to idle."""
        with self._lock:
            self._rotating.discard(scope)

    def is_rotating(self, scope: str) -> bool:
        with self._lock:
            return scope in self._rotating


@dataclass(frozen=True)
class Rotation:
    """A rotation whose state change is applied and whose fan-out is pending."""

    scope: str
    trigger_account: str
    new_pin: str = field(repr=False)


class PinRotator:
    """Replace the active PIN(s) once a usage cap is exceeded."""

    def __init__(
        self,
        store: CredentialStore,
        limiter: UsageLimiter,
        notifier: NotifierPort,
        ledger: LedgerPort,
        notify_to: str = "",
        subject: str = "OTP gateway PIN rotated",
        global_state: GlobalPinState | None = None,
        gate: RotationGate | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._store = store
        self._limiter = limiter
        self._notifier = notifier
        self._ledger = ledger
        self._notify_to = notify_to
        self._subject = subject
        self._global_state = global_state
        self._gate = gate or RotationGate()
        self._timeout = timeout

    @property
    def global_mode(self) -> bool:
        return self._global_state is not None

    @property
    def gate(self) -> RotationGate:
        return self._gate

    def scope_for(self, account_id: str) -> str:
        return GLOBAL_SCOPE if self.global_mode else account_id

    def begin(self, trigger_account: str) -> Rotation | None:
        """Claim the scope and install a new PIN.

        Returns:
            The applied rotation, or None when the scope is already rotating.
        """
        scope = self.scope_for(trigger_account)
        if not self._gate.try_enter(scope):
            logger.info("rotation.rejected", extra={"scope": scope})
            return None
        try:
            if self._global_state is not None:
                new_pin = generate_pin(_plaintext(self._global_state.current))
                self._global_state.replace(new_pin)
                self._limiter.reset_all()
            else:
                record = self._store.get(trigger_account)
                previous = record.pin_secret if record else None
                new_pin = generate_pin(_plaintext(previous))
                self._store.replace_pin(trigger_account, new_pin)
                self._limiter.reset(trigger_account)
        except Exception:
            self._gate.exit(scope)
            raise
        logger.info(
            "rotation.applied",
            extra={"scope": scope, "trigger_account": trigger_account},
        )
        return Rotation(scope=scope, trigger_account=trigger_account, new_pin=new_pin)

    async def fan_out(self, rotation: Rotation) -> None:
        """Notify and update the ledger, then release the scope.

        Failures are logged and never raised.
        """
        try:
            body = f"{rotation.trigger_account}, {rotation.new_pin}"
            notified, recorded = await asyncio.gather(
                self._bounded(self._notifier.send(self._notify_to, self._subject, body)),
                self._bounded(self._ledger.upsert(rotation.trigger_account, rotation.new_pin)),
                return_exceptions=True,
            )
            for side, outcome in (("notify", notified), ("ledger", recorded)):
                if isinstance(outcome, BaseException):
                    logger.error(
                        "rotation.fan_out.failed",
                        extra={
                            "scope": rotation.scope,
                            "side": side,
                            "error": repr(outcome),
                        },
                    )
                elif outcome is False or outcome == UpsertResult.SKIPPED:
                    logger.warning(
                        "rotation.fan_out.incomplete",
                        extra={"scope": rotation.scope, "side": side},
                    )
        finally:
            self._gate.exit(rotation.scope)
            logger.info("rotation.end", extra={"scope": rotation.scope})

    async def rotate(self, trigger_account: str) -> Rotation | None:
        """Run a full rotation for the scope of ``trigger_account``."""
        rotation = self.begin(trigger_account)
        if rotation is not None:
            await self.fan_out(rotation)
        return rotation

    async def _bounded(self, coro):
        return await asyncio.wait_for(coro, timeout=self._timeout)


def _plaintext(secret: str | None) -> str | None:
    if not secret or is_bcrypt_hash(secret):
        return None
    return secret
