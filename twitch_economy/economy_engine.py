"""Economy engine — balances, daily claim, coin-flip gamble, steal, admin grants.

Every operation validates its inputs, applies a synchronous mutation to the
shared snapshot and returns a result object for the dispatcher to format.
Nothing here awaits, so an operation can never interleave with another.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING

from .utils import normalize_user, now_utc

if TYPE_CHECKING:
    from .config import EconomyConfig
    from .state import StateStore


# ═══════════════════════════════════════════════════════════════
#  Data types
# ═══════════════════════════════════════════════════════════════


class Outcome(Enum):
    OK = "ok"
    WIN = "win"
    LOSS = "loss"
    INVALID_AMOUNT = "invalid_amount"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    TARGET_INSUFFICIENT = "target_insufficient"
    SELF_TARGET = "self_target"
    COOLDOWN = "cooldown"
    NO_WORD = "no_word"
    WRONG_GUESS = "wrong_guess"


@dataclass
class EconomyResult:
    """Result of a single economy action."""

    outcome: Outcome
    amount: int = 0
    balance: int = 0
    target: str | None = None
    remaining: timedelta | None = None

    @property
    def ok(self) -> bool:
        return self.outcome in (Outcome.OK, Outcome.WIN, Outcome.LOSS)


# ═══════════════════════════════════════════════════════════════
#  Engine
# ═══════════════════════════════════════════════════════════════


class EconomyEngine:
    """Applies every balance-changing rule."""

    def __init__(
        self,
        config: EconomyConfig,
        store: StateStore,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._logger = logger or logging.getLogger("economy.engine")

    @property
    def claim_cooldown(self) -> timedelta:
        return timedelta(hours=self._config.economy.claim_cooldown_hours)

    @staticmethod
    def _coin_flip() -> bool:
        return random.random() < 0.5

    # ══════════════════════════════════════════════════════════
    #  Queries
    # ══════════════════════════════════════════════════════════

    def balance(self, username: str) -> int:
        return self._store.account(username).balance

    # ══════════════════════════════════════════════════════════
    #  Daily claim
    # ══════════════════════════════════════════════════════════

    def claim(self, username: str, now: datetime | None = None) -> EconomyResult:
        """Pay the daily reward if the cooldown has elapsed."""
        now = now or now_utc()
        acct = self._store.account(username)
        if acct.last_claim_at is not None:
            elapsed = now - acct.last_claim_at
            if elapsed < self.claim_cooldown:
                return EconomyResult(
                    outcome=Outcome.COOLDOWN,
                    balance=acct.balance,
                    remaining=self.claim_cooldown - elapsed,
                )

        amount = self._config.economy.claim_amount
        acct.balance += amount
        acct.last_claim_at = now
        self._logger.info("Claim: %s +%d (balance %d)", normalize_user(username), amount, acct.balance)
        return EconomyResult(outcome=Outcome.OK, amount=amount, balance=acct.balance)

    # ══════════════════════════════════════════════════════════
    #  Gamble
    # ══════════════════════════════════════════════════════════

    def gamble(self, username: str, amount: int | None) -> EconomyResult:
        """Even-odds flip against the house. Win doubles, loss forfeits."""
        acct = self._store.account(username)
        if amount is None or amount <= 0:
            return EconomyResult(outcome=Outcome.INVALID_AMOUNT, balance=acct.balance)
        if acct.balance < amount:
            return EconomyResult(
                outcome=Outcome.INSUFFICIENT_FUNDS, amount=amount, balance=acct.balance,
            )

        if self._coin_flip():
            acct.balance += amount
            outcome = Outcome.WIN
        else:
            acct.balance -= amount
            outcome = Outcome.LOSS
        self._logger.debug(
            "Gamble: %s %s %d (balance %d)",
            normalize_user(username), outcome.value, amount, acct.balance,
        )
        return EconomyResult(outcome=outcome, amount=amount, balance=acct.balance)

    # ══════════════════════════════════════════════════════════
    #  Steal
    # ══════════════════════════════════════════════════════════

    def steal(self, username: str, target: str, amount: int | None) -> EconomyResult:
        """Attempt to take ``amount`` from ``target``; a failure pays the target."""
        actor = normalize_user(username)
        victim = normalize_user(target)
        actor_acct = self._store.account(actor)

        if not victim or amount is None or amount <= 0:
            return EconomyResult(outcome=Outcome.INVALID_AMOUNT, balance=actor_acct.balance)
        if victim == actor:
            return EconomyResult(
                outcome=Outcome.SELF_TARGET, amount=amount, balance=actor_acct.balance,
            )

        victim_acct = self._store.account(victim)
        if victim_acct.balance < amount:
            return EconomyResult(
                outcome=Outcome.TARGET_INSUFFICIENT, amount=amount,
                balance=actor_acct.balance, target=victim,
            )
        if actor_acct.balance < amount:
            return EconomyResult(
                outcome=Outcome.INSUFFICIENT_FUNDS, amount=amount,
                balance=actor_acct.balance, target=victim,
            )

        if self._coin_flip():
            victim_acct.balance -= amount
            actor_acct.balance += amount
            outcome = Outcome.WIN
        else:
            actor_acct.balance -= amount
            victim_acct.balance += amount
            outcome = Outcome.LOSS
        self._logger.info("Steal: %s -> %s %s %d", actor, victim, outcome.value, amount)
        return EconomyResult(
            outcome=outcome, amount=amount, balance=actor_acct.balance, target=victim,
        )

    # ══════════════════════════════════════════════════════════
    #  Admin
    # ══════════════════════════════════════════════════════════

    def grant(self, target: str, amount: int | None) -> EconomyResult:
        who = normalize_user(target)
        if not who or amount is None or amount <= 0:
            return EconomyResult(outcome=Outcome.INVALID_AMOUNT)
        acct = self._store.account(who)
        acct.balance += amount
        self._logger.info("Admin grant: %s +%d (balance %d)", who, amount, acct.balance)
        return EconomyResult(outcome=Outcome.OK, amount=amount, balance=acct.balance, target=who)

    def revoke(self, target: str, amount: int | None) -> EconomyResult:
        """Subtract ``amount``, clamping the balance at zero."""
        who = normalize_user(target)
        if not who or amount is None or amount <= 0:
            return EconomyResult(outcome=Outcome.INVALID_AMOUNT)
        acct = self._store.account(who)
        acct.balance = max(0, acct.balance - amount)
        self._logger.info("Admin revoke: %s -%d (balance %d)", who, amount, acct.balance)
        return EconomyResult(outcome=Outcome.OK, amount=amount, balance=acct.balance, target=who)

    # ══════════════════════════════════════════════════════════
    #  Secret word
    # ══════════════════════════════════════════════════════════

    def set_word(self, word: str) -> bool:
        cleaned = (word or "").strip().lower()
        if not cleaned:
            return False
        self._store.state.current_word = cleaned
        return True

    def guess_word(self, username: str, guess: str) -> EconomyResult:
        acct = self._store.account(username)
        word = self._store.state.current_word
        if not word:
            return EconomyResult(outcome=Outcome.NO_WORD, balance=acct.balance)
        if (guess or "").strip().lower() != word.lower():
            return EconomyResult(outcome=Outcome.WRONG_GUESS, balance=acct.balance)

        reward = self._config.economy.word_reward
        acct.balance += reward
        self._store.state.current_word = None
        self._logger.info("Word guessed by %s (+%d)", normalize_user(username), reward)
        return EconomyResult(outcome=Outcome.OK, amount=reward, balance=acct.balance)
