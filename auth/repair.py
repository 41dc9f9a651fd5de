"""
auth/repair.py -- One-shot repair of user passwords stored in plaintext.

Background: an instructor import wrote raw passwords (sometimes wrapped in
double quotes or padded with spaces) into users.password instead of bcrypt
hashes. Those accounts cannot log in, and the plaintext sits in the database.

The job is split so the decision logic is testable without a database:

  plan_repairs()   -- pure. Users in; (user_id, new_hash) updates plus one
                      outcome per user out. No I/O.
  apply_repairs()  -- writes each planned update through an injected callable,
                      one user at a time. A failing update marks that user
                      failed and the loop moves on.
  run_repair_job() -- reads the role-scoped users from a UserStore and runs
                      the two steps above against it.

Re-run safety: a row that already holds a well-formed bcrypt hash is skipped,
never hashed a second time. A hash that is only wrapped in quotes or padding
is written back unwrapped, also without re-hashing.

Failure model:
  - Reading users from the store raises -> propagates; nothing is written.
  - One update raises -> logged with traceback, outcome "failed", continue.
  - Failed records are not retried within the same run.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from auth.models import User, UserRole
from auth.passwords import hash_password, is_password_hash, normalize_legacy_password

if TYPE_CHECKING:
    from auth.store import UserStore

logger = logging.getLogger("swimdesk.repair")

REPAIR_ROUNDS = 12

REPAIRED = "repaired"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class RepairOutcome:
    user_id: str
    email: str
    status: str
    detail: str = ""


@dataclass
class RepairPlan:
    """Output of plan_repairs().

    updates holds (user_id, new_hash) pairs in input order. outcomes holds one
    entry per input user; entries for users in updates are provisional
    ("repaired") until apply_repairs() confirms the write.
    """

    updates: list[tuple[str, str]] = field(default_factory=list)
    outcomes: list[RepairOutcome] = field(default_factory=list)


@dataclass
class RepairReport:
    outcomes: list[RepairOutcome] = field(default_factory=list)
    dry_run: bool = False

    def count(self, status: str) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def repaired(self) -> int:
        return self.count(REPAIRED)

    @property
    def skipped(self) -> int:
        return self.count(SKIPPED)

    @property
    def failed(self) -> int:
        return self.count(FAILED)

    def summary(self) -> str:
        prefix = "[dry run] " if self.dry_run else ""
        return (
            f"{prefix}{len(self.outcomes)} user(s) scanned: "
            f"{self.repaired} repaired, {self.skipped} skipped, {self.failed} failed"
        )


def plan_repairs(users: Iterable[User], rounds: int = REPAIR_ROUNDS) -> RepairPlan:
    """Decide, for each user, whether and how its password gets rewritten."""
    plan = RepairPlan()
    for user in users:
        raw = user.password or ""
        if is_password_hash(raw):
            plan.outcomes.append(RepairOutcome(user.id, user.email, SKIPPED, "already hashed"))
            continue

        cleaned = normalize_legacy_password(raw)
        if not cleaned:
            plan.outcomes.append(RepairOutcome(user.id, user.email, FAILED, "empty password after normalization"))
            continue

        # A hash that was only wrapped in quotes or padding is stored unwrapped.
        if is_password_hash(cleaned):
            plan.updates.append((user.id, cleaned))
            plan.outcomes.append(RepairOutcome(user.id, user.email, REPAIRED, "unwrapped existing hash"))
            continue

        try:
            new_hash = hash_password(cleaned, rounds=rounds)
        except ValueError as exc:
            plan.outcomes.append(RepairOutcome(user.id, user.email, FAILED, str(exc)))
            continue

        plan.updates.append((user.id, new_hash))
        plan.outcomes.append(RepairOutcome(user.id, user.email, REPAIRED))
    return plan


def apply_repairs(plan: RepairPlan, update: Callable[[str, str], object]) -> RepairReport:
    """Write every planned update, one user at a time.

    update(user_id, new_hash) is the store's point update. Any exception it
    raises is contained to that user.
    """
    new_hashes = dict(plan.updates)
    report = RepairReport()
    for outcome in plan.outcomes:
        if outcome.status == REPAIRED:
            outcome = _write_one(outcome, new_hashes[outcome.user_id], update)
        report.outcomes.append(outcome)
        _log_outcome(outcome)
    return report


def _write_one(outcome: RepairOutcome, new_hash: str, update: Callable[[str, str], object]) -> RepairOutcome:
    try:
        found = update(outcome.user_id, new_hash)
    except Exception as exc:
        logger.exception("Password update failed for user_id=%s", outcome.user_id)
        return RepairOutcome(outcome.user_id, outcome.email, FAILED, f"update failed: {exc}")
    # UserStore.update_password returns False when the row vanished mid-run.
    if found is False:
        return RepairOutcome(outcome.user_id, outcome.email, FAILED, "user no longer exists")
    return outcome


def run_repair_job(
    store: UserStore,
    role: UserRole = UserRole.INSTRUCTOR,
    rounds: int = REPAIR_ROUNDS,
    dry_run: bool = False,
) -> RepairReport:
    """Repair stored passwords for every user with the given role.

    The caller owns the store and must close it; see `main.py repair-passwords`.
    """
    users = store.find_by_role(role)
    logger.info("Found %d user(s) with role %s", len(users), UserRole(role).value)

    plan = plan_repairs(users, rounds=rounds)
    if dry_run:
        report = RepairReport(outcomes=plan.outcomes, dry_run=True)
        for outcome in report.outcomes:
            _log_outcome(outcome)
    else:
        report = apply_repairs(plan, store.update_password)

    logger.info(report.summary())
    return report


def _log_outcome(outcome: RepairOutcome) -> None:
    if outcome.status == FAILED:
        logger.warning("Could not repair password for %s (%s)", outcome.email, outcome.detail)
    elif outcome.status == SKIPPED:
        logger.info("Skipped %s (%s)", outcome.email, outcome.detail)
    else:
        logger.info("Updated password for %s", outcome.email)
