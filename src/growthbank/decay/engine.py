"""
Decay Rule Engine

Batch process that removes coins from sessions that have not been
revisited for a rule's threshold. Each (session, rule) pair decays at
most once; the ledger's decay index is the record of which pairs are
done, so a cycle can be repeated or resumed at any point.
"""

from __future__ import annotations

import asyncio
import logging
import time
from bisect import bisect_right
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from ..events.bus import EVENT_DECAY_APPLIED, EVENT_DECAY_CYCLE_COMPLETED, Event, EventBus
from ..exceptions import ValidationError
from ..ledger.models import ChangeKind, DecayKey, HistoryPage, HistoryQuery, LedgerEntry
from ..ledger.store import LedgerStore
from ..observability.metrics import CoinMetrics
from ..sessions.models import SessionRecord
from ..sessions.repository import SessionRepository
from .models import (
    CycleFailure,
    CycleReport,
    DecayConfig,
    DecayPrediction,
    DecayRule,
    DecayStatistics,
    RuleDecayTotal,
)
from .rules import DecayRuleRepository

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DecayRuleEngine:
    """
    Applies active decay rules to every active user's recent sessions.

    Users are processed in batches of ``batch_size``; within a batch up to
    ``max_concurrency`` users run at once, while the rules and sessions of
    one user are handled one at a time.
    """

    def __init__(
        self,
        ledger: LedgerStore,
        sessions: SessionRepository,
        rules: DecayRuleRepository,
        config: Optional[DecayConfig] = None,
        event_bus: Optional[EventBus] = None,
        metrics: Optional[CoinMetrics] = None,
    ):
        self._ledger = ledger
        self._sessions = sessions
        self._rules = rules
        self.config = config or DecayConfig()
        self._event_bus = event_bus
        self._metrics = metrics

    # -- Cycles -------------------------------------------------------

    async def run_cycle(
        self,
        *,
        now: Optional[datetime] = None,
        urgent_only: bool = False,
        rule_ids: Optional[set[str]] = None,
        checkpoint: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        lane: Optional[str] = None,
    ) -> CycleReport:
        """Run one decay cycle over all active users.

        Args:
            now: Evaluation time; defaults to the current UTC time.
            urgent_only: Only apply rules flagged urgent.
            rule_ids: Restrict the cycle to these rule ids.
            checkpoint: Resume after this user id, the last one a previous
                cycle finished.
            timeout_seconds: Soft limit; checked between batches.
            lane: Label for the report and metrics.

        Returns:
            A ``CycleReport``. When the soft limit is hit the report has
            ``timed_out`` set and ``checkpoint`` names the last user done.
        """
        now = now or _utcnow()
        today = now.date()
        lane = lane or ("urgent" if urgent_only else "full")
        timeout = timeout_seconds if timeout_seconds is not None else self.config.cycle_timeout_seconds
        deadline = time.monotonic() + timeout if timeout else None
        started = time.monotonic()

        rules = await self._rules.list_active()
        if urgent_only:
            rules = [r for r in rules if r.is_urgent]
        if rule_ids is not None:
            rules = [r for r in rules if r.rule_id in rule_ids]

        report = CycleReport(started_at=now, lane=lane)
        if not rules:
            logger.info("No active decay rules for %s cycle", lane)
            report.finished_at = _utcnow()
            return report

        since = today - timedelta(days=self.config.active_user_window_days)
        users = sorted(await self._sessions.active_user_ids(since))
        report.users_total = len(users)
        # Users that left the activity window since the checkpoint do not shift it
        pending = users[bisect_right(users, checkpoint):] if checkpoint is not None else users
        logger.info(
            "Starting %s decay cycle: %d rules, %d of %d users pending",
            lane, len(rules), len(pending), len(users),
        )

        semaphore = asyncio.Semaphore(self.config.max_concurrency)
        batch_size = self.config.batch_size
        for batch_start in range(0, len(pending), batch_size):
            if deadline is not None and time.monotonic() >= deadline:
                report.timed_out = True
                report.checkpoint = pending[batch_start - 1] if batch_start else (checkpoint or "")
                logger.warning(
                    "%s decay cycle hit its time limit; %d users left after %r",
                    lane, len(pending) - batch_start, report.checkpoint,
                )
                break
            batch = pending[batch_start:batch_start + batch_size]
            await asyncio.gather(*(
                self._guarded_user(user_id, rules, today, report, semaphore)
                for user_id in batch
            ))
            await asyncio.sleep(0)

        report.finished_at = _utcnow()
        if self._metrics:
            self._metrics.observe_cycle(lane, time.monotonic() - started)
        if self._event_bus:
            self._event_bus.emit(Event(
                event_type=EVENT_DECAY_CYCLE_COMPLETED,
                source="decay.engine",
                payload=report.model_dump(mode="json"),
            ))
        logger.info(
            "%s decay cycle done: %d users, %d entries, %d coins, %d failures",
            lane, report.users_processed, report.entries_written,
            report.coins_decayed, len(report.failures),
        )
        return report

    async def _guarded_user(
        self,
        user_id: str,
        rules: list[DecayRule],
        today: date,
        report: CycleReport,
        semaphore: asyncio.Semaphore,
    ) -> None:
        async with semaphore:
            try:
                await self.process_user(user_id, rules, today=today, report=report)
            except Exception as exc:
                logger.error("Decay failed for user %s", user_id, exc_info=True)
                report.failures.append(CycleFailure(user_id=user_id, error=str(exc)))
                if self._metrics:
                    self._metrics.record_decay_failure("user")

    async def process_user(
        self,
        user_id: str,
        rules: list[DecayRule],
        *,
        today: Optional[date] = None,
        report: Optional[CycleReport] = None,
    ) -> list[LedgerEntry]:
        """Apply ``rules`` to one user's sessions.

        Rules are applied by descending priority. A failure on one
        (rule, session) pair is logged, recorded on ``report`` and
        skipped.
        """
        today = today or _utcnow().date()
        since = today - timedelta(days=self.config.session_window_days)
        sessions = await self._sessions.sessions_for_decay(user_id, since)
        written: list[LedgerEntry] = []

        for rule in sorted(rules, key=lambda r: -r.priority):
            for session in sessions:
                try:
                    entry = await self._apply(rule, session, today)
                except Exception as exc:
                    logger.warning(
                        "Decay of session %s under rule %s failed for %s",
                        session.session_id, rule.rule_id, user_id, exc_info=True,
                    )
                    if report is not None:
                        report.failures.append(CycleFailure(
                            user_id=user_id,
                            rule_id=rule.rule_id,
                            session_id=session.session_id,
                            error=str(exc),
                        ))
                    if self._metrics:
                        self._metrics.record_decay_failure("session")
                    continue
                if entry is not None:
                    written.append(entry)

        if report is not None:
            report.users_processed += 1
            report.entries_written += len(written)
            report.coins_decayed += sum(-e.amount for e in written)
        return written

    async def _apply(
        self,
        rule: DecayRule,
        session: SessionRecord,
        today: date,
    ) -> Optional[LedgerEntry]:
        if not rule.applies_to(session):
            return None
        days_since = (today - session.session_date).days
        if days_since < rule.threshold_days:
            return None
        amount = rule.amount_for(session.total_coins)
        if amount <= 0:
            return None

        key = DecayKey(session.user_id, session.session_id, rule.rule_id)
        entry = await self._ledger.append_decay(
            key,
            -amount,
            description=f"Knowledge decay - {rule.name}",
            metadata={
                "rule_name": rule.name,
                "session_date": session.session_date.isoformat(),
                "days_since_session": days_since,
                "original_coins": session.total_coins,
                "decay_rate": rule.decay_rate,
                "decay_kind": rule.decay_kind.value,
            },
        )
        if entry is None:
            return None

        logger.debug(
            "Decayed %d coins from session %s (%s) for %s",
            amount, session.session_id, rule.name, session.user_id,
        )
        if self._metrics:
            self._metrics.record_decay(rule.rule_id)
        if self._event_bus:
            self._event_bus.emit(Event(
                event_type=EVENT_DECAY_APPLIED,
                source="decay.engine",
                payload={
                    "user_id": session.user_id,
                    "session_id": session.session_id,
                    "rule_id": rule.rule_id,
                    "amount": amount,
                },
            ))
        return entry

    async def trigger_manually(
        self,
        user_id: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> CycleReport:
        """Run decay immediately for one user, or for everyone.

        Failures loading rules or users propagate to the caller; per-pair
        failures are listed on the returned report.
        """
        if user_id is None:
            return await self.run_cycle(now=now, lane="manual")

        now = now or _utcnow()
        report = CycleReport(started_at=now, lane="manual", users_total=1)
        rules = await self._rules.list_active()
        await self.process_user(user_id, rules, today=now.date(), report=report)
        report.finished_at = _utcnow()
        logger.info(
            "Manual decay for %s: %d entries, %d coins",
            user_id, report.entries_written, report.coins_decayed,
        )
        return report

    # -- Read-only views ----------------------------------------------

    async def predict(
        self,
        user_id: str,
        horizon_days: int = 7,
        *,
        now: Optional[datetime] = None,
    ) -> list[DecayPrediction]:
        """Project decay for each of the next ``horizon_days`` days.

        Days are simulated in order: a (session, rule) pair is counted on
        the first day it becomes eligible and not again afterwards. Pairs
        that already have a decay entry are never counted. Nothing is
        written.
        """
        if not 1 <= horizon_days <= self.config.max_prediction_days:
            raise ValidationError(
                f"horizon_days must be between 1 and {self.config.max_prediction_days}"
            )
        today = (now or _utcnow()).date()
        rules = await self._rules.list_active()
        since = today - timedelta(days=self.config.session_window_days)
        sessions = await self._sessions.sessions_for_decay(user_id, since)

        pending: list[tuple[DecayRule, SessionRecord, int]] = []
        for rule in sorted(rules, key=lambda r: -r.priority):
            for session in sessions:
                if not rule.applies_to(session):
                    continue
                amount = rule.amount_for(session.total_coins)
                if amount <= 0:
                    continue
                key = DecayKey(user_id, session.session_id, rule.rule_id)
                if await self._ledger.has_decay(key):
                    continue
                pending.append((rule, session, amount))

        predictions = []
        counted: set[tuple[str, str]] = set()
        for offset in range(1, horizon_days + 1):
            target = today + timedelta(days=offset)
            total = 0
            affected = 0
            for rule, session, amount in pending:
                pair = (rule.rule_id, session.session_id)
                if pair in counted:
                    continue
                if (target - session.session_date).days >= rule.threshold_days:
                    counted.add(pair)
                    total += amount
                    affected += 1
            predictions.append(DecayPrediction(
                date=target, predicted_decay=total, affected_sessions=affected
            ))
        return predictions

    async def decay_history(
        self,
        user_id: str,
        query: Optional[HistoryQuery] = None,
    ) -> HistoryPage:
        query = (query or HistoryQuery()).model_copy(update={"change_kind": ChangeKind.DECAYED})
        return await self._ledger.history(user_id, query)

    async def decay_statistics(
        self,
        user_id: str,
        days: int = 30,
        *,
        now: Optional[datetime] = None,
    ) -> DecayStatistics:
        if days < 1:
            raise ValidationError("days must be positive")
        cutoff = (now or _utcnow()) - timedelta(days=days)
        decays = [
            e for e in await self._ledger.entries(user_id)
            if e.change_kind == ChangeKind.DECAYED and e.created_at >= cutoff
        ]

        totals: dict[str, list[int]] = defaultdict(lambda: [0, 0])
        names: dict[str, str] = {}
        for entry in decays:
            rule_id = entry.rule_id or "unknown"
            totals[rule_id][0] += -entry.amount
            totals[rule_id][1] += 1
            names.setdefault(rule_id, entry.metadata.get("rule_name", rule_id))
        known = {r.rule_id: r.name for r in await self._rules.list()}

        total = sum(-e.amount for e in decays)
        by_rule = [
            RuleDecayTotal(
                rule_id=rule_id,
                rule_name=known.get(rule_id, names[rule_id]),
                total_decayed=amount,
                count=count,
            )
            for rule_id, (amount, count) in totals.items()
        ]
        by_rule.sort(key=lambda r: -r.total_decayed)
        return DecayStatistics(
            days=days,
            total_decayed=total,
            decay_count=len(decays),
            avg_decay_per_day=round(total / days, 2),
            by_rule=by_rule,
        )
