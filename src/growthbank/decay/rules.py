"""
Decay rule repository.

Rules are stored as JSON documents in a single hash keyed by rule id.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Union

import pydantic

from ..events.bus import EVENT_RULE_CHANGED, Event, EventBus
from ..exceptions import RuleNotFoundError, ValidationError
from ..storage.provider import AbstractStorageProvider
from .models import DecayRule, DecayRuleUpdate

logger = logging.getLogger(__name__)


def _validation_message(exc: pydantic.ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'rule'}: {err['msg']}"
        for err in exc.errors()
    )


class DecayRuleRepository:
    """Admin CRUD over decay rules."""

    def __init__(
        self,
        storage: AbstractStorageProvider,
        event_bus: Optional[EventBus] = None,
    ):
        self._storage = storage
        self._key = f"{storage.config.key_prefix}:decay:rules"
        self._event_bus = event_bus

    async def create(self, rule: Union[DecayRule, dict[str, Any]]) -> DecayRule:
        if isinstance(rule, dict):
            try:
                rule = DecayRule.model_validate(rule)
            except pydantic.ValidationError as exc:
                raise ValidationError(_validation_message(exc)) from exc
        if await self._storage.hget(self._key, rule.rule_id) is not None:
            raise ValidationError(f"Decay rule {rule.rule_id} already exists")
        await self._save(rule)
        logger.info("Created decay rule %s (%s)", rule.rule_id, rule.name)
        self._emit("created", rule)
        return rule

    async def get(self, rule_id: str) -> DecayRule:
        raw = await self._storage.hget(self._key, rule_id)
        if raw is None:
            raise RuleNotFoundError(f"Decay rule {rule_id} not found")
        return DecayRule.model_validate_json(raw)

    async def list(self, active_only: bool = False) -> list[DecayRule]:
        """Rules ordered by descending priority, then name."""
        raw = await self._storage.hgetall(self._key)
        rules = [DecayRule.model_validate_json(doc) for doc in raw.values()]
        if active_only:
            rules = [r for r in rules if r.is_active]
        return sorted(rules, key=lambda r: (-r.priority, r.name, r.rule_id))

    async def list_active(self) -> list[DecayRule]:
        return await self.list(active_only=True)

    async def list_urgent(self) -> list[DecayRule]:
        return [r for r in await self.list_active() if r.is_urgent]

    async def update(
        self,
        rule_id: str,
        changes: Union[DecayRuleUpdate, dict[str, Any]],
    ) -> DecayRule:
        current = await self.get(rule_id)
        try:
            if isinstance(changes, dict):
                changes = DecayRuleUpdate.model_validate(changes)
            data = current.model_dump()
            data.update(changes.model_dump(exclude_unset=True))
            data["updated_at"] = datetime.now(timezone.utc)
            updated = DecayRule.model_validate(data)
        except pydantic.ValidationError as exc:
            raise ValidationError(_validation_message(exc)) from exc
        await self._save(updated)
        logger.info("Updated decay rule %s", rule_id)
        self._emit("updated", updated)
        return updated

    async def delete(self, rule_id: str) -> None:
        if not await self._storage.hdel(self._key, rule_id):
            raise RuleNotFoundError(f"Decay rule {rule_id} not found")
        logger.info("Deleted decay rule %s", rule_id)
        if self._event_bus:
            self._event_bus.emit(Event(
                event_type=EVENT_RULE_CHANGED,
                source="decay.rules",
                payload={"action": "deleted", "rule_id": rule_id},
            ))

    async def seed(self, rules: list[DecayRule]) -> list[DecayRule]:
        """Create the given rules, skipping ids that already exist."""
        created = []
        for rule in rules:
            if await self._storage.hget(self._key, rule.rule_id) is None:
                created.append(await self.create(rule))
        return created

    async def _save(self, rule: DecayRule) -> None:
        await self._storage.hset(self._key, rule.rule_id, rule.model_dump_json())

    def _emit(self, action: str, rule: DecayRule) -> None:
        if self._event_bus:
            self._event_bus.emit(Event(
                event_type=EVENT_RULE_CHANGED,
                source="decay.rules",
                payload={"action": action, "rule_id": rule.rule_id, "urgent": rule.is_urgent},
            ))
