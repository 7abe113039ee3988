"""Discount Provisioner — creates and removes segment + discount pairs.

A VIP rule is backed by two remote resources that share no transaction: a
customer segment selecting the tag, and an automatic percentage discount
scoped to that segment. Creation runs as a small saga:

    started -> segment_created -> discount_created -> completed

A discount failure deletes the segment again (compensated). When that
compensation, or the final RuleSet write, fails the intent is left orphaned
and `reconcile` picks it up later.
"""
from __future__ import annotations
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, Protocol

from core.errors import (
    PartialFailureError,
    RemoteError,
    TransportError,
    ValidationError,
    VipPricingError,
)
from core.integrations.commerce import CommerceClient, UserError
from core.logging import get_logger
from patterns.workflow_states import ProvisioningSaga, ProvisioningState, can_transition
from verticals.vip_pricing.models.schemas import Rule
from verticals.vip_pricing.rule_store import RuleStore
from verticals.vip_pricing.segment_query import build_tag_segment_query, segment_name_for

logger = get_logger("vip_pricing.provisioner")


class IntentLog(Protocol):
    """Durable record of provisioning runs (see IntentRepository)."""

    async def open(self, shop: str, tag: str, title: str, percentage: float) -> str: ...

    async def advance(self, intent_id: str, shop: str, state: ProvisioningState, **fields: Any) -> None: ...

    async def list_unfinished(self, shop: str, created_before: Optional[datetime] = None) -> list[dict]: ...


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class StepOutcome:
    """Result of one best-effort remote deletion."""
    step: str
    target_id: str | None
    ok: bool
    skipped: bool = False
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "step": self.step,
            "target_id": self.target_id,
            "ok": self.ok,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }


@dataclass
class DeletionReport:
    discount: StepOutcome
    segment: StepOutcome
    rule_removed: bool

    @property
    def fully_deleted(self) -> bool:
        return self.discount.ok and self.segment.ok

    def to_dict(self) -> dict:
        return {
            "discount": self.discount.to_dict(),
            "segment": self.segment.to_dict(),
            "rule_removed": self.rule_removed,
            "fully_deleted": self.fully_deleted,
        }


@dataclass
class ReconciliationAction:
    """What the sweep did with one unfinished intent."""
    intent_id: str
    tag: str
    from_state: ProvisioningState
    to_state: ProvisioningState
    steps: list[StepOutcome] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "intent_id": self.intent_id,
            "tag": self.tag,
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "steps": [s.to_dict() for s in self.steps],
        }


def default_title(tag: str, percentage: float) -> str:
    return f"{tag} Automatic {percentage:g}% Off"


def validate_percentage(percentage: Any) -> float:
    try:
        value = float(percentage)
    except (TypeError, ValueError):
        raise ValidationError("percentage must be a number", details={"percentage": percentage})
    if math.isnan(value) or value <= 0 or value > 100:
        raise ValidationError(
            "percentage must be greater than 0 and at most 100",
            details={"percentage": percentage},
        )
    return value


# ---------------------------------------------------------------------------
# Provisioner
# ---------------------------------------------------------------------------

class DiscountProvisioner:
    """Owns the two-step create/delete flows for VIP rules.

    Usage::

        provisioner = DiscountProvisioner(client, RuleStore(client), intents)
        rule = await provisioner.create_rule(owner_id, "VIP", "", 15, shop=shop)
    """

    # Intents younger than this may still be in flight in another request.
    STALE_AFTER = timedelta(minutes=5)

    def __init__(
        self,
        client: CommerceClient,
        rule_store: RuleStore,
        intents: Optional[IntentLog] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.client = client
        self.rule_store = rule_store
        self.intents = intents
        self.clock = clock

    # -- create --

    async def create_rule(
        self,
        owner_id: str,
        tag: str,
        title: Optional[str],
        percentage: float,
        shop: str = "",
    ) -> Rule:
        """Provision a segment + discount for `tag` and record the Rule.

        Raises ValidationError before any remote call, RemoteError when the
        segment is rejected, PartialFailureError when the discount is rejected.
        A TransportError is re-raised once the intent records how far the run got.
        """
        query = build_tag_segment_query(tag)
        percentage = validate_percentage(percentage)
        title = (title or "").strip() or default_title(tag, percentage)

        saga = ProvisioningSaga(saga_id=await self._open_intent(shop, tag, title, percentage))
        log = logger.bind(tag=tag, intent_id=saga.saga_id)

        try:
            segment = await self.client.create_segment(segment_name_for(tag), query)
        except TransportError as exc:
            log.error("Segment creation did not complete", error=exc.message)
            await self._advance(saga, shop, ProvisioningState.FAILED, error=exc.message)
            raise
        if not segment.ok:
            log.warning("Segment creation rejected", error=segment.first_error)
            await self._advance(saga, shop, ProvisioningState.FAILED, error=segment.first_error)
            raise RemoteError(segment.first_error, user_errors=segment.errors)

        segment_id = segment.payload.segment_id
        await self._advance(saga, shop, ProvisioningState.SEGMENT_CREATED, segment_id=segment_id)

        try:
            discount = await self.client.create_automatic_percentage_discount(
                title=title,
                percentage=percentage / 100,
                segment_id=segment_id,
                starts_at=self.clock(),
            )
        except TransportError as exc:
            log.error(
                "Discount creation did not complete, removing segment",
                segment_id=segment_id,
                error=exc.message,
            )
            compensated = await self._compensate_segment(segment_id)
            state = ProvisioningState.COMPENSATED if compensated else ProvisioningState.ORPHANED
            await self._advance(saga, shop, state, error=exc.message)
            raise
        if not discount.ok:
            log.warning(
                "Discount creation rejected, removing segment",
                segment_id=segment_id,
                error=discount.first_error,
            )
            compensated = await self._compensate_segment(segment_id)
            state = ProvisioningState.COMPENSATED if compensated else ProvisioningState.ORPHANED
            await self._advance(saga, shop, state, error=discount.first_error)
            raise PartialFailureError(
                discount.first_error,
                user_errors=discount.errors,
                segment_id=segment_id,
                compensated=compensated,
            )

        discount_id = discount.payload.discount_id
        await self._advance(saga, shop, ProvisioningState.DISCOUNT_CREATED, discount_id=discount_id)

        rule = Rule(
            tag=tag,
            percentage=percentage,
            discount_ref=discount_id,
            segment_ref=segment_id,
            title=title,
        )
        try:
            await self.rule_store.append_rule(owner_id, rule)
        except VipPricingError as exc:
            log.error(
                "Rule not recorded, remote resources orphaned",
                segment_id=segment_id,
                discount_id=discount_id,
                error=exc.message,
            )
            await self._advance(saga, shop, ProvisioningState.ORPHANED, error=exc.message)
            raise

        await self._advance(saga, shop, ProvisioningState.COMPLETED)
        log.info("VIP rule created", discount_id=discount_id, segment_id=segment_id)
        return rule

    # -- delete --

    async def delete_rule(
        self,
        owner_id: str,
        discount_ref: Optional[str],
        segment_ref: Optional[str],
    ) -> DeletionReport:
        """Best-effort removal of both resources, then of the Rule itself."""
        if not discount_ref and not segment_ref:
            raise ValidationError("missing discount or segment reference")

        discount_step = await self._best_effort_delete(
            "delete_discount", discount_ref, self.client.delete_automatic_discount
        )
        segment_step = await self._best_effort_delete(
            "delete_segment", segment_ref, self.client.delete_segment
        )

        rule_removed = False
        if discount_ref:
            rule_removed = await self.rule_store.remove_rule_by_discount_ref(owner_id, discount_ref)

        report = DeletionReport(discount=discount_step, segment=segment_step, rule_removed=rule_removed)
        logger.info(
            "VIP rule deleted",
            discount_id=discount_ref,
            segment_id=segment_ref,
            fully_deleted=report.fully_deleted,
            rule_removed=rule_removed,
        )
        return report

    # -- reconciliation --

    async def reconcile(self, owner_id: str, shop: str) -> list[ReconciliationAction]:
        """Resolve intents left unfinished by crashes or failed compensation."""
        if self.intents is None:
            return []

        pending = await self.intents.list_unfinished(shop, created_before=self.clock() - self.STALE_AFTER)
        if not pending:
            return []

        recorded = {rule.discount_ref for rule in await self.rule_store.list_rules(owner_id)}
        actions: list[ReconciliationAction] = []

        for intent in pending:
            actions.append(await self._reconcile_one(intent, recorded, shop))

        logger.info("Reconciliation finished", shop=shop, intents=len(actions))
        return actions

    async def _reconcile_one(self, intent: dict, recorded: set[str], shop: str) -> ReconciliationAction:
        state = ProvisioningState(intent["state"])
        saga = ProvisioningSaga(saga_id=str(intent["id"]), current_state=state)
        discount_id = intent.get("discount_id")
        segment_id = intent.get("segment_id")
        action = ReconciliationAction(
            intent_id=saga.saga_id, tag=intent.get("tag", ""), from_state=state, to_state=state
        )

        if discount_id and discount_id in recorded:
            await self._advance(saga, shop, ProvisioningState.COMPLETED)
        elif state is ProvisioningState.STARTED:
            await self._advance(saga, shop, ProvisioningState.FAILED, error="no remote resource recorded")
        else:
            if discount_id:
                action.steps.append(await self._best_effort_delete(
                    "delete_discount", discount_id, self.client.delete_automatic_discount
                ))
            if segment_id:
                action.steps.append(await self._best_effort_delete(
                    "delete_segment", segment_id, self.client.delete_segment
                ))

            failed = [s for s in action.steps if not s.ok]
            if not failed:
                await self._advance(saga, shop, ProvisioningState.COMPENSATED)
            elif saga.can_transition(ProvisioningState.ORPHANED):
                await self._advance(
                    saga, shop, ProvisioningState.ORPHANED, error="; ".join(failed[0].errors)
                )

        action.to_state = saga.current_state
        return action

    # -- internals --

    async def _open_intent(self, shop: str, tag: str, title: str, percentage: float) -> str:
        if self.intents is None:
            return str(uuid.uuid4())
        return await self.intents.open(shop, tag, title, percentage)

    async def _advance(self, saga: ProvisioningSaga, shop: str, state: ProvisioningState, **fields: Any) -> None:
        if not can_transition(saga.current_state, state):
            logger.warning(
                "Ignoring illegal intent transition",
                intent_id=saga.saga_id,
                from_state=saga.current_state.value,
                to_state=state.value,
            )
            return
        saga.transition(state, **fields)
        if self.intents is not None:
            await self.intents.advance(saga.saga_id, shop, state, **fields)

    async def _compensate_segment(self, segment_id: str) -> bool:
        step = await self._best_effort_delete("delete_segment", segment_id, self.client.delete_segment)
        return step.ok

    async def _best_effort_delete(
        self,
        step: str,
        target_id: Optional[str],
        call: Callable[[str], Awaitable[list[UserError]]],
    ) -> StepOutcome:
        if not target_id:
            return StepOutcome(step=step, target_id=None, ok=True, skipped=True)

        try:
            errors = [e.message for e in await call(target_id)]
        except TransportError as exc:
            errors = [exc.message]

        if errors:
            logger.warning("Remote deletion failed", step=step, target_id=target_id, errors=errors)
        return StepOutcome(step=step, target_id=target_id, ok=not errors, errors=errors)
