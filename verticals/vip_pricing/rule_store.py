"""Rule Store — the RuleSet persisted as one JSON blob on the shop.

All mutations are read → decode → mutate → encode → write. Reads return the
blob's version token and writes are conditioned on it, so a concurrent
writer causes a stale-object rejection instead of a silent lost update. On
rejection the mutation is re-applied to a fresh read.

The first write, when no blob exists yet, is create-only so two racing
creators cannot both succeed. Stores that return no version token for an
existing blob get unconditional writes (last writer wins).
"""

import json
from typing import Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from core.errors import ConcurrentModificationError, CorruptStateError, RemoteError
from core.integrations.commerce import STALE_OBJECT, BlobRecord, CommerceClient
from core.logging import get_logger
from verticals.vip_pricing.config import RuleStorageConfig
from verticals.vip_pricing.models.schemas import Rule

logger = get_logger("vip_pricing.rule_store")

Mutation = Callable[[list[Rule]], list[Rule]]


def decode_rules(raw: Optional[str]) -> list[Rule]:
    """Decode a stored RuleSet. Missing or blank blobs are an empty set."""
    if raw is None or not raw.strip():
        return []

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise CorruptStateError(f"RuleSet blob is not valid JSON: {exc.msg}") from exc

    if not isinstance(data, list):
        raise CorruptStateError(
            "RuleSet blob is not a JSON array",
            details={"type": type(data).__name__},
        )

    try:
        return [Rule.model_validate(item) for item in data]
    except PydanticValidationError as exc:
        raise CorruptStateError(
            "RuleSet blob contains an invalid rule",
            details={"errors": exc.errors(include_url=False, include_input=False)},
        ) from exc


def encode_rules(rules: list[Rule]) -> str:
    return json.dumps([rule.to_blob() for rule in rules])


class RuleStore:
    """Canonical list of active rules for an owner entity."""

    def __init__(self, client: CommerceClient, storage: RuleStorageConfig | None = None):
        self.client = client
        self.storage = storage or RuleStorageConfig()

    async def list_rules(self, owner_id: str) -> list[Rule]:
        rules, _ = await self._read(owner_id)
        return rules

    async def append_rule(self, owner_id: str, rule: Rule) -> None:
        """Append `rule`, replacing any rule with the same discount reference."""

        def append(rules: list[Rule]) -> list[Rule]:
            kept = [r for r in rules if r.discount_ref != rule.discount_ref]
            return kept + [rule]

        await self._mutate(owner_id, append, "append_rule", discount_ref=rule.discount_ref)

    async def remove_rule_by_discount_ref(self, owner_id: str, discount_ref: str) -> bool:
        """Remove every rule with `discount_ref`. Returns True if any was removed."""
        removed = False

        def remove(rules: list[Rule]) -> list[Rule]:
            nonlocal removed
            kept = [r for r in rules if r.discount_ref != discount_ref]
            removed = len(kept) != len(rules)
            return kept

        await self._mutate(owner_id, remove, "remove_rule", discount_ref=discount_ref)
        return removed

    # -- internals --

    async def _read(self, owner_id: str) -> tuple[list[Rule], Optional[BlobRecord]]:
        record = await self.client.get_blob(owner_id, self.storage.namespace, self.storage.key)
        if record is None:
            return [], None
        try:
            return decode_rules(record.value), record
        except CorruptStateError:
            logger.error(
                "RuleSet blob is corrupt",
                owner_id=owner_id,
                namespace=self.storage.namespace,
                key=self.storage.key,
            )
            raise

    async def _mutate(self, owner_id: str, mutation: Mutation, operation: str, **context) -> None:
        attempts = max(1, self.storage.max_write_attempts)

        for attempt in range(1, attempts + 1):
            current, record = await self._read(owner_id)
            updated = mutation(list(current))
            if updated == current:
                logger.debug("RuleSet unchanged, skipping write", operation=operation, **context)
                return

            errors = await self.client.set_blob(
                owner_id,
                self.storage.namespace,
                self.storage.key,
                encode_rules(updated),
                compare_version=record.version if record else None,
                create_only=record is None,
            )
            if not errors:
                logger.info(
                    "RuleSet written",
                    operation=operation,
                    owner_id=owner_id,
                    rule_count=len(updated),
                    attempt=attempt,
                    **context,
                )
                return

            if any(e.code == STALE_OBJECT for e in errors):
                logger.warning(
                    "RuleSet changed concurrently, retrying",
                    operation=operation,
                    owner_id=owner_id,
                    attempt=attempt,
                    **context,
                )
                continue

            logger.error(
                "RuleSet write rejected",
                operation=operation,
                owner_id=owner_id,
                error=errors[0].message,
                **context,
            )
            raise RemoteError(errors[0].message, user_errors=errors)

        raise ConcurrentModificationError(
            f"RuleSet kept changing during {operation}; gave up after {attempts} attempts",
            details={"owner_id": owner_id, **context},
        )
