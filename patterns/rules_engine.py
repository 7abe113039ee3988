"""Pure-function rules engine pattern.

Rules are stateless functions: (tags, rules, policy) -> result.
No network, no database, no side effects. This keeps the VIP decision:
- Trivially testable (pure input/output)
- Deterministic (exact, case-sensitive tag comparison)
- Auditable (results say which tags and rules matched)

Domain: deciding whether a storefront visitor is a VIP and whether the
visit should be written to the access log.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class RuleResult:
    """Outcome of a single rule evaluation."""

    passed: bool
    rule_name: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class ClassificationResult:
    """Outcome of matching a customer's tags against the active rules."""

    is_vip: bool
    matched_tags: set[str] = field(default_factory=set)
    matched_rules: list[Any] = field(default_factory=list)


class LogPolicy(str, Enum):
    """Which visits are written to the access log."""

    MATCHED_RULE = "matched_rule"  # a tag matched an active rule
    ANY_TAG = "any_tag"            # the customer carries any tag
    LITERAL_TAG = "literal_tag"    # the customer carries a configured tag


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

def classify(customer_tags: Iterable[str], active_rules: Iterable[Any]) -> ClassificationResult:
    """Intersect the customer's tags with the tags of the active rules.

    `active_rules` may be any objects exposing a `tag` attribute. Matching is
    exact-string and case-sensitive; the result does not depend on order.
    """
    rules = list(active_rules)
    tags = set(customer_tags)
    allowed = {rule.tag for rule in rules}
    matched = tags & allowed

    return ClassificationResult(
        is_vip=bool(matched),
        matched_tags=matched,
        matched_rules=[rule for rule in rules if rule.tag in matched],
    )


def check_access_loggable(
    policy: LogPolicy,
    customer_tags: Iterable[str],
    classification: ClassificationResult,
    literal_tag: str = "",
) -> RuleResult:
    """Decide whether a classified visit should be logged under `policy`."""
    tags = set(customer_tags)

    if policy == LogPolicy.MATCHED_RULE:
        passed = classification.is_vip
        message = "Matched an active rule" if passed else "No active rule matched"
    elif policy == LogPolicy.ANY_TAG:
        passed = bool(tags)
        message = "Customer has tags" if passed else "Customer has no tags"
    elif policy == LogPolicy.LITERAL_TAG:
        passed = bool(literal_tag) and literal_tag in tags
        message = (
            f"Customer carries '{literal_tag}'"
            if passed
            else f"Customer does not carry '{literal_tag}'"
        )
    else:
        raise ValueError(f"Unknown log policy: {policy}")

    return RuleResult(
        passed=passed,
        rule_name=f"log_policy.{policy.value}",
        message=message,
        details={
            "matched_tags": sorted(classification.matched_tags),
            "tag_count": len(tags),
        },
    )
