"""
VIP Pricing Data Normalizer — Vendor-Agnostic Schema Mapping.

Maps vendor-specific API payloads to canonical records. Supports nested field
access, transform functions, and per-adapter mapping configurations. The
customer mapping reads the order count twice, from the scalar field and from
the orders connection, since the scalar has moved across Shopify API versions.
"""
from __future__ import annotations
from dataclasses import dataclass, field, fields
from typing import Any, Callable

from core.integrations.commerce import CustomerRecord


# ---------------------------------------------------------------------------
# Field mapping
# ---------------------------------------------------------------------------

@dataclass
class FieldMapping:
    """Maps a source vendor field to a canonical target field."""
    source_field: str       # Dot-notation path, e.g. "orders.nodes"
    target_field: str       # Canonical field name, e.g. "order_count_via_connection"
    transform: str | None = None  # Optional transform name
    default: Any = None     # Default if source is missing


@dataclass
class SchemaMapping:
    """Complete mapping config for an adapter + entity type."""
    adapter_name: str
    entity_type: str
    mappings: list[FieldMapping] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Transform functions
# ---------------------------------------------------------------------------

def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


def _tag_list(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [s.strip() for s in value.split(",") if s.strip()]
    return [str(v) for v in value]


TRANSFORMS: dict[str, Callable[[Any], Any]] = {
    "str": lambda v: str(v) if v is not None else "",
    "strip": lambda v: str(v).strip() if v else "",
    "optional_int": _optional_int,
    "optional_len": lambda v: len(v) if v is not None else None,
    "tag_list": _tag_list,
}


# ---------------------------------------------------------------------------
# DataNormalizer
# ---------------------------------------------------------------------------

class DataNormalizer:
    """Normalizes vendor data to canonical schemas using registered mappings."""

    def __init__(self):
        self._mappings: dict[str, SchemaMapping] = {}  # key: {adapter}:{entity_type}

    def register_mapping(self, mapping: SchemaMapping) -> None:
        key = f"{mapping.adapter_name}:{mapping.entity_type}"
        self._mappings[key] = mapping

    def normalize(
        self,
        adapter_name: str,
        entity_type: str,
        raw_data: dict[str, Any],
    ) -> dict[str, Any]:
        """Normalize raw vendor data to a dict of canonical fields.

        Unmapped entity types yield an empty dict.
        """
        mapping = self._mappings.get(f"{adapter_name}:{entity_type}")
        if not mapping:
            return {}

        result: dict[str, Any] = {}
        for fm in mapping.mappings:
            value = self._get_nested(raw_data, fm.source_field)
            if value is None:
                value = fm.default

            if fm.transform and fm.transform in TRANSFORMS:
                try:
                    value = TRANSFORMS[fm.transform](value)
                except (ValueError, TypeError, KeyError):
                    value = fm.default

            result[fm.target_field] = value

        return result

    def normalize_customer(self, adapter_name: str, raw_data: dict[str, Any]) -> CustomerRecord:
        """Shorthand: normalize and return a CustomerRecord."""
        data = self.normalize(adapter_name, "customer", raw_data)
        known = {f.name for f in fields(CustomerRecord)}
        return CustomerRecord(**{k: v for k, v in data.items() if k in known})

    @staticmethod
    def _get_nested(data: dict[str, Any], path: str) -> Any:
        """Access nested dict values via dot notation (e.g. 'orders.nodes')."""
        current: Any = data
        for part in path.split("."):
            if isinstance(current, dict):
                current = current.get(part)
            else:
                return None
            if current is None:
                return None
        return current


# ---------------------------------------------------------------------------
# Pre-built mappings
# ---------------------------------------------------------------------------

SHOPIFY_CUSTOMER_MAPPING = SchemaMapping(
    adapter_name="shopify",
    entity_type="customer",
    mappings=[
        FieldMapping("id", "customer_id", "str"),
        FieldMapping("displayName", "display_name", "strip"),
        FieldMapping("tags", "tags", "tag_list", default=[]),
        FieldMapping("numberOfOrders", "order_count_direct", "optional_int"),
        FieldMapping("orders.nodes", "order_count_via_connection", "optional_len"),
    ],
)
