"""Pydantic schemas: the RuleSet wire format and API request/response models."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Stored rule (one element of the RuleSet JSON array)
# ---------------------------------------------------------------------------

class Rule(BaseModel):
    """A customer tag paired with the remote segment and discount implementing it.

    Serialized with camelCase keys inside the shop metafield.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    tag: str = Field(..., min_length=1)
    percentage: float = Field(..., ge=0, le=100)
    discount_ref: str = Field(..., alias="discountId", min_length=1)
    segment_ref: str = Field(..., alias="segmentId", min_length=1)
    title: str = ""

    def to_blob(self) -> dict:
        return self.model_dump(by_alias=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class RuleCreate(BaseModel):
    tag: str = ""
    percentage: float = 0.0
    title: Optional[str] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------

class RuleResponse(BaseModel):
    tag: str
    percentage: float
    discount_id: str
    segment_id: str
    title: str

    @classmethod
    def from_rule(cls, rule: Rule) -> "RuleResponse":
        return cls(
            tag=rule.tag,
            percentage=rule.percentage,
            discount_id=rule.discount_ref,
            segment_id=rule.segment_ref,
            title=rule.title,
        )


class AccessCheckDebug(BaseModel):
    shop: Optional[str] = None
    log_status: str
    log_reason: Optional[str] = None


class AccessCheckResponse(BaseModel):
    is_vip: bool
    tags: list[str] = Field(default_factory=list)
    matched_tags: list[str] = Field(default_factory=list)
    customer_name: Optional[str] = None
    orders_count: int = 0
    message: Optional[str] = None
    debug: Optional[AccessCheckDebug] = None


class CustomerSummaryResponse(BaseModel):
    key: str
    display_label: str
    latest_timestamp: Optional[datetime] = None
    tag_snapshot: str
    login_count: int
    orders_count: int


class LoginReportResponse(BaseModel):
    total_logins: int
    unique_customers: int
    last_login_at: Optional[datetime] = None
    customers: list[CustomerSummaryResponse]
    error: Optional[str] = None
