from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class _Body(BaseModel):
    # Older web clients post camelCase keys; both spellings are accepted.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ProofPackCreate(_Body):
    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)


class ProofPackUpdate(_Body):
    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    tags: Optional[list[str]] = None
    visibility: Optional[Literal["private", "shared", "public"]] = None


class DocumentUpload(_Body):
    file_name: str = Field(..., min_length=1)
    file_data: str = Field(..., min_length=1, description="Base64 payload (data URLs accepted).")
    mime_type: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    file_size: Optional[int] = Field(default=None, ge=0)
    expiration_date: Optional[datetime] = None
    document_type: Optional[str] = None
    notes: Optional[str] = None

    def payload_bytes(self) -> int:
        """
        Decoded size estimate of the base64 payload; the declared size wins
        when it is larger.
        """
        data = self.file_data.split(",", 1)[1] if self.file_data.startswith("data:") else self.file_data
        data = data.strip()
        estimated = len(data) * 3 // 4 - data[-2:].count("=")
        return max(int(self.file_size or 0), max(estimated, 0))


class GapStatusUpdate(_Body):
    status: Literal["open", "acknowledged", "not_applicable"]


class ShareCreate(_Body):
    expiration_days: Optional[int] = Field(default=None, ge=0, le=3650)


class ReviewRequest(_Body):
    proof_pack_id: str = Field(..., min_length=1)
    action: Literal["approve", "reject"]
    comments: Optional[str] = None


class AttributionCreate(_Body):
    partner_id: str = Field(..., min_length=1)
    sme_id: str = Field(..., min_length=1)
    event_type: Literal[
        "lead_generated",
        "service_delivered",
        "introduction_facilitated",
        "conversion_completed",
    ]
    revenue_amount: float = Field(..., ge=0, allow_inf_nan=False)
    attribution_percentage: float = Field(default=100.0, ge=0, le=100, allow_inf_nan=False)
    buyer_id: Optional[str] = None
    source: Optional[str] = None
    deal_id: Optional[str] = None
    notes: Optional[str] = None


class SettlementRequest(_Body):
    start_date: datetime
    end_date: datetime
    platform_fee_percentage: Optional[float] = None

    @model_validator(mode="after")
    def _period_order(self) -> "SettlementRequest":
        # Naive timestamps are taken as UTC.
        for name in ("start_date", "end_date"):
            value = getattr(self, name)
            if value.tzinfo is None:
                setattr(self, name, value.replace(tzinfo=timezone.utc))
        if self.end_date < self.start_date:
            raise ValueError("end_date must be >= start_date")
        return self
