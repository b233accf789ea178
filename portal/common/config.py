from __future__ import annotations

import json
import logging
import math
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Mapping

from portal.common.logging import log_event

logger = logging.getLogger(__name__)


# Fixed platform threshold. Submission gating, share gating and the
# isEligibleForIntroductions flag all read this one constant.
ELIGIBILITY_THRESHOLD = 70

DEFAULT_REQUIRED_CATEGORIES: tuple[str, ...] = (
    "Certifications",
    "Financial",
    "Past Performance",
    "Technical",
    "Quality",
    "Safety",
    "Security",
)

DEFAULT_WEIGHTS: Mapping[str, float] = {
    "completeness": 0.4,
    "expiration": 0.3,
    "quality": 0.2,
    "remediation": 0.1,
}

DEFAULT_PLATFORM_FEE_PERCENTAGE = 10.0

DEFAULT_EXPIRATION_WARNING_DAYS = 30
MAX_EXPIRATION_WARNING_DAYS = 3650


@dataclass(frozen=True)
class QualityRules:
    """
    Placeholder quality heuristic. Each satisfied rule is worth one point.
    """

    min_file_name_length: int = 10
    min_notes_length: int = 10
    generic_file_name_markers: tuple[str, ...] = ("untitled",)
    generic_categories: tuple[str, ...] = ("Other",)

    @property
    def rule_count(self) -> int:
        return 4


@dataclass(frozen=True)
class PackHealthConfig:
    required_categories: tuple[str, ...] = DEFAULT_REQUIRED_CATEGORIES
    weights: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    expiration_warning_days: int = DEFAULT_EXPIRATION_WARNING_DAYS
    # Credit a required category earns when its best document is expiring soon.
    expiring_credit: float = 0.7
    quality: QualityRules = field(default_factory=QualityRules)


@dataclass(frozen=True)
class PortalConfig:
    app_url: str
    platform_fee_percentage: float
    free_tier_pack_limit: int
    max_document_bytes: int
    pack_health: PackHealthConfig


def _env(name: str, default: str | None = None) -> str | None:
    v = os.getenv(name)
    if v is None:
        return default
    s = str(v).strip()
    return s if s else default


def _env_num(name: str, default: float, *, cast=float):
    raw = _env(name)
    if raw is None:
        return cast(default)
    try:
        return cast(raw)
    except ValueError:
        log_event(logger, "config.invalid_value", severity="WARNING", variable=name, value=raw)
        return cast(default)


def _parse_categories(raw: str | None) -> tuple[str, ...]:
    if raw is None:
        return DEFAULT_REQUIRED_CATEGORIES
    cats = tuple(c.strip() for c in raw.split(",") if c.strip())
    return cats or DEFAULT_REQUIRED_CATEGORIES


def _parse_weights(raw: str | None) -> dict[str, float]:
    if raw is None:
        return dict(DEFAULT_WEIGHTS)
    try:
        parsed = json.loads(raw)
        if not isinstance(parsed, dict):
            raise ValueError("weights must be a JSON object")
        weights = {str(k): float(v) for k, v in parsed.items() if str(k) in DEFAULT_WEIGHTS}
        if not all(math.isfinite(w) for w in weights.values()):
            raise ValueError("weights must be finite")
    except (TypeError, ValueError):
        log_event(logger, "config.invalid_value", severity="WARNING", variable="PACK_HEALTH_WEIGHTS", value=raw)
        return dict(DEFAULT_WEIGHTS)
    # Unspecified components weigh nothing once an explicit mapping is given.
    return {k: weights.get(k, 0.0) for k in DEFAULT_WEIGHTS}


def _warning_days_from_env() -> int:
    days = _env_num("PACK_HEALTH_EXPIRATION_WARNING_DAYS", DEFAULT_EXPIRATION_WARNING_DAYS, cast=int)
    if 0 <= days <= MAX_EXPIRATION_WARNING_DAYS:
        return days
    log_event(
        logger,
        "config.invalid_value",
        severity="WARNING",
        variable="PACK_HEALTH_EXPIRATION_WARNING_DAYS",
        value=days,
    )
    return DEFAULT_EXPIRATION_WARNING_DAYS


def pack_health_from_env() -> PackHealthConfig:
    return PackHealthConfig(
        required_categories=_parse_categories(_env("PACK_HEALTH_REQUIRED_CATEGORIES")),
        weights=_parse_weights(_env("PACK_HEALTH_WEIGHTS")),
        expiration_warning_days=_warning_days_from_env(),
    )


def from_env() -> PortalConfig:
    return PortalConfig(
        app_url=(_env("APP_URL", "http://localhost:3000") or "").rstrip("/"),
        platform_fee_percentage=_env_num("PLATFORM_FEE_PERCENTAGE", DEFAULT_PLATFORM_FEE_PERCENTAGE),
        free_tier_pack_limit=_env_num("FREE_TIER_PACK_LIMIT", 3, cast=int),
        max_document_bytes=_env_num("MAX_DOCUMENT_BYTES", 1024 * 1024, cast=int),
        pack_health=pack_health_from_env(),
    )


@lru_cache(maxsize=1)
def get_config() -> PortalConfig:
    return from_env()
