from __future__ import annotations

"""
Pack Health scoring and gap identification.

Pure functions (no Firestore dependency). Every entry point degrades to a zero
score and the full gap list on unusable configuration rather than raising, so
document add/remove flows never fail on this side computation.

Sub-scores are averaged over the *required categories*, not over uploaded
documents. A required category with no document contributes nothing to any
sub-score, which keeps the composite monotone: removing the only document of
a required category can never raise the overall score.
"""

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Literal, Mapping, Optional, Sequence, Union

from portal.common.config import (
    DEFAULT_EXPIRATION_WARNING_DAYS,
    DEFAULT_REQUIRED_CATEGORIES,
    DEFAULT_WEIGHTS,
    ELIGIBILITY_THRESHOLD,
    MAX_EXPIRATION_WARNING_DAYS,
    PackHealthConfig,
    QualityRules,
)
from portal.common.logging import log_event

from .models import CLOSED_GAP_STATUSES, Gap, PackHealth, ProofPackDocument
from .schema import gap_id

logger = logging.getLogger(__name__)

DocumentLike = Union[ProofPackDocument, Mapping[str, Any]]
Freshness = Literal["valid", "expiring", "expired", "missing"]

_FRESHNESS_RANK: Mapping[str, int] = {"missing": 0, "expired": 1, "expiring": 2, "valid": 3}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _resolve_now(now: Optional[datetime]) -> datetime:
    if now is None:
        return _utc_now()
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def _warning_days(value: Any) -> int:
    try:
        days = int(value)
    except (TypeError, ValueError, OverflowError):
        return DEFAULT_EXPIRATION_WARNING_DAYS
    return min(max(days, 0), MAX_EXPIRATION_WARNING_DAYS)


def _round_score(x: float) -> int:
    # Half-up, clamped; Python's round() is banker's rounding.
    return int(min(100, max(0, math.floor(float(x) + 0.5))))


def coerce_documents(documents: Optional[Iterable[DocumentLike]]) -> list[ProofPackDocument]:
    """
    Best-effort coercion of typed or raw Firestore documents. Malformed entries
    are skipped and logged.
    """
    out: list[ProofPackDocument] = []
    for raw in documents or ():
        if isinstance(raw, ProofPackDocument):
            out.append(raw)
            continue
        try:
            if not isinstance(raw, Mapping):
                raise TypeError(f"expected mapping, got {type(raw).__name__}")
            out.append(ProofPackDocument.from_firestore(raw))
        except (TypeError, ValueError) as e:
            log_event(logger, "pack_health.document_skipped", severity="WARNING", error=str(e))
    return out


def _usable_weights(config: PackHealthConfig) -> Optional[dict[str, float]]:
    raw = config.weights
    if not isinstance(raw, Mapping):
        return None
    weights: dict[str, float] = {}
    for key in DEFAULT_WEIGHTS:
        try:
            w = float(raw.get(key, 0.0) or 0.0)
        except (TypeError, ValueError):
            return None
        if not math.isfinite(w):
            return None
        if w < 0:
            w = 0.0
        weights[key] = w
    total = sum(weights.values())
    if total <= 0:
        return None
    return {k: w / total for k, w in weights.items()}


def _required_categories(config: Optional[PackHealthConfig]) -> Optional[tuple[str, ...]]:
    if config is None:
        return None
    cats = config.required_categories
    if not cats or isinstance(cats, str):
        return None
    cleaned = tuple(dict.fromkeys(str(c).strip() for c in cats if str(c).strip()))
    return cleaned or None


def document_freshness(doc: ProofPackDocument, *, now: datetime, warning_days: int) -> Freshness:
    if doc.expiration_date is None:
        return "valid"
    now = _resolve_now(now)
    if doc.expiration_date < now:
        return "expired"
    try:
        horizon = now + timedelta(days=_warning_days(warning_days))
    except OverflowError:
        # Window runs past datetime.max.
        return "expiring"
    if doc.expiration_date <= horizon:
        return "expiring"
    return "valid"


def _category_freshness(
    docs: Sequence[ProofPackDocument], *, now: datetime, warning_days: int
) -> Freshness:
    best: Freshness = "missing"
    for doc in docs:
        f = document_freshness(doc, now=now, warning_days=warning_days)
        if _FRESHNESS_RANK[f] > _FRESHNESS_RANK[best]:
            best = f
    return best


def quality_points(doc: ProofPackDocument, rules: QualityRules) -> int:
    points = 0
    name = (doc.file_name or "").strip()
    if len(name) > rules.min_file_name_length and not any(m in name.lower() for m in rules.generic_file_name_markers):
        points += 1
    if doc.category and doc.category not in rules.generic_categories:
        points += 1
    if doc.document_type:
        points += 1
    if doc.notes and len(doc.notes) > rules.min_notes_length:
        points += 1
    return points


def _group_by_category(docs: Iterable[ProofPackDocument]) -> dict[str, list[ProofPackDocument]]:
    grouped: dict[str, list[ProofPackDocument]] = defaultdict(list)
    for d in docs:
        grouped[d.category].append(d)
    return grouped


def _missing_gaps(categories: Iterable[str]) -> list[Gap]:
    return [_gap(category=c, kind="missing") for c in categories]


def _gap(*, category: str, kind: str, status: str = "open") -> Gap:
    if kind == "missing":
        priority, rec = "high", f"Upload at least one {category} document to improve Pack Health"
    elif kind == "expired":
        priority, rec = "high", f"Every {category} document has expired. Upload a renewed version."
    else:
        priority, rec = "medium", f"{category} documents expire soon. Plan to renew."
    return Gap(
        id=gap_id(category=category, kind=kind),
        category=category,
        kind=kind,
        priority=priority,
        recommendation=rec,
        status=status,
    )


def identify_gaps(
    documents: Optional[Iterable[DocumentLike]],
    config: Optional[PackHealthConfig] = None,
    *,
    now: Optional[datetime] = None,
    previous_gaps: Iterable[Gap] = (),
) -> list[Gap]:
    """
    One gap per required category that has no non-expired document
    (missing/expired), or whose non-expired documents all expire within the
    warning window (expiring). Statuses of `previous_gaps` carry over by id.
    """
    cfg = config if config is not None else PackHealthConfig()
    required = _required_categories(cfg)
    if required is None:
        log_event(logger, "pack_health.invalid_config", severity="WARNING", reason="no_required_categories")
        return _missing_gaps(DEFAULT_REQUIRED_CATEGORIES)

    now_utc = _resolve_now(now)
    prior_status = {g.id: g.status for g in previous_gaps or ()}
    grouped = _group_by_category(coerce_documents(documents))

    gaps: list[Gap] = []
    for category in required:
        freshness = _category_freshness(
            grouped.get(category, ()), now=now_utc, warning_days=cfg.expiration_warning_days
        )
        if freshness == "valid":
            continue
        gid = gap_id(category=category, kind=freshness)
        gaps.append(_gap(category=category, kind=freshness, status=prior_status.get(gid, "open")))
    return gaps


def compute_pack_health(
    documents: Optional[Iterable[DocumentLike]],
    config: Optional[PackHealthConfig] = None,
    *,
    gaps: Optional[Sequence[Gap]] = None,
    now: Optional[datetime] = None,
    previous_gaps: Iterable[Gap] = (),
) -> PackHealth:
    """
    Composite 0-100 Pack Health score.

    When `gaps` is None they are identified from `documents` (carrying over
    `previous_gaps` statuses) so the remediation sub-score always reflects the
    current document set.
    """
    cfg = config if config is not None else PackHealthConfig()
    now_utc = _resolve_now(now)

    required = _required_categories(cfg)
    weights = _usable_weights(cfg)
    if required is None or weights is None:
        log_event(
            logger,
            "pack_health.invalid_config",
            severity="WARNING",
            reason="no_required_categories" if required is None else "no_usable_weights",
        )
        return PackHealth.zero(calculated_at=now_utc)

    docs = coerce_documents(documents)
    if gaps is None:
        gaps = identify_gaps(docs, cfg, now=now_utc, previous_gaps=previous_gaps)

    grouped = _group_by_category(docs)
    n = len(required)
    rules = cfg.quality

    covered = 0
    expiration_credit = 0.0
    quality_credit = 0.0
    for category in required:
        cat_docs = grouped.get(category, [])
        if not cat_docs:
            continue
        covered += 1
        freshness = _category_freshness(cat_docs, now=now_utc, warning_days=cfg.expiration_warning_days)
        if freshness == "valid":
            expiration_credit += 1.0
        elif freshness == "expiring":
            expiration_credit += min(1.0, max(0.0, float(cfg.expiring_credit)))
        best_points = max(quality_points(d, rules) for d in cat_docs)
        quality_credit += best_points / rules.rule_count

    scores = {
        "completeness": covered / n * 100.0,
        "expiration": expiration_credit / n * 100.0,
        "quality": quality_credit / n * 100.0,
        "remediation": remediation_score(gaps),
    }
    breakdown = {
        key: {"weight": weights[key], "score": scores[key], "weighted": scores[key] * weights[key]}
        for key in DEFAULT_WEIGHTS
    }
    overall = _round_score(sum(b["weighted"] for b in breakdown.values()))

    return PackHealth(
        overall_score=overall,
        completeness_score=_round_score(scores["completeness"]),
        expiration_score=_round_score(scores["expiration"]),
        quality_score=_round_score(scores["quality"]),
        remediation_score=_round_score(scores["remediation"]),
        is_eligible_for_introductions=is_eligible(overall),
        breakdown=breakdown,
        calculated_at=now_utc,
    )


def remediation_score(gaps: Sequence[Gap]) -> float:
    if not gaps:
        return 100.0
    closed = sum(1 for g in gaps if g.status in CLOSED_GAP_STATUSES)
    return closed / len(gaps) * 100.0


def is_eligible(overall_score: Optional[float]) -> bool:
    try:
        return float(overall_score) >= ELIGIBILITY_THRESHOLD
    except (TypeError, ValueError):
        return False


def evaluate_pack(
    documents: Optional[Iterable[DocumentLike]],
    config: Optional[PackHealthConfig] = None,
    *,
    now: Optional[datetime] = None,
    previous_gaps: Iterable[Gap] = (),
) -> tuple[PackHealth, list[Gap]]:
    """
    Recompute (pack_health, gaps) for a document set. Used on every document
    add/remove and gap status change.
    """
    cfg = config if config is not None else PackHealthConfig()
    now_utc = _resolve_now(now)
    docs = coerce_documents(documents)
    gaps = identify_gaps(docs, cfg, now=now_utc, previous_gaps=previous_gaps)
    return compute_pack_health(docs, cfg, gaps=gaps, now=now_utc), gaps


@dataclass(frozen=True)
class RemediationAction:
    id: str
    description: str
    estimated_impact: int
    effort_level: Literal["low", "medium", "high"]
    priority: int


def remediation_actions(
    documents: Optional[Iterable[DocumentLike]],
    gaps: Sequence[Gap],
) -> list[RemediationAction]:
    """
    Action items sorted by priority, then estimated impact (highest first).
    """
    actions: list[RemediationAction] = []
    open_gaps = [g for g in gaps if not g.is_closed]

    for i, gap in enumerate(g for g in open_gaps if g.kind == "missing"):
        actions.append(
            RemediationAction(
                id=f"action_missing_{i}",
                description=f"Add {gap.category} documents",
                estimated_impact=15,
                effort_level="medium",
                priority=1,
            )
        )

    for i, gap in enumerate(g for g in open_gaps if g.kind == "expired"):
        actions.append(
            RemediationAction(
                id=f"action_expired_{i}",
                description=f"Renew expired {gap.category} documents",
                estimated_impact=12,
                effort_level="medium",
                priority=1,
            )
        )

    without_type = [d for d in coerce_documents(documents) if not d.document_type]
    if without_type:
        actions.append(
            RemediationAction(
                id="action_metadata",
                description=f"Add document types and notes to {len(without_type)} documents",
                estimated_impact=8,
                effort_level="low",
                priority=2,
            )
        )

    expiring = [g for g in open_gaps if g.kind == "expiring"]
    if expiring:
        actions.append(
            RemediationAction(
                id="action_expiring",
                description=f"Plan renewal for {len(expiring)} categories expiring soon",
                estimated_impact=5,
                effort_level="low",
                priority=3,
            )
        )

    return sorted(actions, key=lambda a: (a.priority, -a.estimated_impact))
