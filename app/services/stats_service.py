"""Dashboard figures computed from the in-memory record sets.

All functions except the threshold accessors are pure: they take record lists
and a reference date and never touch the database.
"""
from __future__ import annotations

import logging
from calendar import monthrange
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import settings
from app.models import DashboardSetting, DeliveryStatus, DemandPriority, DemandStatus
from app.services.date_utils import days_between, elapsed_days
from app.services.record_store import DeliveryRecord, DemandRecord, PendencyRecord

logger = logging.getLogger(__name__)

MIN_CRITICAL_THRESHOLD_DAYS = 1
ONE_DECIMAL = Decimal('0.1')
WHOLE = Decimal('1')


@dataclass(frozen=True)
class DeliveryStats:
    total: int
    delivered: int
    full_returns: int
    partial_returns: int
    delivered_pct: Decimal
    full_return_pct: Decimal
    partial_return_pct: Decimal
    average_lead_time_days: Decimal
    stagnant_count: int
    critical_threshold_days: int


@dataclass(frozen=True)
class CommercialStats:
    total: int
    completed: int
    on_time: int
    sla_compliance_pct: int


@dataclass(frozen=True)
class PendencyStats:
    total: int
    resolved: int
    active: int
    resolution_pct: Decimal


@dataclass(frozen=True)
class DashboardStats:
    deliveries: DeliveryStats
    commercial: CommercialStats
    pendencies: PendencyStats


@dataclass(frozen=True)
class TrendPoint:
    day: date
    issued: int
    delivered_same_day: int


@dataclass(frozen=True)
class CalendarEvent:
    id: str
    title: str
    kind: str
    priority: str


@dataclass(frozen=True)
class PriorityGroups:
    urgent: list[DemandRecord] = field(default_factory=list)
    high: list[DemandRecord] = field(default_factory=list)
    normal: list[DemandRecord] = field(default_factory=list)


def percent(part: int, total: int, places: Decimal = ONE_DECIMAL) -> Decimal:
    if total <= 0:
        return Decimal('0').quantize(places)
    return (Decimal(100 * part) / Decimal(total)).quantize(places, rounding=ROUND_HALF_UP)


def average_lead_time(deliveries: Iterable[DeliveryRecord]) -> Decimal:
    total_days = 0
    count = 0
    for record in deliveries:
        if record.issue_date is None or record.delivery_date is None:
            continue
        total_days += days_between(record.issue_date, record.delivery_date)
        count += 1
    if count == 0:
        return Decimal('0.0')
    return (Decimal(total_days) / Decimal(count)).quantize(ONE_DECIMAL, rounding=ROUND_HALF_UP)


def stagnant_count(deliveries: Iterable[DeliveryRecord], *, reference: date, threshold_days: int) -> int:
    threshold_days = max(MIN_CRITICAL_THRESHOLD_DAYS, int(threshold_days))
    return sum(
        1
        for record in deliveries
        if record.status == DeliveryStatus.PENDING
        and record.issue_date is not None
        and elapsed_days(record.issue_date, reference) > threshold_days
    )


def delivery_stats(
    deliveries: list[DeliveryRecord],
    *,
    reference: date,
    threshold_days: int,
) -> DeliveryStats:
    total = len(deliveries)
    counts = Counter(record.status for record in deliveries)
    delivered = counts[DeliveryStatus.DELIVERED]
    full_returns = counts[DeliveryStatus.FULL_RETURN]
    partial_returns = counts[DeliveryStatus.PARTIAL_RETURN]
    return DeliveryStats(
        total=total,
        delivered=delivered,
        full_returns=full_returns,
        partial_returns=partial_returns,
        delivered_pct=percent(delivered, total),
        full_return_pct=percent(full_returns, total),
        partial_return_pct=percent(partial_returns, total),
        average_lead_time_days=average_lead_time(deliveries),
        stagnant_count=stagnant_count(deliveries, reference=reference, threshold_days=threshold_days),
        critical_threshold_days=max(MIN_CRITICAL_THRESHOLD_DAYS, int(threshold_days)),
    )


def commercial_stats(demands: list[DemandRecord]) -> CommercialStats:
    completed = [
        demand
        for demand in demands
        if demand.status == DemandStatus.COMPLETED and demand.completion_date is not None
    ]
    on_time = sum(1 for demand in completed if demand.completion_date <= demand.deadline)
    return CommercialStats(
        total=len(demands),
        completed=len(completed),
        on_time=on_time,
        sla_compliance_pct=int(percent(on_time, len(completed), WHOLE)),
    )


def pendency_stats(pendencies: list[PendencyRecord]) -> PendencyStats:
    total = len(pendencies)
    resolved = sum(1 for pendency in pendencies if pendency.resolved)
    return PendencyStats(
        total=total,
        resolved=resolved,
        active=total - resolved,
        resolution_pct=percent(resolved, total),
    )


def compute_dashboard_stats(
    *,
    deliveries: list[DeliveryRecord],
    demands: list[DemandRecord],
    pendencies: list[PendencyRecord],
    reference: date,
    threshold_days: int,
) -> DashboardStats:
    return DashboardStats(
        deliveries=delivery_stats(deliveries, reference=reference, threshold_days=threshold_days),
        commercial=commercial_stats(demands),
        pendencies=pendency_stats(pendencies),
    )


def group_demands_by_priority(demands: Iterable[DemandRecord]) -> PriorityGroups:
    groups = PriorityGroups()
    for demand in demands:
        if demand.priority == DemandPriority.URGENT:
            groups.urgent.append(demand)
        elif demand.priority == DemandPriority.HIGH:
            groups.high.append(demand)
        else:
            groups.normal.append(demand)
    return groups


def delivery_trend(deliveries: Iterable[DeliveryRecord], limit: int = 30) -> list[TrendPoint]:
    """Issued vs. delivered-the-same-day counts for the last ``limit`` days with movement."""
    issued: Counter[date] = Counter()
    same_day: Counter[date] = Counter()
    for record in deliveries:
        if record.issue_date is None:
            continue
        issued[record.issue_date] += 1
        if record.status == DeliveryStatus.DELIVERED and record.delivery_date == record.issue_date:
            same_day[record.issue_date] += 1
    days = sorted(issued)[-limit:] if limit > 0 else []
    return [TrendPoint(day=day, issued=issued[day], delivered_same_day=same_day[day]) for day in days]


def top_technicians(deliveries: Iterable[DeliveryRecord], limit: int = 5) -> list[tuple[str, int]]:
    counts = Counter(record.receiver_name for record in deliveries if record.receiver_name)
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return ranked[:limit]


def status_distribution(deliveries: Iterable[DeliveryRecord]) -> dict[str, int]:
    counts = Counter(record.status for record in deliveries)
    return {status.value: counts[status] for status in DeliveryStatus if counts[status]}


def calendar_events(
    demands: Iterable[DemandRecord],
    pendencies: Iterable[PendencyRecord],
    *,
    year: int,
    month: int,
) -> dict[date, list[CalendarEvent]]:
    if month < 1 or month > 12:
        raise ValueError('Month must be between 1 and 12')
    first = date(year, month, 1)
    last = date(year, month, monthrange(year, month)[1])

    events: dict[date, list[CalendarEvent]] = {}
    for demand in demands:
        if demand.status == DemandStatus.COMPLETED or not (first <= demand.deadline <= last):
            continue
        events.setdefault(demand.deadline, []).append(
            CalendarEvent(id=demand.id, title=demand.title, kind='commercial', priority=demand.priority.value)
        )
    for pendency in pendencies:
        expected = pendency.expected_resolution_date
        if pendency.resolved or expected is None or not (first <= expected <= last):
            continue
        events.setdefault(expected, []).append(
            CalendarEvent(
                id=pendency.id,
                title=f'Pendency: {pendency.provider_name}',
                kind='pendency',
                priority='Normal',
            )
        )
    return dict(sorted(events.items()))


def get_critical_threshold(db: Session, *, company_id: str) -> int:
    value = db.execute(
        select(DashboardSetting.critical_threshold_days).where(DashboardSetting.company_id == company_id)
    ).scalar_one_or_none()
    if value is None:
        return settings.default_critical_threshold_days
    return int(value)


def set_critical_threshold(db: Session, *, company_id: str, days: int) -> int:
    try:
        days = int(days)
    except (TypeError, ValueError) as exc:
        raise ValueError('Critical threshold must be a whole number of days') from exc
    if days < MIN_CRITICAL_THRESHOLD_DAYS:
        raise ValueError('Critical threshold must be at least 1 day')

    row = db.get(DashboardSetting, company_id)
    if row:
        row.critical_threshold_days = days
    else:
        db.add(DashboardSetting(company_id=company_id, critical_threshold_days=days))
    db.flush()
    logger.info('critical threshold for company %s set to %s days', company_id, days)
    return days
