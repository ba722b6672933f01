from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import func
from sqlalchemy.orm import Session

from mercadoboom.config import Config
from mercadoboom.models import (
    Order,
    OrderStatus,
    PaymentStatus,
    SenderType,
    SupportTicket,
    TicketMessage,
    TicketStatus,
    User,
    as_utc,
)

try:
    _LOCAL_TZ = ZoneInfo(getattr(Config, "DEFAULT_TIMEZONE", "UTC"))
except ZoneInfoNotFoundError:
    _LOCAL_TZ = timezone.utc

PAID_STATUSES = tuple(status for status in OrderStatus if status != OrderStatus.PENDIENTE)


def _not_refunded():
    return Order.payment_status != PaymentStatus.REFUNDED


@dataclass(frozen=True)
class SalesWindow:
    start: datetime
    end: datetime
    days: int


def trailing_window(days: int, now: Optional[datetime] = None) -> SalesWindow:
    """Window covering the last ``days`` local calendar days, today included."""
    now = (now or datetime.now(timezone.utc)).astimezone(_LOCAL_TZ)
    end_local = datetime.combine(now.date() + timedelta(days=1), datetime.min.time(), tzinfo=_LOCAL_TZ)
    start_local = end_local - timedelta(days=days)
    return SalesWindow(
        start=start_local.astimezone(timezone.utc),
        end=end_local.astimezone(timezone.utc),
        days=days,
    )


def compute_store_stats(session: Session) -> Dict[str, float]:
    total_users = session.query(func.count(User.id)).scalar() or 0
    active_users = session.query(func.count(User.id)).filter(User.is_blocked.is_(False)).scalar() or 0
    total_orders = session.query(func.count(Order.id)).scalar() or 0
    pending_orders = (
        session.query(func.count(Order.id)).filter(Order.status == OrderStatus.PENDIENTE).scalar() or 0
    )
    total_sales = (
        session.query(func.coalesce(func.sum(Order.total_amount), 0))
        .filter(Order.status.in_(PAID_STATUSES))
        .filter(_not_refunded())
        .scalar()
    )
    return {
        "total_users": int(total_users),
        "active_users": int(active_users),
        "total_orders": int(total_orders),
        "pending_orders": int(pending_orders),
        "total_sales": float(Decimal(total_sales or 0)),
    }


def compute_sales_series(session: Session, window: SalesWindow) -> Dict[str, object]:
    """Daily paid-order count and revenue inside the window, zero-filled."""
    rows = (
        session.query(Order.created_at, Order.total_amount)
        .filter(Order.status.in_(PAID_STATUSES))
        .filter(_not_refunded())
        .filter(Order.created_at >= window.start)
        .filter(Order.created_at < window.end)
        .all()
    )
    counts: Dict[date, int] = defaultdict(int)
    revenue: Dict[date, Decimal] = defaultdict(Decimal)
    for created_at, amount in rows:
        if created_at is None:
            continue
        day = as_utc(created_at).astimezone(_LOCAL_TZ).date()
        counts[day] += 1
        revenue[day] += Decimal(amount or 0)

    series: List[Dict[str, object]] = []
    day = window.start.astimezone(_LOCAL_TZ).date()
    for _ in range(window.days):
        series.append({"date": day.isoformat(), "orders": counts.get(day, 0), "revenue": float(revenue.get(day, 0))})
        day += timedelta(days=1)

    return {
        "series": series,
        "total_revenue": float(sum(revenue.values(), Decimal("0"))),
        "total_orders": sum(counts.values()),
    }


def compute_support_summary(session: Session) -> Dict[str, Optional[float]]:
    """Ticket counts by state plus mean hours until the first admin reply."""
    by_status = dict(
        session.query(SupportTicket.status, func.count(SupportTicket.id)).group_by(SupportTicket.status).all()
    )

    first_replies = dict(
        session.query(TicketMessage.ticket_id, func.min(TicketMessage.created_at))
        .filter(TicketMessage.sender_type == SenderType.ADMIN)
        .group_by(TicketMessage.ticket_id)
        .all()
    )
    durations: List[float] = []
    if first_replies:
        tickets = session.query(SupportTicket.id, SupportTicket.created_at).filter(
            SupportTicket.id.in_(list(first_replies))
        )
        for ticket_id, created_at in tickets:
            replied_at = first_replies.get(ticket_id)
            if created_at is None or replied_at is None:
                continue
            durations.append((as_utc(replied_at) - as_utc(created_at)).total_seconds())

    avg_hours = round(sum(durations) / len(durations) / 3600, 2) if durations else None
    return {
        "total": int(sum(by_status.values())),
        "open": int(by_status.get(TicketStatus.ABIERTO, 0)),
        "in_progress": int(by_status.get(TicketStatus.EN_PROCESO, 0) + by_status.get(TicketStatus.ESPERANDO_CLIENTE, 0)),
        "resolved": int(by_status.get(TicketStatus.RESUELTO, 0) + by_status.get(TicketStatus.CERRADO, 0)),
        "avg_response_hours": avg_hours,
    }


__all__ = [
    "PAID_STATUSES",
    "SalesWindow",
    "trailing_window",
    "compute_store_stats",
    "compute_sales_series",
    "compute_support_summary",
]
