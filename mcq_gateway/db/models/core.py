"""Subscription and usage tables shared with the mobile client's backend."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Enum, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from mcq_gateway.db.base import Base, TimestampMixin


class UserSubscription(TimestampMixin, Base):
    __tablename__ = "user_subscriptions"
    __table_args__ = (UniqueConstraint("user_id", name="uq_user_subscriptions_user_id"),)

    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    plan_type: Mapped[str] = mapped_column(
        Enum("free", "pro", name="plan_type"), default="free", nullable=False
    )
    is_active: Mapped[bool] = mapped_column(default=True)
    status: Mapped[str] = mapped_column(
        Enum("active", "cancelled", "expired", name="subscription_status"),
        default="active",
        nullable=False,
    )
    revenue_cat_customer_id: Mapped[str | None] = mapped_column(String(128))
    revenue_cat_subscription_id: Mapped[str | None] = mapped_column(String(128))


class UserUsageStats(TimestampMixin, Base):
    __tablename__ = "user_usage_stats"
    __table_args__ = (UniqueConstraint("user_id", name="uq_user_usage_stats_user_id"),)

    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    uploads_today: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    daily_reset_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


__all__ = ["UserSubscription", "UserUsageStats"]
