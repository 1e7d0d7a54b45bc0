"""Notification persistence models (push device registrations)."""

from datetime import datetime

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from sippay.common.db import Base


class UserDevice(Base):
    """One push-capable device (a OneSignal player id) registered to a user."""

    __tablename__ = "user_devices"

    user_id: Mapped[str] = mapped_column("userId", String, primary_key=True)
    device_id: Mapped[str] = mapped_column("deviceId", String, primary_key=True)
    created_at: Mapped[datetime] = mapped_column("createdAt", DateTime(timezone=True), server_default=func.now())
