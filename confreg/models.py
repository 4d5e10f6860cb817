from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from confreg.database import Base


class Registration(Base):
    __tablename__ = "registrations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    email: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    status: Mapped[str | None] = mapped_column(String(32), nullable=True)

    phone1: Mapped[str | None] = mapped_column(String(32), nullable=True)
    phone2: Mapped[str | None] = mapped_column(String(32), nullable=True)
    name_prefix: Mapped[str | None] = mapped_column(String(128), nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    # Empty string marks an RSVP invitation still waiting on the invitee.
    last_name: Mapped[str | None] = mapped_column(String(128), nullable=True, default="")
    name_suffix: Mapped[str | None] = mapped_column(String(128), nullable=True)

    has_proxy: Mapped[bool] = mapped_column(Boolean, default=False)
    proxy_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    proxy_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    proxy_email: Mapped[str | None] = mapped_column(String(128), nullable=True)

    cancelled_attendance: Mapped[bool] = mapped_column(Boolean, default=False)
    cancellation_reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    day1_attendee: Mapped[bool] = mapped_column(Boolean, default=False)
    day2_attendee: Mapped[bool] = mapped_column(Boolean, default=False)

    question1: Mapped[str] = mapped_column(String(512), nullable=False)
    question2: Mapped[str] = mapped_column(String(512), nullable=False)

    is_attendee: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    is_cancelled: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    is_monitor: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    is_organizer: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    is_presenter: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    is_sponsor: Mapped[bool] = mapped_column(Boolean, default=False, index=True)

    presenter_bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    presenter_pic_url: Mapped[str | None] = mapped_column(String(256), nullable=True)
    session1_title: Mapped[str | None] = mapped_column(String(256), nullable=True)
    session1_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    session2_title: Mapped[str | None] = mapped_column(String(256), nullable=True)
    session2_description: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    credential: Mapped["Credential"] = relationship(
        back_populates="registration", cascade="all, delete-orphan", passive_deletes=True, uselist=False
    )


class Credential(Base):
    __tablename__ = "credentials"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    registration_id: Mapped[int] = mapped_column(
        ForeignKey("registrations.id", ondelete="CASCADE"), unique=True, nullable=False, index=True
    )
    login_pin: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    registration: Mapped[Registration] = relationship(back_populates="credential")


class ValidationTableEntry(Base):
    __tablename__ = "validation_tables"
    __table_args__ = (UniqueConstraint("validation_table", "value", name="uq_validation_table_value"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    validation_table: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    value: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
