"""SQLAlchemy ORM models for mail accounts, filters and import errors."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Integer, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class MailAccountRow(Base):
    __tablename__ = "mail_account"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner: Mapped[str] = mapped_column(Text, nullable=False)
    protocol: Mapped[str] = mapped_column(Text, nullable=False)
    host: Mapped[str] = mapped_column(Text, nullable=False)
    port: Mapped[int | None] = mapped_column(Integer)
    username: Mapped[str] = mapped_column(Text, nullable=False)
    password: Mapped[str] = mapped_column(Text, nullable=False)
    folder: Mapped[str] = mapped_column(Text, nullable=False, default="INBOX")
    last_uid: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    mark_seen: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    mark_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    filters: Mapped[list[MailFilterRow]] = relationship(
        back_populates="account",
        cascade="all, delete-orphan",
        order_by="MailFilterRow.position",
    )
    import_errors: Mapped[list[MailImportErrorRow]] = relationship(
        back_populates="account",
        cascade="all, delete-orphan",
        order_by="MailImportErrorRow.id",
    )


class MailFilterRow(Base):
    __tablename__ = "mail_filter"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        ForeignKey("mail_account.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    path: Mapped[str] = mapped_column(Text, nullable=False)
    grouping: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    account: Mapped[MailAccountRow] = relationship(back_populates="filters")
    rules: Mapped[list[MailFilterRuleRow]] = relationship(
        back_populates="filter",
        cascade="all, delete-orphan",
        order_by="MailFilterRuleRow.id",
    )


class MailFilterRuleRow(Base):
    __tablename__ = "mail_filter_rule"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    filter_id: Mapped[int] = mapped_column(
        ForeignKey("mail_filter.id", ondelete="CASCADE"),
        nullable=False,
    )
    field: Mapped[str] = mapped_column(Text, nullable=False)
    operation: Mapped[str] = mapped_column(Text, nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    filter: Mapped[MailFilterRow] = relationship(back_populates="rules")


class MailImportErrorRow(Base):
    __tablename__ = "mail_import_error"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        ForeignKey("mail_account.id", ondelete="CASCADE"),
        nullable=False,
    )
    uid: Mapped[str] = mapped_column(Text, nullable=False)
    subject: Mapped[str] = mapped_column(Text, nullable=False, default="")
    error: Mapped[str] = mapped_column(Text, nullable=False)
    imported_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    account: Mapped[MailAccountRow] = relationship(back_populates="import_errors")
