from __future__ import annotations

from ..extensions import db
from marketpay.time_utils import to_utc_z

# Attendance payment flag
ATTENDANCE_UNPAID = "UNPAID"
ATTENDANCE_PAID = "PAID"


class Section(db.Model):
    """Market section (row/hall) grouping stalls and shop units."""
    __tablename__ = "sections"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)

    def __repr__(self) -> str:
        return f"<Section id={self.id} name={self.name!r}>"


class Stall(db.Model):
    """Open-air stall rented per visit (paid through Attendance)."""
    __tablename__ = "stalls"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    stall_number = db.Column(db.String(32), nullable=False, index=True)
    section_id = db.Column(db.Integer, db.ForeignKey("sections.id"), nullable=True, index=True)
    daily_fee = db.Column(db.Numeric(14, 2), nullable=True)

    section = db.relationship("Section", backref=db.backref("stalls", lazy=True))


class Store(db.Model):
    """
    Shop unit rented monthly under a Contract.

    store_number is what payers type into the gateway apps, so it doubles
    as the Payme/Click account reference for contract payments.
    """
    __tablename__ = "stores"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    store_number = db.Column(db.String(32), nullable=False, unique=True, index=True)
    section_id = db.Column(db.Integer, db.ForeignKey("sections.id"), nullable=True, index=True)

    section = db.relationship("Section", backref=db.backref("stores", lazy=True))


class Owner(db.Model):
    __tablename__ = "owners"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(255), nullable=False)
    tin = db.Column(db.String(32), nullable=True, index=True)


class Contract(db.Model):
    """
    Lease of a Store to an Owner with a fixed monthly fee.

    Read-only to the payment core: the fee and issue date drive period
    allocation, is_active gates whether the store can be paid at all.
    """
    __tablename__ = "contracts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("owners.id"), nullable=True, index=True)

    shop_monthly_fee = db.Column(db.Numeric(14, 2), nullable=True)
    issue_date = db.Column(db.Date, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("contracts", lazy=True))
    owner = db.relationship("Owner", backref=db.backref("contracts", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "store_number": self.store.store_number if self.store else None,
            "owner_id": self.owner_id,
            "shop_monthly_fee": str(self.shop_monthly_fee) if self.shop_monthly_fee is not None else None,
            "issue_date": self.issue_date.isoformat() if self.issue_date else None,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Attendance(db.Model):
    """
    One day of a stall being occupied; billed once.

    transaction_id is a plain back-reference (no FK) to avoid a
    transactions <-> attendances dependency cycle at DDL time.
    """
    __tablename__ = "attendances"
    __table_args__ = (
        db.Index("ix_attendances_stall_date", "stall_id", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    stall_id = db.Column(db.Integer, db.ForeignKey("stalls.id"), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False, index=True)
    amount = db.Column(db.Numeric(14, 2), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=ATTENDANCE_UNPAID, index=True)
    transaction_id = db.Column(db.Integer, nullable=True, index=True)

    stall = db.relationship("Stall", backref=db.backref("attendances", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stall_id": self.stall_id,
            "date": self.date.isoformat() if self.date else None,
            "amount": str(self.amount) if self.amount is not None else None,
            "status": self.status,
            "transaction_id": self.transaction_id,
        }
