from datetime import datetime
from decimal import Decimal

from stockroom.extensions import db

# largest value every supported backend stores in an INTEGER column
MAX_COUNT = 2**31 - 1
# largest value of Numeric(12, 2)
MAX_PRICE = Decimal("9999999999.99")


class Item(db.Model):
    __tablename__ = "item"
    __table_args__ = (
        db.CheckConstraint("on_hand IS NULL OR on_hand >= 0", name="ck_item_on_hand_non_negative"),
        db.CheckConstraint("quantity IS NULL OR quantity >= 0", name="ck_item_quantity_non_negative"),
        db.CheckConstraint(
            "retail_price IS NULL OR retail_price >= 0", name="ck_item_retail_price_non_negative"
        ),
    )

    id = db.Column(db.String(255), primary_key=True)  # name-derived slug + sequence suffix
    name = db.Column(db.String, nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    supplier = db.Column(db.String, nullable=False, default="")
    supplier_url = db.Column(db.String, nullable=True)
    on_hand = db.Column(db.Integer, nullable=True)
    quantity = db.Column(db.Integer, nullable=True)
    retail_price = db.Column(db.Numeric(12, 2), nullable=True)  # bounded by MAX_PRICE
    count_date = db.Column(db.String, nullable=False, default="")
    count_person = db.Column(db.String, nullable=False, default="")
    delivery_date = db.Column(db.String, nullable=False, default="")
    location = db.Column(db.JSON, nullable=False, default=list)  # [["cab1", "row2", "col3"], ...]
    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(
        db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Item id={self.id!r} name={self.name!r} on_hand={self.on_hand}>"

    def to_dict(self) -> dict:
        retail_price = self.retail_price
        if isinstance(retail_price, Decimal):
            retail_price = float(retail_price)
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description or "",
            "supplier": self.supplier or "",
            "supplier_url": self.supplier_url,
            "on_hand": self.on_hand,
            "quantity": self.quantity,
            "retail_price": retail_price,
            "count_date": self.count_date or "",
            "count_person": self.count_person or "",
            "delivery_date": self.delivery_date or "",
            "location": [
                list(entry) if isinstance(entry, (list, tuple)) else entry
                for entry in (self.location or [])
            ],
        }


class CheckoutLedgerEntry(db.Model):
    __tablename__ = "checkout_ledger_entry"
    __table_args__ = (
        db.CheckConstraint("qty > 0", name="ck_checkout_ledger_entry_qty_positive"),
    )

    user_id = db.Column(db.String(255), primary_key=True)
    # not a foreign key: deleting an item leaves its ledger entries behind
    item_id = db.Column(db.String(255), primary_key=True)
    qty = db.Column(db.Integer, nullable=False)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<CheckoutLedgerEntry user_id={self.user_id!r} "
            f"item_id={self.item_id!r} qty={self.qty}>"
        )

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "item_id": self.item_id,
            "qty": self.qty,
            "updated_at": self.updated_at,
        }


class SequenceCounter(db.Model):
    __tablename__ = "sequence_counter"

    name = db.Column(db.String(64), primary_key=True)
    value = db.Column(db.Integer, nullable=False, default=0)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}
