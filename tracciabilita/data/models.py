from datetime import datetime, timezone
from sqlalchemy import (
    Boolean, CheckConstraint, Column, Integer, String, Float, Date, DateTime, Text,
    ForeignKey, Index, text,
)
from sqlalchemy.orm import DeclarativeBase, relationship


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


_NOT_CANCELLED = text("status != 'cancelled'")


class Base(DeclarativeBase):
    pass


# External directories: read by this package, owned elsewhere.


class Supplier(Base):
    __tablename__ = "suppliers"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    tax_id = Column(String)
    fiscal_code = Column(String)
    address = Column(Text)
    active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        Index("idx_suppliers_tax_id", "tax_id"),
    )


class Ingredient(Base):
    __tablename__ = "ingredients"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    category = Column(String)
    unit = Column(String, default="KG")
    active = Column(Boolean, default=True, nullable=False)

    lots = relationship("Lot", back_populates="ingredient", order_by="Lot.arrival_date")


# Reconciliation


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True)
    business_key = Column(String, nullable=False)
    content_hash = Column(String, nullable=False)  # SHA-256 of raw bytes
    filename = Column(String, nullable=False)
    file_size = Column(Integer)
    document_type = Column(String, default="TD24")
    number = Column(String)
    document_date = Column(Date)
    currency = Column(String, default="EUR")
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=True)
    supplier_name = Column(String)
    supplier_tax_id = Column(String)
    supplier_fiscal_code = Column(String)
    supplier_address = Column(Text)
    taxable_amount = Column(Float, default=0.0)
    tax_amount = Column(Float, default=0.0)
    total_amount = Column(Float, default=0.0)
    status = Column(String, nullable=False, default="analyzed")
    lines_total = Column(Integer, default=0)
    lines_imported = Column(Integer, default=0)
    lines_ignored = Column(Integer, default=0)
    lines_errored = Column(Integer, default=0)
    lines_manual = Column(Integer, default=0)
    movements_created = Column(Integer, default=0)
    notes = Column(Text)
    imported_at = Column(DateTime, default=utcnow)
    imported_by = Column(String, default="admin")
    cancelled_at = Column(DateTime)
    cancelled_by = Column(String)
    cancellation_reason = Column(Text)

    supplier = relationship("Supplier")
    shipments = relationship(
        "InvoiceShipment", back_populates="invoice", cascade="all, delete-orphan",
    )
    lines = relationship(
        "InvoiceLine", back_populates="invoice", cascade="all, delete-orphan",
        order_by="InvoiceLine.line_number",
    )

    __table_args__ = (
        Index(
            "uq_invoices_business_key_live", "business_key", unique=True,
            sqlite_where=_NOT_CANCELLED, postgresql_where=_NOT_CANCELLED,
        ),
        Index(
            "uq_invoices_content_hash_live", "content_hash", unique=True,
            sqlite_where=_NOT_CANCELLED, postgresql_where=_NOT_CANCELLED,
        ),
        Index("idx_invoices_status", "status"),
        Index("idx_invoices_supplier_tax_id", "supplier_tax_id"),
        Index("idx_invoices_imported_at", "imported_at"),
    )


class InvoiceShipment(Base):
    __tablename__ = "invoice_shipments"

    id = Column(Integer, primary_key=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=False)
    number = Column(String, nullable=False)
    shipment_date = Column(Date)

    invoice = relationship("Invoice", back_populates="shipments")


class InvoiceLine(Base):
    __tablename__ = "invoice_lines"

    id = Column(Integer, primary_key=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=False)
    line_number = Column(Integer, nullable=False)
    description = Column(Text, nullable=False)
    article_code = Column(String)
    quantity = Column(Float, default=0.0)
    unit = Column(String, default="PZ")
    unit_price = Column(Float, default=0.0)
    total_price = Column(Float, default=0.0)
    vat_rate = Column(Float, default=0.0)
    supplier_lot_code = Column(String)
    expiry_date = Column(Date)
    status = Column(String, nullable=False, default="unmatched")
    ingredient_id = Column(Integer, ForeignKey("ingredients.id"), nullable=True)
    ingredient_name = Column(String)
    match_score = Column(Integer)
    match_source = Column(String)
    mapping_id = Column(Integer, ForeignKey("supplier_product_mappings.id"), nullable=True)
    lot_id = Column(Integer, ForeignKey("lots.id"), nullable=True)
    movement_id = Column(Integer, ForeignKey("stock_movements.id"), nullable=True)
    error_message = Column(Text)

    invoice = relationship("Invoice", back_populates="lines")
    lot = relationship("Lot", foreign_keys=[lot_id])
    movement = relationship("StockMovement", foreign_keys=[movement_id])

    __table_args__ = (
        Index("idx_invoice_lines_invoice", "invoice_id"),
        Index("idx_invoice_lines_status", "status"),
    )


class SupplierProductMapping(Base):
    __tablename__ = "supplier_product_mappings"

    id = Column(Integer, primary_key=True)
    supplier_tax_id = Column(String, nullable=False)
    description = Column(Text, nullable=False)  # normalized
    original_description = Column(Text)
    article_code = Column(String)
    ingredient_id = Column(Integer, ForeignKey("ingredients.id"), nullable=False)
    ingredient_name = Column(String)
    ingredient_category = Column(String)
    supplier_unit = Column(String)
    internal_unit = Column(String)
    conversion_factor = Column(Float, default=1.0, nullable=False)
    usage_count = Column(Integer, default=1, nullable=False)
    last_used_at = Column(DateTime, default=utcnow)
    confirmed_manually = Column(Boolean, default=False, nullable=False)
    similarity_score = Column(Float)
    active = Column(Boolean, default=True, nullable=False)
    created_by = Column(String, default="admin")
    updated_by = Column(String)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("uq_mappings_supplier_description", "supplier_tax_id", "description", unique=True),
        Index("idx_mappings_usage", "supplier_tax_id", "active", "usage_count"),
    )


# Ledger


class Lot(Base):
    __tablename__ = "lots"

    id = Column(Integer, primary_key=True)
    code = Column(String, nullable=False)
    ingredient_id = Column(Integer, ForeignKey("ingredients.id"), nullable=False)
    initial_quantity = Column(Float, nullable=False)
    remaining_quantity = Column(Float, nullable=False)
    unit = Column(String)
    unit_price = Column(Float, default=0.0)
    arrival_date = Column(Date)
    expiry_date = Column(Date)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=True)
    supplier_name = Column(String)
    supplier_tax_id = Column(String)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=True)
    document_type = Column(String)  # "invoice", "manual"
    document_key = Column(String)
    document_number = Column(String)
    document_date = Column(Date)
    line_number = Column(Integer)
    supplier_lot_code = Column(String)
    status = Column(String, nullable=False, default="available")
    notes = Column(Text)
    reversed_at = Column(DateTime)
    reversal_reason = Column(Text)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    ingredient = relationship("Ingredient", back_populates="lots")
    invoice = relationship("Invoice")
    consumptions = relationship(
        "LotConsumption", back_populates="lot", order_by="LotConsumption.consumed_at",
    )
    movements = relationship("StockMovement", back_populates="lot")

    __table_args__ = (
        Index("uq_lots_ingredient_code", "ingredient_id", "code", unique=True),
        Index("idx_lots_expiry", "expiry_date"),
        Index("idx_lots_invoice", "invoice_id"),
        CheckConstraint("remaining_quantity >= 0", name="ck_lots_remaining_non_negative"),
        CheckConstraint(
            "remaining_quantity <= initial_quantity", name="ck_lots_remaining_le_initial",
        ),
    )


class StockMovement(Base):
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True)
    kind = Column(String, nullable=False)  # "inbound", "outbound", "reversal"
    ingredient_id = Column(Integer, ForeignKey("ingredients.id"), nullable=False)
    lot_id = Column(Integer, ForeignKey("lots.id"), nullable=True)
    quantity = Column(Float, nullable=False)  # signed
    unit = Column(String)
    unit_price = Column(Float)
    document_type = Column(String)  # "invoice", "order", "manual"
    document_ref = Column(String)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=True)
    reverses_id = Column(Integer, ForeignKey("stock_movements.id"), nullable=True)
    reversed_by_id = Column(Integer, ForeignKey("stock_movements.id"), nullable=True)
    note = Column(Text)
    actor = Column(String, default="admin")
    created_at = Column(DateTime, default=utcnow)

    lot = relationship("Lot", back_populates="movements")

    __table_args__ = (
        Index("idx_movements_ingredient", "ingredient_id"),
        Index("idx_movements_lot", "lot_id"),
        Index("idx_movements_document", "document_type", "document_ref"),
        Index("idx_movements_invoice", "invoice_id"),
    )


class LotConsumption(Base):
    __tablename__ = "lot_consumptions"

    id = Column(Integer, primary_key=True)
    lot_id = Column(Integer, ForeignKey("lots.id"), nullable=False)
    order_ref = Column(String, nullable=False)
    order_number = Column(String)
    customer_name = Column(String)
    quantity = Column(Float, nullable=False)
    consumed_at = Column(DateTime, default=utcnow)
    movement_id = Column(Integer, ForeignKey("stock_movements.id"), nullable=True)

    lot = relationship("Lot", back_populates="consumptions")

    __table_args__ = (
        Index("idx_consumptions_order", "order_ref"),
        Index("idx_consumptions_lot", "lot_id"),
    )
