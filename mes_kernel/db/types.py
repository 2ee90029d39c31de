"""
Module: mes_kernel.db.types
Responsibility: Column types for exact material quantities.
Architecture position: Kernel > DB.  May be imported by models/ and db/base.py.
    MUST NOT import from models/, services/ or selectors/.

Invariants enforced:
    - Quantities round-trip as ``Decimal`` with no binary-float step.
      PostgreSQL stores NUMERIC(38, 9); SQLite, which has no exact decimal
      storage class, stores the canonical decimal string.
    - Sums and comparisons of quantities are done in Python on ``Decimal``
      values, never in SQL, so both storage forms behave identically.
"""

from decimal import Decimal

from sqlalchemy import Numeric, String
from sqlalchemy.types import TypeDecorator

QUANTITY_PRECISION = 38
QUANTITY_SCALE = 9


class Quantity(TypeDecorator):
    """
    Exact decimal quantity.

    Binds ``Decimal``/``int``/``str`` and always loads ``Decimal``.
    Floats are refused at bind time.
    """

    impl = Numeric(QUANTITY_PRECISION, QUANTITY_SCALE)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(64))
        return dialect.type_descriptor(
            Numeric(QUANTITY_PRECISION, QUANTITY_SCALE, asdecimal=True)
        )

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, float):
            raise TypeError(f"Refusing to store float quantity {value!r}")
        quantity = value if isinstance(value, Decimal) else Decimal(str(value))
        if dialect.name == "sqlite":
            return str(quantity)
        return quantity

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, Decimal):
            return value
        return Decimal(str(value))
