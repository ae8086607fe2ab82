"""StateAllowedProduct: one (state, product) pair permitted for sale.

The set of rows for a given `state_id` is that state's complete list of
permitted products. Rows are only ever replaced wholesale per state by the
permissions pipeline; there is no incremental update path.
"""

from sqlalchemy import ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column

from portal.database import Base


class StateAllowedProduct(Base):
    __tablename__ = "state_allowed_products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    state_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("states.id"), nullable=False, index=True
    )
    product_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("products.id")
    )
