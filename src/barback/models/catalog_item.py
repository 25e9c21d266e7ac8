"""CatalogItem model: beverage records read by the catalog cache and grant workflow."""

from decimal import Decimal

from sqlalchemy import Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from barback.core.db import Base
from barback.models.enums import ShelfTier


class CatalogItem(Base):
    """A single beverage in one catalog segment."""

    __tablename__ = "catalog_items"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    segment: Mapped[str] = mapped_column(String(32), nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    brand: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # Spirits: Whiskey, Gin, ... Wines: Red, White, ... Cocktails leave it empty
    type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    sub_type: Mapped[str | None] = mapped_column(String(100), nullable=True)

    origin: Mapped[str | None] = mapped_column(String(100), nullable=True)
    age: Mapped[int | None] = mapped_column(nullable=True)
    vintage: Mapped[int | None] = mapped_column(nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    price: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0.00")
    )
    rating: Mapped[float] = mapped_column(nullable=False, default=0.0)

    shelf_tier: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ShelfTier.LOWER.value,
        index=True,
    )

    is_available: Mapped[bool] = mapped_column(
        default=True,
        nullable=False,
        index=True,
    )

    @property
    def is_restricted(self) -> bool:
        return self.shelf_tier == ShelfTier.ULTRA.value

    @property
    def display_name(self) -> str:
        """Brand and name, or just the name for house items."""
        return f"{self.brand} {self.name}" if self.brand else self.name

    def __repr__(self) -> str:
        return f"<CatalogItem(id={self.id}, segment={self.segment}, name={self.name})>"
