from sqlalchemy import Column, Date, ForeignKey, Integer, Numeric, UniqueConstraint, Uuid

from roomsync.config import SCHEMA
from roomsync.models.base import Base


class PropertyRate(Base):
    """
    ORM model for a per-date price override.

    Read-only input to the price push; written by the broader application.
    """

    __tablename__ = "property_rates"
    __table_args__ = (
        UniqueConstraint("property_id", "date", name="uq_property_rates_property_date"),
        {"schema": SCHEMA},
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    property_id = Column(
        Uuid,
        ForeignKey(f"{SCHEMA}.properties.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    date = Column(Date, nullable=False)
    daily_price = Column(Numeric(12, 2), nullable=True)
    min_stay = Column(Integer, nullable=True)
