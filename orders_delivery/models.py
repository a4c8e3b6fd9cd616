"""
SQLAlchemy ORM models for the Orders Delivery service.

The service persists its tree store as one table of leaf nodes; orders,
their history and the lookup indexes all live under path prefixes.
"""
from sqlalchemy import JSON, Column, String
from .database import Base


class StoreNode(Base):
    """
    One leaf of the order tree.

    Attributes:
        path (str): Primary key, full slash-separated path
            (e.g. "ordersDelivery/-Nx3.../totals/total")
        value (Any): JSON scalar stored at that path
    """
    __tablename__ = "store_nodes"

    path = Column(String(512), primary_key=True)
    value = Column(JSON, nullable=False)
