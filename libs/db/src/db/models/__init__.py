"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the P&L categorization models used by ``pnl_categorizer``.
"""

from .finance import Base, PnlCategory, PnlOperation, PnlRule

__all__ = [
    "Base",
    "PnlCategory",
    "PnlOperation",
    "PnlRule",
]
