"""db: shared database library (SQLAlchemy).

Public exports
--------------
- ``Base`` and ``metadata`` for schema creation
- ORM models in ``db.models.finance`` (re-exported for convenience)
- Engine/session holder in ``db.client``
"""

from __future__ import annotations

from .models.finance import Base, PnlCategory, PnlOperation, PnlRule

metadata = Base.metadata

__all__ = [
    "Base",
    "metadata",
    "PnlCategory",
    "PnlOperation",
    "PnlRule",
]
