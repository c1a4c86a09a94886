"""
Models package — re-exports Base and all models.

Import models here so `Base.metadata.create_all` picks up every table.

When adding a new model:
    1. Create `gateway/db/models/<table_name>.py`
    2. Import it here
"""

from gateway.db.models.base import Base
from gateway.db.models.request_link import RequestLink

__all__ = [
    "Base",
    "RequestLink",
]
