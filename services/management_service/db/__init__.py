from services.management_service.db.models import (
    Base,
    Website,
    Audit,
    Issue,
    Draft,
    Change,
    ActivityLog,
)

from services.management_service.db.session import (
    get_engine,
    get_sessionmaker,
    dispose_engine,
    init_db,
)

from services.management_service.db.storage import Storage

__all__ = [
    "Base",
    "Website",
    "Audit",
    "Issue",
    "Draft",
    "Change",
    "ActivityLog",
    "get_engine",
    "get_sessionmaker",
    "dispose_engine",
    "init_db",
    "Storage",
]
