"""SQLAlchemy models for Budget-ch.

All models are imported here so that Alembic's autogenerate can discover
them via Base.metadata. If you add a new model, import it in this file.
"""

from app.models.audit_log import AuditLog
from app.models.notification import Notification
from app.models.subscription import Subscription
from app.models.user import User

__all__ = [
    "AuditLog",
    "Notification",
    "Subscription",
    "User",
]
