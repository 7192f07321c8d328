"""In-app notification model."""

from enum import Enum

from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, ForeignKey

from backoffice.common.timeutils import utcnow
from backoffice.db.base import Base


class NotificationKind(str, Enum):
    """Workflow events users are notified about."""
    APPROVAL_PENDING = "aprobacion_pendiente"
    APPROVAL_ADVANCED = "aprobacion_avanzada"
    APPROVAL_COMPLETED = "aprobacion_completada"
    APPROVAL_REJECTED = "aprobacion_rechazada"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    org_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    kind = Column(String(50), nullable=False)
    category = Column(String(50), nullable=False, default="sistema")
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    level = Column(String(20), nullable=False, default="info")  # info, success, warning, error
    icon = Column(String(50), nullable=True)
    action_url = Column(String(500), nullable=True)

    # Related entity
    entity_type = Column(String(50), nullable=True)
    entity_id = Column(Integer, nullable=True)

    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<Notification {self.kind} user={self.user_id}>"
