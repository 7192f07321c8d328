from sqlalchemy import Column, Integer, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship

from backoffice.common.timeutils import utcnow
from backoffice.db.base import Base


class UserBranch(Base):
    """Assignment of a user to a branch (sucursal)."""
    __tablename__ = "user_branches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    branch_id = Column(Integer, nullable=False, index=True)
    is_manager = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)

    user = relationship("User", back_populates="branches")
