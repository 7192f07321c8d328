from sqlalchemy import Column, Integer, String, DateTime, JSON, Numeric, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from backoffice.common.timeutils import utcnow
from backoffice.db.base import Base


class Role(Base):
    __tablename__ = "roles"
    __table_args__ = (
        UniqueConstraint("org_id", "code", name="uq_roles_org_code"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    org_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    code = Column(String(50), nullable=False)  # admin, gerente, comprador, ...
    name = Column(String(100), nullable=False)
    permissions = Column(JSON, nullable=False, default=list)
    approval_limit = Column(Numeric(14, 2), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    organization = relationship("Organization", back_populates="roles")
    users = relationship("User", back_populates="role")

    def __repr__(self) -> str:
        return f"<Role {self.code}>"
