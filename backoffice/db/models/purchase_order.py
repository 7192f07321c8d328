from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey

from backoffice.common.timeutils import utcnow
from backoffice.db.base import Base


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    org_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    folio = Column(String(50), nullable=False)
    total = Column(Numeric(14, 2), nullable=False, default=0)
    state = Column(String(30), nullable=False, default="borrador", index=True)
    sent_at = Column(DateTime, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<PurchaseOrder {self.folio} [{self.state}]>"
