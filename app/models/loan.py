from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import relationship

from app.db.base import Base


class Loan(Base):
    __tablename__ = "loans"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_loans_amount_positive"),
        CheckConstraint("term > 0", name="ck_loans_term_positive"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'active', 'closed')",
            name="ck_loans_status",
        ),
        CheckConstraint(
            "payment_frequency IN ('weekly', 'monthly')",
            name="ck_loans_payment_frequency",
        ),
        Index("ix_loans_user_created", "user_id", "created_at"),
    )

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    amount = Column(Numeric(14, 2), nullable=False)
    purpose = Column(String(255), nullable=False)
    term = Column(Integer, nullable=False)
    payment_frequency = Column(String(10), nullable=False)
    guarantor_name = Column(String(255), nullable=False)
    guarantor_relationship = Column(String(100), nullable=False)
    guarantor_id_url = Column(String(1024), nullable=False)
    status = Column(String(20), nullable=False, default="pending", server_default="pending", index=True)
    admin_comment = Column(Text, nullable=True)
    activated_at = Column(DateTime(timezone=True), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    user = relationship("User", back_populates="loans", lazy="raise")
    payments = relationship(
        "Payment",
        back_populates="loan",
        lazy="raise",
        order_by="Payment.paid_at",
    )
