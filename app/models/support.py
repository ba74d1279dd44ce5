from sqlalchemy import BigInteger, CheckConstraint, Column, DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import relationship

from app.db.base import Base


class SupportChat(Base):
    __tablename__ = "support_chats"
    __table_args__ = (
        CheckConstraint("status IN ('open', 'closed')", name="ck_support_chats_status"),
    )

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    subject = Column(String(255), nullable=True)
    status = Column(String(10), nullable=False, default="open", server_default="open")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    messages = relationship(
        "SupportMessage",
        back_populates="chat",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="raise",
    )


class SupportMessage(Base):
    __tablename__ = "support_messages"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    chat_id = Column(
        BigInteger, ForeignKey("support_chats.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sender_user_id = Column(BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    body = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    chat = relationship("SupportChat", back_populates="messages", lazy="raise")
