from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    func,
)
from sqlalchemy.orm import relationship

from app.db.base import Base


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("gender IN ('male', 'female', 'other')", name="ck_users_gender"),
    )

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    hashed_password = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=False)
    national_id_number = Column(String(64), nullable=True)
    phone_number = Column(String(50), nullable=True)
    address = Column(String(512), nullable=True)
    date_of_birth = Column(Date, nullable=True)
    gender = Column(String(10), nullable=True)
    id_image_path = Column(String(1024), nullable=True)
    profile_image_path = Column(String(1024), nullable=True)
    email_verified = Column(Boolean, nullable=False, default=False, server_default="false")
    phone_verified = Column(Boolean, nullable=False, default=False, server_default="false")
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    role_id = Column(BigInteger, ForeignKey("roles.id", ondelete="RESTRICT"), nullable=True, index=True)
    token_version = Column(Integer, nullable=False, default=0, server_default="0")
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    role = relationship("Role", back_populates="users", lazy="raise")
    loans = relationship("Loan", back_populates="user", lazy="raise")
