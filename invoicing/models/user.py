import sqlalchemy as sa
from sqlalchemy import Boolean, Column, DateTime, String, func
from sqlalchemy.dialects.postgresql import JSONB

from invoicing.core.database import Base, new_id

DEFAULT_BUSINESS_INFO = {
    "name": "Invoice System",
    "address": "123 Business Street",
    "city": "Kathmandu",
    "country": "Nepal",
    "email": "info@invoicesystem.com",
    "phone": "+977 987654321",
}


def _default_business_info() -> dict:
    return dict(DEFAULT_BUSINESS_INFO)


class User(Base):
    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=new_id)

    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)

    role = Column(String(20), default="user", nullable=False)  # user | admin
    is_active = Column(Boolean, default=True, nullable=False)

    # Só exibição (cabeçalho da fatura)
    business_info = Column(
        JSONB().with_variant(sa.JSON(), "sqlite"),
        default=_default_business_info,
        nullable=False,
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
