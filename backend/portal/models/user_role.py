import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum as SAEnum, String
from sqlalchemy.orm import Mapped, mapped_column

from portal.database import Base


class AppRole(str, enum.Enum):
    BASIC = "basic"
    ADMIN = "admin"


class UserRole(Base):
    """Server-side role assignment for an auth-provider user id.

    Users without a row are treated as `basic`.
    """
    __tablename__ = "user_roles"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        String(36), unique=True, nullable=False, index=True
    )
    role: Mapped[AppRole] = mapped_column(SAEnum(AppRole), default=AppRole.BASIC)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
