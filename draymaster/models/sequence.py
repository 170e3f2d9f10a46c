from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from draymaster.models.base import Base


class DocumentSequence(Base):
    """Named counter row for invoice and settlement numbers."""

    __tablename__ = "document_sequence"

    name: Mapped[str] = mapped_column(String(50), primary_key=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
