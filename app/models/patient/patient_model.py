from app.db.base import Base
from sqlalchemy import String, Integer
from sqlalchemy.orm import Mapped, mapped_column
from typing import Optional

from app.models.core.mixins import CreatedAtMixin


class Patient(Base, CreatedAtMixin):
    """
    Billing patient.
    Clinical records live elsewhere; billing only needs name and contacts
    for invoices, e-mails and reports.
    """
    __tablename__ = 'patients'

    patient_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    first_name: Mapped[str] = mapped_column(String(255), nullable=False)
    last_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    mobile_number: Mapped[Optional[str]] = mapped_column(
        String(20),
        index=True
    )

    email: Mapped[Optional[str]] = mapped_column(
        String(255),
        index=True
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self):
        return f"<Patient(id={self.patient_id}, name='{self.full_name}')>"
