"""
Patient Service
"""
import logging
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.patient.patient_model import Patient
from app.schemas.billing_schemas import PatientCreate, PatientResponse
from app.utils.pagination import Paginator, PaginationParams, PaginatedResponse

logger = logging.getLogger(__name__)


class PatientService:

    @staticmethod
    async def list_patients(
        db: AsyncSession,
        pagination: PaginationParams,
        search: Optional[str] = None
    ) -> PaginatedResponse[PatientResponse]:
        query = select(Patient)

        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    Patient.first_name.ilike(pattern),
                    Patient.last_name.ilike(pattern),
                    (Patient.first_name + " " + Patient.last_name).ilike(pattern),
                    Patient.mobile_number.ilike(pattern),
                    Patient.email.ilike(pattern)
                )
            )

        query = query.order_by(Patient.last_name, Patient.first_name, Patient.patient_id)
        return await Paginator(db).paginate(query, pagination, PatientResponse)

    @staticmethod
    async def get_patient(db: AsyncSession, patient_id: int) -> Patient:
        patient = (await db.execute(
            select(Patient).where(Patient.patient_id == patient_id)
        )).scalar_one_or_none()

        if not patient:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Patient not found"
            )
        return patient

    @staticmethod
    async def create_patient(db: AsyncSession, data: PatientCreate) -> Patient:
        patient = Patient(**data.model_dump())
        async with db.begin_nested():
            db.add(patient)
        await db.commit()
        await db.refresh(patient)

        logger.info(f"Patient {patient.patient_id} registered")
        return patient
