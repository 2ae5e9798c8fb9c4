"""
Treatment Plan Service
Planned treatments whose charges are invoiced later
"""
import logging
from decimal import Decimal
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.billing.billing_model import TreatmentPlan, TreatmentCharge, Service
from app.schemas.billing_schemas import (
    TreatmentPlanCreate, PlanChargeCreate, TreatmentPlanResponse, TreatmentChargeResponse
)
from app.services.billing.patient_service import PatientService
from app.services.billing.service_catalog_service import ServiceCatalogService

logger = logging.getLogger(__name__)


def resolve_charge_amount(estimated: Optional[Decimal], service: Service) -> Decimal:
    """Explicit estimate, else the service's fixed price, else its range midpoint, else 0"""
    if estimated is not None:
        return Decimal(str(estimated))
    return service.default_price.quantize(Decimal("0.01"))


def charge_response(charge: TreatmentCharge) -> TreatmentChargeResponse:
    response = TreatmentChargeResponse.model_validate(charge)
    response.service_name = charge.service.service_name if charge.service else None
    return response


class TreatmentPlanService:

    @staticmethod
    async def get_plan(db: AsyncSession, plan_id: int, lock: bool = False) -> TreatmentPlan:
        query = (
            select(TreatmentPlan)
            .options(
                selectinload(TreatmentPlan.charges).selectinload(TreatmentCharge.service),
                selectinload(TreatmentPlan.patient)
            )
            .where(TreatmentPlan.plan_id == plan_id)
            .execution_options(populate_existing=True)
        )
        if lock:
            query = query.with_for_update()

        plan = (await db.execute(query)).scalar_one_or_none()
        if not plan:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Treatment plan not found"
            )
        return plan

    @staticmethod
    def build_response(plan: TreatmentPlan) -> TreatmentPlanResponse:
        return TreatmentPlanResponse(
            plan_id=plan.plan_id,
            patient_id=plan.patient_id,
            patient_name=plan.patient.full_name if plan.patient else None,
            dentist_name=plan.dentist_name,
            status=plan.status,
            notes=plan.notes,
            created_at=plan.created_at,
            updated_at=plan.updated_at,
            charges=[charge_response(c) for c in plan.charges],
        )

    @staticmethod
    async def _new_charge(db: AsyncSession, plan_id: int, data: PlanChargeCreate) -> TreatmentCharge:
        service = await ServiceCatalogService.get_service(db, data.service_id)
        return TreatmentCharge(
            plan_id=plan_id,
            service_id=service.service_id,
            tooth_number=data.tooth_number,
            estimated_amount=resolve_charge_amount(data.estimated_amount, service),
            status='pending',
            notes=data.notes,
        )

    @staticmethod
    async def create_plan(db: AsyncSession, data: TreatmentPlanCreate) -> TreatmentPlanResponse:
        await PatientService.get_patient(db, data.patient_id)

        async with db.begin_nested():
            plan = TreatmentPlan(
                patient_id=data.patient_id,
                dentist_name=data.dentist_name,
                status='planned',
                notes=data.notes,
            )
            db.add(plan)
            await db.flush()

            for charge_data in data.charges:
                db.add(await TreatmentPlanService._new_charge(db, plan.plan_id, charge_data))
            await db.flush()

        await db.commit()
        logger.info(f"Treatment plan {plan.plan_id} created for patient {data.patient_id}")

        plan = await TreatmentPlanService.get_plan(db, plan.plan_id)
        return TreatmentPlanService.build_response(plan)

    @staticmethod
    async def add_charge(db: AsyncSession, plan_id: int, data: PlanChargeCreate) -> TreatmentChargeResponse:
        plan = await TreatmentPlanService.get_plan(db, plan_id)

        if plan.status == 'completed':
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot add charges to a completed treatment plan"
            )

        async with db.begin_nested():
            charge = await TreatmentPlanService._new_charge(db, plan_id, data)
            db.add(charge)
            await db.flush()

        await db.commit()

        charge = (await db.execute(
            select(TreatmentCharge)
            .options(selectinload(TreatmentCharge.service))
            .where(TreatmentCharge.charge_id == charge.charge_id)
            .execution_options(populate_existing=True)
        )).scalar_one()
        return charge_response(charge)
