"""
Billing Routes
Patients, the service catalog and treatment plans
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from app.core.deps import RequestContext, get_request_context
from app.db.dependencies import get_db
from app.schemas.base_schemas import APIResponse, MessageResponse
from app.schemas.billing_schemas import (
    PatientCreate, PatientResponse,
    ServiceCreate, ServiceUpdate, ServiceResponse,
    TreatmentPlanCreate, TreatmentPlanResponse, PlanChargeCreate, TreatmentChargeResponse
)
from app.services.billing.patient_service import PatientService
from app.services.billing.service_catalog_service import ServiceCatalogService
from app.services.billing.treatment_plan_service import TreatmentPlanService
from app.services.system.activity_service import log_request_activity
from app.utils.pagination import PaginatedResponse, PaginationParams, pagination_params


router = APIRouter(prefix="/billing", tags=["Billing"])

MODULE = "invoice"


# ============================================
# Patients
# ============================================

@router.get("/patients", response_model=PaginatedResponse[PatientResponse])
async def list_patients(
    search: Optional[str] = Query(None, description="Name, mobile number or email"),
    pagination: PaginationParams = Depends(pagination_params()),
    db: AsyncSession = Depends(get_db)
):
    return await PatientService.list_patients(db, pagination, search)


@router.get("/patients/{patient_id}", response_model=APIResponse[PatientResponse])
async def get_patient(patient_id: int, db: AsyncSession = Depends(get_db)):
    patient = await PatientService.get_patient(db, patient_id)
    return APIResponse(data=PatientResponse.model_validate(patient))


@router.post("/patients", response_model=APIResponse[PatientResponse], status_code=status.HTTP_201_CREATED)
async def create_patient(
    data: PatientCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    patient = await PatientService.create_patient(db, data)
    await log_request_activity(db, ctx, "create", MODULE, {"patient_id": patient.patient_id})
    return APIResponse(
        data=PatientResponse.model_validate(patient),
        message="Patient registered successfully"
    )


# ============================================
# Services
# ============================================

@router.get("/services", response_model=APIResponse[List[ServiceResponse]])
async def list_services(db: AsyncSession = Depends(get_db)):
    services = await ServiceCatalogService.list_services(db)
    return APIResponse(data=[ServiceResponse.model_validate(s) for s in services])


@router.get("/services/{service_id}", response_model=APIResponse[ServiceResponse])
async def get_service(service_id: int, db: AsyncSession = Depends(get_db)):
    service = await ServiceCatalogService.get_service(db, service_id)
    return APIResponse(data=ServiceResponse.model_validate(service))


@router.post("/services", response_model=APIResponse[ServiceResponse], status_code=status.HTTP_201_CREATED)
async def create_service(
    data: ServiceCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    """
    Add a service to the catalog

    **Pricing**: either fixed_price, or both min_price and max_price
    with min <= max. Supplying both modes is rejected with 400.
    """
    service = await ServiceCatalogService.create_service(db, data)
    await log_request_activity(db, ctx, "create", MODULE, {
        "service_id": service.service_id, "service_name": service.service_name
    })
    return APIResponse(
        data=ServiceResponse.model_validate(service),
        message="Service created successfully"
    )


@router.put("/services/{service_id}", response_model=APIResponse[ServiceResponse])
async def update_service(
    service_id: int,
    data: ServiceUpdate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    service = await ServiceCatalogService.update_service(db, service_id, data)
    await log_request_activity(db, ctx, "update", MODULE, {
        "service_id": service_id, "fields": sorted(data.model_dump(exclude_unset=True))
    })
    return APIResponse(
        data=ServiceResponse.model_validate(service),
        message="Service updated successfully"
    )


@router.delete("/services/{service_id}", response_model=MessageResponse)
async def delete_service(
    service_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    service = await ServiceCatalogService.delete_service(db, service_id)
    await log_request_activity(db, ctx, "delete", MODULE, {
        "service_id": service_id, "service_name": service.service_name
    })
    return MessageResponse(message="Service deleted successfully")


# ============================================
# Treatment plans
# ============================================

@router.post(
    "/treatment-plans",
    response_model=APIResponse[TreatmentPlanResponse],
    status_code=status.HTTP_201_CREATED
)
async def create_treatment_plan(
    data: TreatmentPlanCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    plan = await TreatmentPlanService.create_plan(db, data)
    await log_request_activity(db, ctx, "create", MODULE, {
        "plan_id": plan.plan_id, "patient_id": plan.patient_id, "charges": len(plan.charges)
    })
    return APIResponse(data=plan, message="Treatment plan created successfully")


@router.get("/treatment-plans/{plan_id}", response_model=APIResponse[TreatmentPlanResponse])
async def get_treatment_plan(plan_id: int, db: AsyncSession = Depends(get_db)):
    plan = await TreatmentPlanService.get_plan(db, plan_id)
    return APIResponse(data=TreatmentPlanService.build_response(plan))


@router.post(
    "/treatment-plans/{plan_id}/charges",
    response_model=APIResponse[TreatmentChargeResponse],
    status_code=status.HTTP_201_CREATED
)
async def add_plan_charge(
    plan_id: int,
    data: PlanChargeCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db)
):
    charge = await TreatmentPlanService.add_charge(db, plan_id, data)
    await log_request_activity(db, ctx, "create", MODULE, {
        "plan_id": plan_id, "charge_id": charge.charge_id, "service_id": charge.service_id
    })
    return APIResponse(data=charge, message="Charge added to treatment plan")
