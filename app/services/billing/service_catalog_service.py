"""
Service Catalogue
Billable dental services and their pricing
"""
import logging
from typing import List, Optional

from fastapi import HTTPException, status
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.billing.billing_model import Service, TreatmentCharge
from app.schemas.billing_schemas import ServiceCreate, ServiceUpdate

logger = logging.getLogger(__name__)


def validate_pricing(fixed_price, min_price, max_price) -> None:
    """Either a fixed price or a complete min/max range"""
    has_range = min_price is not None or max_price is not None

    if fixed_price is not None and has_range:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot have both fixed_price and price range"
        )
    if fixed_price is None:
        if min_price is None or max_price is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Either fixed_price or both min_price and max_price are required"
            )
        if min_price > max_price:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="min_price cannot be greater than max_price"
            )


class ServiceCatalogService:

    @staticmethod
    async def list_services(db: AsyncSession) -> List[Service]:
        result = await db.execute(select(Service).order_by(Service.service_name))
        return list(result.scalars().all())

    @staticmethod
    async def get_service(db: AsyncSession, service_id: int) -> Service:
        service = (await db.execute(
            select(Service).where(Service.service_id == service_id)
        )).scalar_one_or_none()

        if not service:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Service not found"
            )
        return service

    @staticmethod
    async def _ensure_name_free(db: AsyncSession, name: str, exclude_id: Optional[int] = None):
        query = select(Service.service_id).where(func.lower(Service.service_name) == name.lower())
        if exclude_id:
            query = query.where(Service.service_id != exclude_id)
        if (await db.execute(query)).first():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Service with this name already exists"
            )

    @staticmethod
    async def create_service(db: AsyncSession, data: ServiceCreate) -> Service:
        validate_pricing(data.fixed_price, data.min_price, data.max_price)
        await ServiceCatalogService._ensure_name_free(db, data.service_name)

        service = Service(**data.model_dump())
        async with db.begin_nested():
            db.add(service)
        await db.commit()
        await db.refresh(service)

        logger.info(f"Service '{service.service_name}' created (id={service.service_id})")
        return service

    @staticmethod
    async def update_service(db: AsyncSession, service_id: int, data: ServiceUpdate) -> Service:
        service = await ServiceCatalogService.get_service(db, service_id)
        changes = data.model_dump(exclude_unset=True)

        if changes.get('service_name') and changes['service_name'] != service.service_name:
            await ServiceCatalogService._ensure_name_free(db, changes['service_name'], exclude_id=service_id)

        # Switching pricing mode clears the other mode's fields
        if changes.get('fixed_price') is not None:
            changes.setdefault('min_price', None)
            changes.setdefault('max_price', None)
        elif changes.get('min_price') is not None or changes.get('max_price') is not None:
            changes.setdefault('fixed_price', None)

        validate_pricing(
            changes.get('fixed_price', service.fixed_price),
            changes.get('min_price', service.min_price),
            changes.get('max_price', service.max_price),
        )

        async with db.begin_nested():
            for field, value in changes.items():
                setattr(service, field, value)
        await db.commit()
        await db.refresh(service)
        return service

    @staticmethod
    async def delete_service(db: AsyncSession, service_id: int) -> Service:
        service = await ServiceCatalogService.get_service(db, service_id)

        in_use = (await db.execute(
            select(func.count(TreatmentCharge.charge_id)).where(TreatmentCharge.service_id == service_id)
        )).scalar() or 0
        if in_use:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot delete service that is used in treatment charges"
            )

        async with db.begin_nested():
            await db.delete(service)
        await db.commit()
        return service
