"""
Pagination Utility
Reusable pagination helper for SQLAlchemy queries
"""
from typing import Any, Callable, Generic, List, Optional, TypeVar
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import Select, func, select
from fastapi import Query
from pydantic import BaseModel, Field, computed_field
from math import ceil


T = TypeVar('T')

MAX_PAGE_SIZE = 500


class PaginationParams(BaseModel):
    """Request parameters for pagination"""
    page: int = Field(default=1, ge=1, description="Page number")
    limit: int = Field(default=10, ge=1, le=MAX_PAGE_SIZE, description="Items per page")

    @computed_field
    @property
    def skip(self) -> int:
        """Calculate offset for database query"""
        return (self.page - 1) * self.limit


class PaginationMeta(BaseModel):
    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1)
    total: int = Field(..., ge=0)
    pages: int = Field(..., ge=0)


class PaginatedResponse(BaseModel, Generic[T]):
    """Generic paginated envelope"""
    success: bool = True
    data: List[T] = Field(..., description="List of items for current page")
    pagination: PaginationMeta

    model_config = {"from_attributes": True}


def pagination_params(default_limit: int = 10):
    """
    Dependency factory so each listing can pick its own default page size.

    Usage:
        pagination: PaginationParams = Depends(pagination_params(50))
    """
    def dependency(
        page: int = Query(1, ge=1, description="Page number"),
        limit: int = Query(default_limit, ge=1, le=MAX_PAGE_SIZE, description="Items per page"),
    ) -> PaginationParams:
        return PaginationParams(page=page, limit=limit)

    return dependency


def _meta(total: int, params: PaginationParams) -> PaginationMeta:
    return PaginationMeta(
        page=params.page,
        limit=params.limit,
        total=total,
        pages=ceil(total / params.limit) if total > 0 else 0,
    )


class Paginator:
    """
    Reusable paginator for SQLAlchemy queries

    Example usage:
        from app.utils.pagination import Paginator, pagination_params

        @router.get("/suppliers")
        async def list_suppliers(
            pagination: PaginationParams = Depends(pagination_params()),
            db: AsyncSession = Depends(get_db)
        ):
            query = select(Supplier).order_by(Supplier.supplier_name)
            return await Paginator(db).paginate(query, pagination, SupplierResponse)

    For multi-column selects pass ``transform`` to turn each Row into
    a dict or schema instead of ``schema``.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def paginate(
        self,
        query: Select,
        params: PaginationParams,
        schema: Optional[type] = None,
        transform: Optional[Callable[[Any], Any]] = None
    ) -> PaginatedResponse:
        """
        Paginate a SQLAlchemy query

        Args:
            query: SQLAlchemy Select statement
            params: Pagination parameters (page, limit)
            schema: Optional Pydantic schema to convert ORM objects to
            transform: Optional callable applied to each result Row

        Returns:
            PaginatedResponse with items and pagination metadata
        """
        count_query = select(func.count()).select_from(query.order_by(None).subquery())
        return await self.paginate_raw_query(query, count_query, params, schema, transform)

    async def paginate_raw_query(
        self,
        query: Select,
        count_query: Select,
        params: PaginationParams,
        schema: Optional[type] = None,
        transform: Optional[Callable[[Any], Any]] = None
    ) -> PaginatedResponse:
        """
        Paginate with custom count query (for complex queries with joins)
        """
        result = await self.db.execute(count_query)
        total = result.scalar() or 0

        result = await self.db.execute(
            query.offset(params.skip).limit(params.limit)
        )

        if transform:
            items = [transform(row) for row in result.all()]
        else:
            items = list(result.scalars().all())
            if schema:
                items = [schema.model_validate(item) for item in items]

        return PaginatedResponse(data=items, pagination=_meta(total, params))
