import uuid
from contextlib import asynccontextmanager
from typing import Any
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy import update
from sqlalchemy.ext.asyncio import create_async_engine

from app.config import settings
from app.errors import NotFoundError
from app.models.delivery_company import DeliveryCompanyRecord
from app.models.order import OrderRecord
from app.schemas.delivery_company import DeliveryCompany, DeliveryCompanyBase
from app.schemas.order import Order

class PostgresAgent:
    def __init__(self, database_url: str | None = None):
        self.engine = create_async_engine(database_url or settings.DATABASE_URL)

    async def get_session(self):
        async with AsyncSession(self.engine) as session:
            yield session

    @asynccontextmanager
    async def transaction(self):
        """Session whose writes commit on clean exit and roll back on any exception"""
        async with AsyncSession(self.engine) as session:
            async with session.begin():
                yield session

    async def list_companies(self, active_only: bool = False, ids: list[uuid.UUID] | None = None) -> list[DeliveryCompany]:
        async for db in self.get_session():
            statement = select(DeliveryCompanyRecord).order_by(DeliveryCompanyRecord.name)
            if ids:
                statement = statement.where(DeliveryCompanyRecord.id.in_(ids))
            elif active_only:
                statement = statement.where(DeliveryCompanyRecord.is_active == True)
            result = (await db.exec(statement)).all()
            return [record.to_schema() for record in result]
        return []

    async def get_company(self, company_id: uuid.UUID) -> DeliveryCompany | None:
        async for db in self.get_session():
            result = await db.get(DeliveryCompanyRecord, company_id)
            return result.to_schema() if result else None
        return None

    async def get_company_by_code(self, code: str) -> DeliveryCompany | None:
        async for db in self.get_session():
            statement = select(DeliveryCompanyRecord).where(DeliveryCompanyRecord.code == code)
            result = (await db.exec(statement)).first()
            return result.to_schema() if result else None
        return None

    async def get_fallback_company(self) -> DeliveryCompany | None:
        """Active default company, else the first active one by name"""
        async for db in self.get_session():
            statement = (
                select(DeliveryCompanyRecord)
                .where(DeliveryCompanyRecord.is_active == True)
                .order_by(DeliveryCompanyRecord.is_default.desc(), DeliveryCompanyRecord.name)
            )
            result = (await db.exec(statement)).first()
            return result.to_schema() if result else None
        return None

    async def get_auto_dispatch_company(self) -> DeliveryCompany | None:
        async for db in self.get_session():
            statement = (
                select(DeliveryCompanyRecord)
                .where(DeliveryCompanyRecord.is_active == True)
                .where(DeliveryCompanyRecord.auto_dispatch_on_order_create == True)
                .order_by(DeliveryCompanyRecord.is_default.desc())
            )
            result = (await db.exec(statement)).first()
            return result.to_schema() if result else None
        return None

    async def insert_company(self, company: DeliveryCompanyBase) -> DeliveryCompany:
        async for db in self.get_session():
            db_company = DeliveryCompanyRecord.from_schema(company)
            db.add(db_company)
            await db.commit()
            await db.refresh(db_company)
            return db_company.to_schema()

    async def update_company(self, company_id: uuid.UUID, data: dict[str, Any]) -> DeliveryCompany | None:
        async for db in self.get_session():
            db_company = await db.get(DeliveryCompanyRecord, company_id)
            if db_company is None:
                return None
            db_company.apply(data)
            db.add(db_company)
            await db.commit()
            await db.refresh(db_company)
            return db_company.to_schema()
        return None

    async def delete_company(self, company_id: uuid.UUID) -> bool:
        async for db in self.get_session():
            db_company = await db.get(DeliveryCompanyRecord, company_id)
            if db_company is None:
                return False
            await db.delete(db_company)
            await db.commit()
            return True
        return False

    async def insert_order(self, order: Order) -> Order:
        async for db in self.get_session():
            db_order = OrderRecord.from_schema(order)
            db.add(db_order)
            await db.commit()
            await db.refresh(db_order)
            return db_order.to_schema()

    async def get_order(self, order_id: uuid.UUID) -> Order | None:
        async for db in self.get_session():
            result = await db.get(OrderRecord, order_id)
            return result.to_schema() if result else None
        return None

    async def list_delivery_orders(self, order_id: uuid.UUID | None = None, limit: int = 50) -> list[Order]:
        async for db in self.get_session():
            statement = (
                select(OrderRecord)
                .order_by(OrderRecord.delivery_assigned_at.desc().nulls_last(), OrderRecord.created_at.desc())
                .limit(limit)
            )
            if order_id:
                statement = statement.where(OrderRecord.id == order_id)
            result = (await db.exec(statement)).all()
            return [record.to_schema() for record in result]
        return []

    async def save_delivery(self, db: AsyncSession, order_id: uuid.UUID, fields: dict[str, Any]) -> None:
        """Write delivery fields onto an order inside the caller's transaction"""
        db_order = await db.get(OrderRecord, order_id)
        if db_order is None:
            raise NotFoundError("Order not found")
        for key, value in fields.items():
            setattr(db_order, key, value)
        db.add(db_order)

    async def assign_orders(self, order_ids: list[uuid.UUID], fields: dict[str, Any]) -> int:
        async for db in self.get_session():
            statement = update(OrderRecord).where(OrderRecord.id.in_(order_ids)).values(**fields)
            result = await db.execute(statement)
            await db.commit()
            return result.rowcount or 0
        return 0
