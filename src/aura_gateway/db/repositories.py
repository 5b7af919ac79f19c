from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import AutomationRuleRow, PaymentRow


class AutomationRuleRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, rule_id: str) -> AutomationRuleRow | None:
        return await self.session.get(AutomationRuleRow, rule_id)

    async def list_rules(self, user_id: str | None = None) -> list[AutomationRuleRow]:
        stmt = select(AutomationRuleRow)
        if user_id is not None:
            stmt = stmt.where(AutomationRuleRow.user_id == user_id)
        result = await self.session.execute(stmt.order_by(AutomationRuleRow.created_at))
        return list(result.scalars().all())

    async def upsert(
        self,
        *,
        rule_id: str,
        user_id: str,
        rule_type: str,
        status: str,
        execution_count: int,
        last_executed: datetime | None,
        payload: dict,
    ) -> AutomationRuleRow:
        existing = await self.get(rule_id)
        if existing:
            existing.status = status
            existing.execution_count = execution_count
            existing.last_executed = last_executed
            existing.payload = payload
            return existing

        record = AutomationRuleRow(
            id=rule_id,
            user_id=user_id,
            rule_type=rule_type,
            status=status,
            execution_count=execution_count,
            last_executed=last_executed,
            payload=payload,
        )
        self.session.add(record)
        return record

    async def delete(self, rule_id: str) -> bool:
        record = await self.get(rule_id)
        if not record:
            return False
        await self.session.delete(record)
        return True


class PaymentRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, payment_id: str) -> PaymentRow | None:
        return await self.session.get(PaymentRow, payment_id)

    async def upsert(self, **fields) -> PaymentRow:
        existing = await self.get(fields["payment_id"])
        if existing:
            for key, value in fields.items():
                setattr(existing, key, value)
            return existing
        record = PaymentRow(**fields)
        self.session.add(record)
        return record

    async def latest_completed(self, user_address: str, service: str) -> PaymentRow | None:
        stmt = (
            select(PaymentRow)
            .where(
                PaymentRow.user_address == user_address.lower(),
                PaymentRow.service == service,
                PaymentRow.status == "completed",
                PaymentRow.paid_at.is_not(None),
            )
            .order_by(PaymentRow.paid_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
