"""SQL-backed implementations of the rule store and payment ledger."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..automation import AutomationRule
from ..payments import PaymentRecord, PaymentStatus
from .models import PaymentRow
from .repositories import AutomationRuleRepository, PaymentRepository


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlRuleStore:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self.session_maker = session_maker

    async def get(self, rule_id: str) -> Optional[AutomationRule]:
        async with self.session_maker() as session:
            row = await AutomationRuleRepository(session).get(rule_id)
            return AutomationRule.model_validate(row.payload) if row else None

    async def list(self, user_id: Optional[str] = None) -> List[AutomationRule]:
        async with self.session_maker() as session:
            rows = await AutomationRuleRepository(session).list_rules(user_id)
            return [AutomationRule.model_validate(row.payload) for row in rows]

    async def save(self, rule: AutomationRule) -> None:
        async with self.session_maker() as session:
            async with session.begin():
                await AutomationRuleRepository(session).upsert(
                    rule_id=rule.id,
                    user_id=rule.user_id,
                    rule_type=rule.type.value,
                    status=rule.status.value,
                    execution_count=rule.execution_count,
                    last_executed=rule.last_executed,
                    payload=rule.model_dump(mode="json"),
                )

    async def delete(self, rule_id: str) -> bool:
        async with self.session_maker() as session:
            async with session.begin():
                return await AutomationRuleRepository(session).delete(rule_id)


def _to_record(row: PaymentRow) -> PaymentRecord:
    return PaymentRecord(
        payment_id=row.payment_id,
        service=row.service,
        amount=row.amount,
        currency=row.currency,
        user_address=row.user_address,
        status=PaymentStatus(row.status),
        created_at=_aware(row.created_at),
        expires_at=_aware(row.expires_at),
        transaction_hash=row.transaction_hash,
        paid_at=_aware(row.paid_at),
    )


class SqlPaymentStore:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self.session_maker = session_maker

    async def get(self, payment_id: str) -> Optional[PaymentRecord]:
        async with self.session_maker() as session:
            row = await PaymentRepository(session).get(payment_id)
            return _to_record(row) if row else None

    async def save(self, record: PaymentRecord) -> None:
        async with self.session_maker() as session:
            async with session.begin():
                await PaymentRepository(session).upsert(
                    payment_id=record.payment_id,
                    service=record.service,
                    amount=record.amount,
                    currency=record.currency,
                    user_address=record.user_address.lower(),
                    status=record.status.value,
                    created_at=record.created_at,
                    expires_at=record.expires_at,
                    transaction_hash=record.transaction_hash,
                    paid_at=record.paid_at,
                )

    async def latest_completed(self, user_address: str, service: str) -> Optional[PaymentRecord]:
        async with self.session_maker() as session:
            row = await PaymentRepository(session).latest_completed(user_address, service)
            return _to_record(row) if row else None
