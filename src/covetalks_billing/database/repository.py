"""Repository layer for billing record persistence."""

import logging
from typing import Optional, Dict, Any, List, Type

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import PersistenceError, DuplicateRecordError
from .models import (
    Base,
    Account,
    SubscriptionRecord,
    PaymentRecord,
)

logger = logging.getLogger(__name__)

ACCOUNTS = "accounts"
SUBSCRIPTION_RECORDS = "subscription_records"
PAYMENT_RECORDS = "payment_records"

TABLES: Dict[str, Type[Base]] = {
    ACCOUNTS: Account,
    SUBSCRIPTION_RECORDS: SubscriptionRecord,
    PAYMENT_RECORDS: PaymentRecord,
}


class RecordStore:
    """Table-addressed record access over an async session.

    Every write runs inside its own SAVEPOINT, so a failed insert or update
    leaves the surrounding session usable for the next record.
    """

    def __init__(self, session: AsyncSession):
        """Initialize the store with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    @staticmethod
    def _model(table: str) -> Type[Base]:
        try:
            return TABLES[table]
        except KeyError:
            raise ValueError(f"Unknown table: {table}") from None

    @staticmethod
    def _column(model: Type[Base], name: str):
        column = getattr(model, name, None)
        if column is None:
            raise ValueError(f"Unknown column {name} on {model.__tablename__}")
        return column

    def _select(
        self,
        table: str,
        order_by: Optional[str],
        descending: bool,
        filters: Dict[str, Any],
    ):
        model = self._model(table)
        stmt = select(model)
        for name, value in filters.items():
            stmt = stmt.where(self._column(model, name) == value)
        if order_by:
            column = self._column(model, order_by)
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        return stmt

    async def get(self, table: str, record_id: str) -> Optional[Base]:
        """Get a record by its primary key.

        Args:
            table: Table name.
            record_id: Record ID.

        Returns:
            Model instance if found, None otherwise.
        """
        model = self._model(table)
        try:
            return await self.session.get(model, record_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to load {table}/{record_id}: {e}")
            raise PersistenceError(f"Failed to load {table} record {record_id}", reference=record_id) from e

    async def find_one(
        self,
        table: str,
        order_by: Optional[str] = None,
        descending: bool = False,
        **filters: Any,
    ) -> Optional[Base]:
        """Find the first record matching all equality filters.

        Args:
            table: Table name.
            order_by: Optional column to sort by before taking the first row.
            descending: Sort direction for order_by.
            **filters: Column equality filters.

        Returns:
            Model instance if found, None otherwise.
        """
        stmt = self._select(table, order_by, descending, filters).limit(1)
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(f"Lookup in {table} failed: {e}")
            raise PersistenceError(f"Lookup in {table} failed") from e
        return result.scalars().first()

    async def find_all(
        self,
        table: str,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        **filters: Any,
    ) -> List[Base]:
        """List records matching all equality filters."""
        stmt = self._select(table, order_by, descending, filters)
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(f"Listing {table} failed: {e}")
            raise PersistenceError(f"Listing {table} failed") from e
        return list(result.scalars().all())

    async def insert(self, table: str, data: Dict[str, Any]) -> Base:
        """Insert a new record.

        Args:
            table: Table name.
            data: Column values for the new record.

        Returns:
            Created model instance.

        Raises:
            DuplicateRecordError: If a unique constraint is violated.
            PersistenceError: For any other database failure.
        """
        model = self._model(table)
        record = model(**data)
        try:
            async with self.session.begin_nested():
                self.session.add(record)
                await self.session.flush()
        except IntegrityError as e:
            logger.warning(f"Duplicate insert into {table}: {e.orig}")
            raise DuplicateRecordError(f"Record already exists in {table}") from e
        except SQLAlchemyError as e:
            logger.error(f"Insert into {table} failed: {e}")
            raise PersistenceError(f"Insert into {table} failed") from e

        logger.info(f"Created {table} record {record.id}")
        return record

    async def update(self, table: str, record_id: str, patch: Dict[str, Any]) -> Base:
        """Apply a partial update to a record.

        Args:
            table: Table name.
            record_id: ID of the record to update.
            patch: Column values to change.

        Returns:
            Updated model instance.
        """
        record = await self.get(table, record_id)
        if record is None:
            raise PersistenceError(f"{table} record {record_id} not found", reference=record_id)

        model = type(record)
        for name in patch:
            self._column(model, name)

        try:
            async with self.session.begin_nested():
                for name, value in patch.items():
                    setattr(record, name, value)
                await self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Update of {table}/{record_id} failed: {e}")
            raise PersistenceError(f"Update of {table} record {record_id} failed", reference=record_id) from e

        logger.debug(f"Updated {table} record {record_id}: {sorted(patch)}")
        return record
