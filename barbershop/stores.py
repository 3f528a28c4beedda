# barbershop/stores.py

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel import col, select

from .errors import (
    BarbershopError,
    ConflictError,
    DuplicateAppointmentError,
    InfrastructureError,
    SlotUnavailableError,
)
from .models import (
    Appointment,
    AppointmentHistory,
    BlockedInterval,
    Client,
    ClientNote,
    Staff,
)
from .schemas import SLOT_MINUTES, AppointmentStatus

logger = logging.getLogger(__name__)

CANCELLED = AppointmentStatus.cancelled.value


def _live():
    return (
        col(Appointment.status) != CANCELLED,
        col(Appointment.archived_at).is_(None),
    )


class SqlStore:
    def __init__(self, session_factory: async_sessionmaker):
        self._sessions = session_factory

    @asynccontextmanager
    async def _session(self):
        try:
            async with self._sessions() as session:
                yield session
        except BarbershopError:
            raise
        except SQLAlchemyError as exc:
            logger.exception("Database error in %s", type(self).__name__)
            raise InfrastructureError() from exc


class SqlAppointmentStore(SqlStore):
    async def create(self, appointment: Appointment, now: datetime) -> Appointment:
        async with self._session() as session:
            # a past, un-swept appointment must not block the customer's next booking
            stale = (
                await session.exec(
                    select(Appointment)
                    .where(Appointment.customer_phone == appointment.customer_phone)
                    .where(*_live())
                    .where(col(Appointment.starts_at) < now)
                )
            ).all()
            for row in stale:
                await self._archive(session, row, now)
            try:
                # archive before insert so the live-row indexes see the change
                await session.flush()
                session.add(appointment)
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise self._conflict_from(exc) from exc
            return appointment

    async def save(self, appointment: Appointment) -> Appointment:
        async with self._session() as session:
            merged = await session.merge(appointment)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise self._conflict_from(exc) from exc
            return merged

    async def get(self, appointment_id: str) -> Optional[Appointment]:
        async with self._session() as session:
            return await session.get(Appointment, appointment_id)

    async def find_by_id_prefix(self, prefix: str) -> List[Appointment]:
        async with self._session() as session:
            rows = await session.exec(
                select(Appointment).where(
                    col(Appointment.id).startswith(prefix.lower(), autoescape=True)
                )
            )
            return list(rows.all())

    async def find_active_by_customer(self, phone: str) -> Optional[Appointment]:
        async with self._session() as session:
            rows = await session.exec(
                select(Appointment)
                .where(Appointment.customer_phone == phone)
                .where(*_live())
                .order_by(col(Appointment.starts_at).desc())
            )
            return rows.first()

    async def find_by_staff_and_range(
        self,
        staff_id: str,
        start: datetime,
        end: datetime,
        include_cancelled: bool = False,
    ) -> List[Appointment]:
        stmt = (
            select(Appointment)
            .where(Appointment.staff_id == staff_id)
            .where(col(Appointment.starts_at) >= start)
            .where(col(Appointment.starts_at) < end)
        )
        if not include_cancelled:
            stmt = stmt.where(col(Appointment.status) != CANCELLED)
        stmt = stmt.order_by(col(Appointment.starts_at))
        async with self._session() as session:
            return list((await session.exec(stmt)).all())

    async def is_slot_free(self, staff_id: str, starts_at: datetime) -> bool:
        # half-open overlap against fixed-length appointments
        duration = timedelta(minutes=SLOT_MINUTES)
        stmt = (
            select(func.count())
            .select_from(Appointment)
            .where(Appointment.staff_id == staff_id)
            .where(col(Appointment.status) != CANCELLED)
            .where(col(Appointment.starts_at) > starts_at - duration)
            .where(col(Appointment.starts_at) < starts_at + duration)
        )
        async with self._session() as session:
            return (await session.exec(stmt)).one() == 0

    async def archive_expired(self, now: datetime) -> int:
        async with self._session() as session:
            expired = (
                await session.exec(
                    select(Appointment)
                    .where(*_live())
                    .where(col(Appointment.starts_at) < now)
                    .order_by(col(Appointment.starts_at))
                )
            ).all()
            for row in expired:
                await self._archive(session, row, now)
            await session.commit()
            return len(expired)

    async def get_history(self, phone: str) -> Optional[AppointmentHistory]:
        async with self._session() as session:
            return await session.get(AppointmentHistory, phone)

    async def count_by_dates(
        self, staff_id: str, windows: Dict[date, Tuple[datetime, datetime]]
    ) -> Dict[date, int]:
        counts = {}
        async with self._session() as session:
            for day, (start, end) in windows.items():
                stmt = (
                    select(func.count())
                    .select_from(Appointment)
                    .where(Appointment.staff_id == staff_id)
                    .where(col(Appointment.status) != CANCELLED)
                    .where(col(Appointment.starts_at) >= start)
                    .where(col(Appointment.starts_at) < end)
                )
                counts[day] = (await session.exec(stmt)).one()
        return counts

    @staticmethod
    async def _archive(session, row: Appointment, now: datetime) -> None:
        row.archived_at = now
        session.add(row)
        await session.merge(
            AppointmentHistory(
                customer_phone=row.customer_phone,
                appointment_id=row.id,
                customer_name=row.customer_name,
                staff_id=row.staff_id,
                service=row.service,
                starts_at=row.starts_at,
                status=row.status,
                created_at=row.created_at,
                archived_at=now,
            )
        )

    @staticmethod
    def _conflict_from(exc: IntegrityError) -> ConflictError:
        if "customer" in str(exc.orig).lower():
            return DuplicateAppointmentError()
        return SlotUnavailableError()


class SqlBlockedIntervalStore(SqlStore):
    async def create(self, block: BlockedInterval) -> BlockedInterval:
        async with self._session() as session:
            session.add(block)
            await session.commit()
            return block

    async def delete(self, block_id: str) -> bool:
        async with self._session() as session:
            block = await session.get(BlockedInterval, block_id)
            if block is None:
                return False
            await session.delete(block)
            await session.commit()
            return True

    async def delete_by_slot(self, staff_id: str, day: date, start_time: str) -> bool:
        """Removes the one-off block for ``day``; falls back to a recurring one."""
        async with self._session() as session:
            candidates = (
                await session.exec(
                    select(BlockedInterval)
                    .where(BlockedInterval.staff_id == staff_id)
                    .where(BlockedInterval.start_time == start_time)
                    .where(
                        or_(
                            col(BlockedInterval.date) == day,
                            col(BlockedInterval.is_recurring).is_(True),
                        )
                    )
                )
            ).all()
            if not candidates:
                return False
            one_off = [block for block in candidates if not block.is_recurring]
            await session.delete((one_off or candidates)[0])
            await session.commit()
            return True

    async def find_for_day(self, staff_id: str, day: date) -> List[BlockedInterval]:
        async with self._session() as session:
            rows = await session.exec(
                select(BlockedInterval)
                .where(BlockedInterval.staff_id == staff_id)
                .where(
                    or_(
                        col(BlockedInterval.date) == day,
                        col(BlockedInterval.is_recurring).is_(True),
                    )
                )
                .order_by(col(BlockedInterval.start_time))
            )
            return list(rows.all())


class SqlStaffDirectory(SqlStore):
    async def get(self, staff_id: str) -> Optional[Staff]:
        async with self._session() as session:
            return await session.get(Staff, staff_id)

    async def find_by_alias(self, alias: str) -> Optional[Staff]:
        async with self._session() as session:
            rows = await session.exec(select(Staff).where(Staff.alias == alias.lower()))
            return rows.first()

    async def list_active(self) -> List[Staff]:
        async with self._session() as session:
            rows = await session.exec(
                select(Staff).where(col(Staff.is_active).is_(True)).order_by(col(Staff.name))
            )
            return list(rows.all())

    async def add(self, staff: Staff) -> Staff:
        async with self._session() as session:
            session.add(staff)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise ConflictError(f"Staff alias {staff.alias!r} is already taken") from exc
            return staff

    async def set_pin_hash(self, staff_id: str, pin_hash: str) -> None:
        await self._update(staff_id, pin_hash=pin_hash)

    async def set_active(self, staff_id: str, active: bool) -> None:
        await self._update(staff_id, is_active=active)

    async def _update(self, staff_id: str, **values) -> None:
        async with self._session() as session:
            staff = await session.get(Staff, staff_id)
            if staff is None:
                return
            for key, value in values.items():
                setattr(staff, key, value)
            session.add(staff)
            await session.commit()


class SqlClientDirectory(SqlStore):
    async def record_booking(self, phone: str, name: str, at: datetime) -> Client:
        async with self._session() as session:
            client = await session.get(Client, phone)
            if client is None:
                client = Client(phone=phone, name=Client.display_name(name))
            client.record_booking(name, at)
            session.add(client)
            await session.commit()
            return client

    async def get(self, phone: str) -> Optional[Client]:
        async with self._session() as session:
            return await session.get(Client, phone)


class SqlClientNoteStore(SqlStore):
    async def add(self, note: ClientNote) -> ClientNote:
        async with self._session() as session:
            session.add(note)
            await session.commit()
            return note

    async def list_for_client(self, phone: str, staff_id: str) -> List[ClientNote]:
        async with self._session() as session:
            rows = await session.exec(
                select(ClientNote)
                .where(ClientNote.customer_phone == phone)
                .where(ClientNote.staff_id == staff_id)
                .order_by(col(ClientNote.created_at).desc())
            )
            return list(rows.all())
