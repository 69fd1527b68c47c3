"""
Versioned Entity Store

Generic SCD Type 2 store. A business entity is a sequence of versions, each
valid over the half-open interval [effective_start_key, effective_end_key)
in date-registry keys; an open version has no end key.

Invariants held after every write, per business id:
- at most one open version
- no two intervals overlap

Writes run in a single transaction and either fully apply or leave the
store untouched. Same-entity writes are serialized by an in-process lock
plus a row lock (SELECT ... FOR UPDATE) on the open version; the partial
unique index on open versions backs this across processes.
"""

import asyncio
import weakref
from typing import Any, Dict, Generic, Hashable, List, Mapping, Optional, Type, TypeVar, Union

import structlog
from pydantic import BaseModel
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from territory_revenue.clock import Clock, system_clock
from territory_revenue.database.models import Base, EntityType
from territory_revenue.dimensions.calendar import require_date_key
from territory_revenue.exceptions import ConflictError, InvalidRangeError, NotFoundError

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=Base)
AttrsT = TypeVar("AttrsT", bound=BaseModel)


class KeyedLocks:
    """
    One asyncio.Lock per key, created on demand.

    Locks are held weakly so entities nobody is writing to cost nothing.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[Hashable, asyncio.Lock]" = weakref.WeakValueDictionary()

    def get(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock


class VersionedEntityStore(Generic[ModelT, AttrsT]):
    """
    SCD Type 2 store over one dimension table.

    Subclasses bind the table and the attribute payload:

        entity_type     EntityType of the dimension
        model           mapped class
        attributes      pydantic model of the versioned payload
        business_id_attr / surrogate_key_attr   column attribute names

    and implement _build_version() to turn a payload into a row.
    """

    entity_type: EntityType
    model: Type[ModelT]
    attributes: Type[AttrsT]
    business_id_attr: str
    surrogate_key_attr: str

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Optional[Clock] = None,
        locks: Optional[KeyedLocks] = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or system_clock
        self._locks = locks or KeyedLocks()

    # ------------------------------------------------------------------
    # Column helpers
    # ------------------------------------------------------------------

    @property
    def _business_id(self):
        return getattr(self.model, self.business_id_attr)

    @property
    def _surrogate_key(self):
        return getattr(self.model, self.surrogate_key_attr)

    def business_id_of(self, version: ModelT) -> int:
        return getattr(version, self.business_id_attr)

    def surrogate_key_of(self, version: ModelT) -> int:
        return getattr(version, self.surrogate_key_attr)

    def _coerce(self, attrs: Union[AttrsT, Mapping[str, Any]]) -> AttrsT:
        if isinstance(attrs, self.attributes):
            return attrs
        return self.attributes.model_validate(attrs)

    def _lock(self, business_id: int) -> asyncio.Lock:
        return self._locks.get((self.entity_type, business_id))

    async def _build_version(
        self,
        session: AsyncSession,
        business_id: int,
        attrs: AttrsT,
        start_key: int,
        predecessor: Optional[ModelT],
    ) -> ModelT:
        """Validate references and build an open version row"""
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Queries inside an open session
    # ------------------------------------------------------------------

    async def _open_version(self, session: AsyncSession, business_id: int, for_update: bool = False) -> Optional[ModelT]:
        stmt = select(self.model).where(
            self._business_id == business_id,
            self.model.effective_end_key.is_(None),
        )
        if for_update:
            stmt = stmt.with_for_update()
        return await session.scalar(stmt)

    async def _latest_end_key(self, session: AsyncSession, business_id: int) -> Optional[int]:
        return await session.scalar(
            select(func.max(self.model.effective_end_key)).where(self._business_id == business_id)
        )

    async def covering_version(self, session: AsyncSession, business_id: int, date_key: int) -> Optional[ModelT]:
        """Version containing date_key: start <= key and (end is open or key < end)"""
        return await session.scalar(
            select(self.model).where(
                self._business_id == business_id,
                self.model.effective_start_key <= date_key,
                or_(
                    self.model.effective_end_key.is_(None),
                    self.model.effective_end_key > date_key,
                ),
            )
        )

    async def _flush(self, session: AsyncSession, business_id: int, start_key: int) -> None:
        """Flush pending rows, mapping constraint violations to ConflictError"""
        try:
            await session.flush()
        except IntegrityError as e:
            logger.warning(
                "Version write hit a uniqueness constraint",
                entity_type=self.entity_type.value,
                business_id=business_id,
                start_key=start_key,
            )
            raise ConflictError(
                f"{self.entity_type.value} {business_id} already has a version starting {start_key} "
                f"or an open version",
                entity_type=self.entity_type.value,
                business_id=business_id,
                start_key=start_key,
            ) from e

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_initial(
        self,
        business_id: int,
        attrs: Union[AttrsT, Mapping[str, Any]],
        start_key: int,
    ) -> ModelT:
        """
        Insert the first open version of an entity.

        A retired entity may be re-opened as long as the new interval starts
        on or after the end of its last version.

        Raises:
            ConflictError: An open version exists, (business_id, start_key)
                exists, or start_key falls inside an earlier version
            ForeignKeyError: start_key or a referenced row does not exist
        """
        payload = self._coerce(attrs)
        log = logger.bind(entity_type=self.entity_type.value, business_id=business_id, start_key=start_key)

        async with self._lock(business_id):
            async with self._session_factory() as session:
                async with session.begin():
                    await require_date_key(session, start_key, "effective_start_key")

                    if await self._open_version(session, business_id) is not None:
                        log.warning("Rejected second open version")
                        raise ConflictError(
                            f"{self.entity_type.value} {business_id} already has an open version",
                            entity_type=self.entity_type.value,
                            business_id=business_id,
                        )

                    latest_end = await self._latest_end_key(session, business_id)
                    if latest_end is not None and start_key < latest_end:
                        log.warning("Rejected version overlapping history", latest_end_key=latest_end)
                        raise ConflictError(
                            f"{self.entity_type.value} {business_id} is covered until {latest_end}; "
                            f"cannot start a version on {start_key}",
                            entity_type=self.entity_type.value,
                            business_id=business_id,
                            start_key=start_key,
                        )

                    version = await self._build_version(session, business_id, payload, start_key, None)
                    session.add(version)
                    await self._flush(session, business_id, start_key)

        log.info("Version created", surrogate_key=self.surrogate_key_of(version))
        return version

    async def revise(
        self,
        business_id: int,
        new_attrs: Union[AttrsT, Mapping[str, Any]],
        change_key: int,
    ) -> ModelT:
        """
        Close the open version at change_key and open its successor there.

        Both writes commit together or not at all.

        Raises:
            NotFoundError: No open version exists
            InvalidRangeError: change_key <= effective_start_key of the open version
            ForeignKeyError: change_key or a referenced row does not exist
        """
        payload = self._coerce(new_attrs)
        log = logger.bind(entity_type=self.entity_type.value, business_id=business_id, change_key=change_key)

        async with self._lock(business_id):
            async with self._session_factory() as session:
                async with session.begin():
                    current = await self._open_version(session, business_id, for_update=True)
                    if current is None:
                        log.warning("Revision without open version")
                        raise NotFoundError(
                            f"{self.entity_type.value} {business_id} has no open version to revise",
                            entity_type=self.entity_type.value,
                            business_id=business_id,
                        )

                    if change_key <= current.effective_start_key:
                        log.warning("Revision would close version before it opened",
                                    effective_start_key=current.effective_start_key)
                        raise InvalidRangeError(
                            f"change key {change_key} must be after effective start "
                            f"{current.effective_start_key}",
                            entity_type=self.entity_type.value,
                            business_id=business_id,
                            change_key=change_key,
                        )

                    await require_date_key(session, change_key, "change_key")

                    # The close must reach the database before the successor
                    # is inserted, or the open-version index trips.
                    current.effective_end_key = change_key
                    await self._flush(session, business_id, change_key)

                    successor = await self._build_version(session, business_id, payload, change_key, current)
                    session.add(successor)
                    await self._flush(session, business_id, change_key)

        log.info(
            "Version revised",
            closed_key=self.surrogate_key_of(current),
            opened_key=self.surrogate_key_of(successor),
        )
        return successor

    async def retire(self, business_id: int, end_key: int) -> ModelT:
        """
        Close the open version at end_key without a successor.

        Raises:
            NotFoundError: No open version exists
            InvalidRangeError: end_key <= effective_start_key of the open version
            ForeignKeyError: end_key is not in the date registry
        """
        log = logger.bind(entity_type=self.entity_type.value, business_id=business_id, end_key=end_key)
        async with self._lock(business_id):
            async with self._session_factory() as session:
                async with session.begin():
                    current = await self._open_version(session, business_id, for_update=True)
                    if current is None:
                        log.warning("Retirement without open version")
                        raise NotFoundError(
                            f"{self.entity_type.value} {business_id} has no open version to retire",
                            entity_type=self.entity_type.value,
                            business_id=business_id,
                        )
                    if end_key <= current.effective_start_key:
                        log.warning("Retirement would close version before it opened",
                                    effective_start_key=current.effective_start_key)
                        raise InvalidRangeError(
                            f"end key {end_key} must be after effective start {current.effective_start_key}",
                            entity_type=self.entity_type.value,
                            business_id=business_id,
                            end_key=end_key,
                        )
                    await require_date_key(session, end_key, "effective_end_key")
                    current.effective_end_key = end_key

        log.info("Version retired")
        return current

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def as_of(self, business_id: int, date_key: int) -> ModelT:
        """
        Version whose interval contains date_key.

        Raises:
            NotFoundError: No version covers date_key
        """
        async with self._session_factory() as session:
            version = await self.covering_version(session, business_id, date_key)
        if version is None:
            raise NotFoundError(
                f"No {self.entity_type.value} {business_id} version covers {date_key}",
                entity_type=self.entity_type.value,
                business_id=business_id,
                date_key=date_key,
            )
        return version

    async def current(self, business_id: int) -> ModelT:
        """
        The open version.

        Raises:
            NotFoundError: The entity has no open version
        """
        async with self._session_factory() as session:
            version = await self._open_version(session, business_id)
        if version is None:
            raise NotFoundError(
                f"{self.entity_type.value} {business_id} has no open version",
                entity_type=self.entity_type.value,
                business_id=business_id,
            )
        return version

    async def get(self, surrogate_key: int) -> ModelT:
        async with self._session_factory() as session:
            version = await session.get(self.model, surrogate_key)
        if version is None:
            raise NotFoundError(
                f"Unknown {self.entity_type.value} version {surrogate_key}",
                entity_type=self.entity_type.value,
                surrogate_key=surrogate_key,
            )
        return version

    async def history(self, business_id: int) -> List[ModelT]:
        """All versions of an entity ordered by effective start"""
        async with self._session_factory() as session:
            result = await session.scalars(
                select(self.model)
                .where(self._business_id == business_id)
                .order_by(self.model.effective_start_key)
            )
            return list(result)

    async def interval_rows(self) -> List[Dict[str, Any]]:
        """Every version's business id, surrogate key and interval, for integrity checks"""
        async with self._session_factory() as session:
            result = await session.execute(
                select(
                    self._business_id.label("business_id"),
                    self._surrogate_key.label("surrogate_key"),
                    self.model.effective_start_key,
                    self.model.effective_end_key,
                ).order_by(self._business_id, self.model.effective_start_key)
            )
            return [dict(row) for row in result.mappings()]
