"""Natural-key upserts that never regress to an older GitHub snapshot.

Every Silver write goes through :func:`upsert_record`: look the row up by its
natural key, insert it when absent, otherwise patch it unless the incoming
ordering timestamp is older than the stored one. Entities without an ordering
timestamp (branches, users, commits, PR files) always take the latest write.
Replaying a webhook, retrying a handler or re-running a bootstrap chunk is
therefore harmless.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import enum
import typing as typ

import msgspec
from sqlalchemy import and_, delete, select
from sqlalchemy.exc import IntegrityError

from hubsync.silver.errors import UpsertError
from hubsync.silver.records import (
    BranchRecord,
    CheckRunRecord,
    CommitRecord,
    IssueRecord,
    PullRequestFileRecord,
    PullRequestRecord,
    UserRecord,
    WorkflowJobRecord,
    WorkflowRunRecord,
)
from hubsync.silver.storage import (
    Branch,
    CheckRun,
    Commit,
    GitHubUser,
    Issue,
    PullRequest,
    PullRequestFile,
    WorkflowJob,
    WorkflowRun,
)

if typ.TYPE_CHECKING:
    import datetime as dt

    from sqlalchemy.ext.asyncio import AsyncSession

    from hubsync.bronze.storage import Base
    from hubsync.silver.records import SilverRecord

type NaturalKey = cabc.Mapping[str, object]


class UpsertOutcome(enum.StrEnum):
    """What :func:`upsert_record` did with a record."""

    INSERTED = "inserted"
    UPDATED = "updated"
    SKIPPED_STALE = "skipped_stale"


@dc.dataclass(frozen=True, slots=True)
class EntitySpec:
    """Natural key and ordering column of one Silver entity."""

    model: type[Base]
    key_fields: tuple[str, ...]
    ordering_field: str | None = None

    def key_of(self, values: cabc.Mapping[str, object]) -> dict[str, object]:
        """Project the natural key out of ``values``."""
        try:
            return {name: values[name] for name in self.key_fields}
        except KeyError as exc:
            raise UpsertError.missing_key(self.model.__name__, str(exc)) from exc


ENTITY_SPECS: dict[type[msgspec.Struct], EntitySpec] = {
    UserRecord: EntitySpec(GitHubUser, ("github_user_id",)),
    BranchRecord: EntitySpec(Branch, ("repository_id", "name")),
    PullRequestRecord: EntitySpec(
        PullRequest, ("repository_id", "number"), "github_updated_at"
    ),
    IssueRecord: EntitySpec(Issue, ("repository_id", "number"), "github_updated_at"),
    CommitRecord: EntitySpec(Commit, ("repository_id", "sha")),
    CheckRunRecord: EntitySpec(
        CheckRun, ("repository_id", "github_check_run_id"), "github_updated_at"
    ),
    WorkflowRunRecord: EntitySpec(
        WorkflowRun, ("repository_id", "github_run_id"), "github_updated_at"
    ),
    WorkflowJobRecord: EntitySpec(
        WorkflowJob, ("repository_id", "github_job_id"), "github_updated_at"
    ),
    PullRequestFileRecord: EntitySpec(
        PullRequestFile, ("repository_id", "pr_number", "head_sha", "filename")
    ),
}


@dc.dataclass(slots=True)
class UpsertCounts:
    """Tally of upsert outcomes for a batch."""

    inserted: int = 0
    updated: int = 0
    skipped_stale: int = 0

    def add(self, outcome: UpsertOutcome) -> None:
        """Count one outcome."""
        match outcome:
            case UpsertOutcome.INSERTED:
                self.inserted += 1
            case UpsertOutcome.UPDATED:
                self.updated += 1
            case UpsertOutcome.SKIPPED_STALE:
                self.skipped_stale += 1

    @property
    def written(self) -> int:
        """Rows inserted or patched."""
        return self.inserted + self.updated

    @property
    def total(self) -> int:
        """Records seen, whether written or skipped."""
        return self.written + self.skipped_stale


def spec_for(record: SilverRecord) -> EntitySpec:
    """Return the entity spec for ``record``'s type."""
    try:
        return ENTITY_SPECS[type(record)]
    except KeyError as exc:
        raise UpsertError.unsupported(type(record).__name__) from exc


def is_stale(incoming: dt.datetime | None, stored: dt.datetime | None) -> bool:
    """Return whether an incoming ordering timestamp loses to the stored one.

    Equal timestamps are not stale so a replay of the same snapshot still
    patches. An incoming value without a timestamp cannot prove it is newer
    than a timestamped row and loses.
    """
    if stored is None:
        return False
    if incoming is None:
        return True
    return incoming < stored


async def find_by_natural_key[ModelT: Base](
    session: AsyncSession, model: type[ModelT], key: NaturalKey
) -> ModelT | None:
    """Return the row of ``model`` matching every column in ``key``."""
    clauses = [getattr(model, name) == value for name, value in key.items()]
    return await session.scalar(select(model).where(and_(*clauses)))


async def range_query[ModelT: Base](  # noqa: PLR0913
    session: AsyncSession,
    model: type[ModelT],
    field: str,
    *,
    lower: object | None = None,
    upper: object | None = None,
    scope: NaturalKey | None = None,
    limit: int | None = None,
) -> cabc.Sequence[ModelT]:
    """Return rows whose ``field`` lies in ``[lower, upper)``, ordered by it."""
    column = getattr(model, field)
    stmt = select(model)
    if scope:
        stmt = stmt.where(
            and_(*(getattr(model, name) == value for name, value in scope.items()))
        )
    if lower is not None:
        stmt = stmt.where(column >= lower)
    if upper is not None:
        stmt = stmt.where(column < upper)
    stmt = stmt.order_by(column)
    if limit is not None:
        stmt = stmt.limit(limit)
    return (await session.scalars(stmt)).all()


def _apply(row: Base, values: cabc.Mapping[str, object]) -> None:
    for name, value in values.items():
        setattr(row, name, value)


def _patch_if_newer(
    spec: EntitySpec, row: Base, values: cabc.Mapping[str, object]
) -> UpsertOutcome:
    if spec.ordering_field is not None and is_stale(
        typ.cast("dt.datetime | None", values.get(spec.ordering_field)),
        getattr(row, spec.ordering_field),
    ):
        return UpsertOutcome.SKIPPED_STALE
    _apply(row, values)
    return UpsertOutcome.UPDATED


async def upsert_values(
    session: AsyncSession, spec: EntitySpec, values: cabc.Mapping[str, object]
) -> UpsertOutcome:
    """Insert or monotonically patch one row described by ``values``.

    A concurrent insert of the same natural key surfaces as an
    ``IntegrityError`` inside the savepoint; the winning row is then reloaded
    and patched under the same ordering rule.
    """
    key = spec.key_of(values)
    existing = await find_by_natural_key(session, spec.model, key)
    if existing is not None:
        return _patch_if_newer(spec, existing, values)

    row = spec.model(**values)
    try:
        async with session.begin_nested():
            session.add(row)
            await session.flush()
    except IntegrityError as exc:
        with session.no_autoflush:
            existing = await find_by_natural_key(session, spec.model, key)
        if existing is None:
            raise UpsertError.concurrent_insert(spec.model.__name__) from exc
        return _patch_if_newer(spec, existing, values)
    return UpsertOutcome.INSERTED


async def upsert_record(session: AsyncSession, record: SilverRecord) -> UpsertOutcome:
    """Upsert a single Silver record."""
    return await upsert_values(session, spec_for(record), msgspec.structs.asdict(record))


async def upsert_records(
    session: AsyncSession, records: cabc.Iterable[SilverRecord]
) -> UpsertCounts:
    """Upsert ``records`` in order and return the outcome tally."""
    counts = UpsertCounts()
    for record in records:
        counts.add(await upsert_record(session, record))
    return counts


async def delete_by_natural_key(
    session: AsyncSession, model: type[Base], key: NaturalKey
) -> int:
    """Delete rows of ``model`` matching ``key`` and return how many went."""
    table = model.__table__
    clauses = [table.c[name] == value for name, value in key.items()]
    result = await session.execute(delete(table).where(and_(*clauses)))
    return result.rowcount or 0


__all__ = [
    "ENTITY_SPECS",
    "EntitySpec",
    "UpsertCounts",
    "UpsertOutcome",
    "delete_by_natural_key",
    "find_by_natural_key",
    "is_stale",
    "range_query",
    "spec_for",
    "upsert_record",
    "upsert_records",
    "upsert_values",
]
