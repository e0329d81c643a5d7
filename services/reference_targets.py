"""Reference targets - where reference fields can point to.

Platform-native record types (users, media, ...) are exposed through a
``ReferenceTargetProvider``. ``TableTargetProvider`` covers the common case
of an existing SQL table; template records are served by the resolver itself.
"""

from enum import Enum
from typing import Any, Iterable, Optional, Protocol, runtime_checkable

from sqlalchemy import MetaData, Table, String, cast, func, or_, select
from sqlalchemy.orm import Session

from core.logging_config import get_logger
from schemas.scope import Scope

logger = get_logger(__name__)


class ReferenceCheck(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    BUNDLE_MISMATCH = "bundle_mismatch"


@runtime_checkable
class ReferenceTargetProvider(Protocol):
    """
    A source of reference targets.

    Targets are plain dicts carrying at least ``id``, ``label`` and ``bundle``.
    """
    target_type: str

    def load_many(self, session: Session, scope: Scope, ids: Iterable[Any]) -> dict[Any, dict]:
        ...

    def search(
        self,
        session: Session,
        scope: Scope,
        bundles: list[str],
        query_text: str,
        sort: Optional[dict],
        limit: int,
    ) -> list[dict]:
        ...


class TableTargetProvider:
    """
    Serves references into an existing table, reflected on first use.

    ``bundle_column`` holds the bundle of each row; without it every row has
    the fixed ``bundle`` (the target type by default). When ``tenant_column``
    / ``project_column`` are given, lookups are restricted to the scope.
    """

    def __init__(
        self,
        target_type: str,
        table_name: str,
        id_column: str = "id",
        label_columns: tuple[str, ...] = ("name",),
        bundle_column: Optional[str] = None,
        bundle: Optional[str] = None,
        tenant_column: Optional[str] = None,
        project_column: Optional[str] = None,
        exclude_columns: tuple[str, ...] = ("password", "password_hash", "pass"),
    ):
        self.target_type = target_type
        self.table_name = table_name
        self.id_column = id_column
        self.label_columns = label_columns
        self.bundle_column = bundle_column
        self.bundle = bundle or target_type
        self.tenant_column = tenant_column
        self.project_column = project_column
        self.exclude_columns = exclude_columns
        self._table: Optional[Table] = None

    def table(self, session: Session) -> Table:
        if self._table is None:
            self._table = Table(self.table_name, MetaData(), autoload_with=session.connection())
            logger.debug(f"Reflected reference target table '{self.table_name}' for '{self.target_type}'")
        return self._table

    def _scoped(self, stmt, table: Table, scope: Scope):
        if self.tenant_column:
            stmt = stmt.where(table.c[self.tenant_column] == scope.tenant_id)
        if self.project_column:
            stmt = stmt.where(table.c[self.project_column] == scope.project_id)
        return stmt

    def _to_target(self, row: dict) -> dict:
        target = {key: value for key, value in row.items() if key not in self.exclude_columns}
        labels = [str(row[column]) for column in self.label_columns if row.get(column) not in (None, "")]
        target["id"] = row[self.id_column]
        target["label"] = " ".join(labels) if labels else f"{self.target_type} {row[self.id_column]}"
        target["bundle"] = row.get(self.bundle_column) if self.bundle_column else self.bundle
        return target

    def load_many(self, session: Session, scope: Scope, ids: Iterable[Any]) -> dict[Any, dict]:
        ids = list(ids)
        if not ids:
            return {}
        table = self.table(session)
        stmt = self._scoped(select(table).where(table.c[self.id_column].in_(ids)), table, scope)
        targets = [self._to_target(dict(row._mapping)) for row in session.execute(stmt)]
        return {target["id"]: target for target in targets}

    def search(
        self,
        session: Session,
        scope: Scope,
        bundles: list[str],
        query_text: str,
        sort: Optional[dict],
        limit: int,
    ) -> list[dict]:
        table = self.table(session)
        stmt = self._scoped(select(table), table, scope)

        if query_text:
            needle = query_text.lower()
            matches = [
                func.lower(cast(table.c[column], String)).contains(needle, autoescape=True)
                for column in self.label_columns
                if column in table.c
            ]
            if matches:
                stmt = stmt.where(or_(*matches))

        if bundles:
            if self.bundle_column:
                stmt = stmt.where(table.c[self.bundle_column].in_(bundles))
            elif self.bundle not in bundles:
                return []

        sort_field = (sort or {}).get("field")
        if sort_field and sort_field in table.c:
            column = table.c[sort_field]
            stmt = stmt.order_by(column.desc() if str(sort.get("direction", "ASC")).upper() == "DESC" else column.asc())

        stmt = stmt.limit(limit)
        return [self._to_target(dict(row._mapping)) for row in session.execute(stmt)]
