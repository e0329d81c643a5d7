"""Record Repository - Dynamic CRUD operations for template tables"""

from collections import defaultdict
from typing import Any, Iterable, Optional

from sqlalchemy import String, Table, and_, cast, delete, func, insert, select, update
from sqlalchemy.orm import Session

from services.table_builder import TableBuilder
from services.template_descriptor import TemplateDescriptor


class RecordRepository:
    """
    Repository for dynamic CRUD operations on template tables.

    Each template has its own primary table plus one child table per
    multi-valued field. Rows come back as plain dicts; multi-valued fields
    are attached as lists ordered by delta. Every statement is restricted to
    the template's tenant/project.

    Values are passed through as-is: conversion to and from the column
    representation belongs to the field types.
    """

    def __init__(self, session: Session, descriptor: TemplateDescriptor, tables: TableBuilder):
        self.session = session
        self.descriptor = descriptor
        self.primary, self.children = tables.build_tables(descriptor)

    def _scope_clause(self):
        scope = self.descriptor.scope
        return and_(
            self.primary.c.tenant_id == scope.tenant_id,
            self.primary.c.project_id == scope.project_id,
        )

    def _child(self, field_name: str) -> Table:
        return self.children[field_name]

    # Writes

    def insert(self, row: dict, multi_values: dict[str, list]) -> int:
        """
        Insert a record row and its child rows.

        Returns:
            The generated record id
        """
        result = self.session.execute(insert(self.primary).values(**row))
        record_id = result.inserted_primary_key[0]
        self._write_children(record_id, multi_values)
        return record_id

    def update(self, record_id: int, row: dict, multi_values: dict[str, list]) -> bool:
        """Update a record row; child rows of the given fields are replaced"""
        stmt = (
            update(self.primary)
            .where(self.primary.c.id == record_id)
            .where(self._scope_clause())
            .values(**row)
        )
        result = self.session.execute(stmt)
        if result.rowcount == 0:
            return False

        for field_name in multi_values:
            child = self._child(field_name)
            self.session.execute(delete(child).where(child.c.record_id == record_id))
        self._write_children(record_id, multi_values)
        return True

    def _write_children(self, record_id: int, multi_values: dict[str, list]) -> None:
        for field_name, values in multi_values.items():
            if not values:
                continue
            child = self._child(field_name)
            self.session.execute(
                insert(child),
                [{"record_id": record_id, "delta": delta, "value": value} for delta, value in enumerate(values)],
            )

    def delete(self, record_id: int) -> bool:
        """
        Delete a record and its child rows.

        Returns:
            True if deleted, False if not found
        """
        if not self.exists(record_id):
            return False

        for child in self.children.values():
            self.session.execute(delete(child).where(child.c.record_id == record_id))
        result = self.session.execute(
            delete(self.primary).where(self.primary.c.id == record_id).where(self._scope_clause())
        )
        return result.rowcount > 0

    # Reads

    def exists(self, record_id: int) -> bool:
        stmt = select(self.primary.c.id).where(self.primary.c.id == record_id).where(self._scope_clause())
        return self.session.execute(stmt).first() is not None

    def get_by_id(self, record_id: int) -> Optional[dict]:
        """Get a single record by id"""
        rows = self._fetch(self.primary.c.id == record_id)
        return rows[0] if rows else None

    def get_by_uuid(self, record_uuid: str) -> Optional[dict]:
        rows = self._fetch(self.primary.c.uuid == str(record_uuid))
        return rows[0] if rows else None

    def get_many(self, record_ids: Iterable[Any]) -> dict[Any, dict]:
        """Records by id, one query for the batch (plus one per child table)"""
        record_ids = list(record_ids)
        if not record_ids:
            return {}
        return {row["id"]: row for row in self._fetch(self.primary.c.id.in_(record_ids))}

    def query(
        self,
        filters: Optional[dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> tuple[list[dict], int]:
        """
        Filtered, sorted page of records.

        Args:
            filters: column or multi-valued field name -> value (list means IN)
            order_by: column to order by (defaults to id)
            descending: sort direction
            limit: max number of records to return
            offset: number of records to skip

        Returns:
            (records, total number of matching records)
        """
        conditions = [self._filter_clause(name, value) for name, value in (filters or {}).items()]

        count_stmt = select(func.count()).select_from(self.primary).where(self._scope_clause(), *conditions)
        total = self.session.execute(count_stmt).scalar_one()

        column = self.primary.c[order_by or "id"]
        ordering = [column.desc() if descending else column.asc()]
        if column.name != "id":
            ordering.append(self.primary.c.id.asc())

        rows = self._fetch(*conditions, order_by=ordering, limit=limit, offset=offset)
        return rows, total

    def search(
        self,
        label_column: Optional[str],
        query_text: str,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: int = 10,
    ) -> list[dict]:
        """Case-insensitive substring match on one column"""
        conditions = []
        if query_text and label_column:
            conditions.append(func.lower(self.primary.c[label_column]).contains(query_text.lower(), autoescape=True))
        elif query_text:
            # No label column: match on the record id only
            conditions.append(cast(self.primary.c.id, String).contains(query_text, autoescape=True))

        ordering = None
        if order_by and order_by in self.primary.c:
            column = self.primary.c[order_by]
            ordering = [column.desc() if descending else column.asc()]

        return self._fetch(*conditions, order_by=ordering, limit=limit)

    def _filter_clause(self, name: str, value: Any):
        if name in self.children:
            child = self._child(name)
            values = value if isinstance(value, (list, tuple, set)) else [value]
            return self.primary.c.id.in_(select(child.c.record_id).where(child.c.value.in_(list(values))))

        column = self.primary.c[name]
        if isinstance(value, (list, tuple, set)):
            return column.in_(list(value))
        if value is None:
            return column.is_(None)
        return column == value

    def _fetch(self, *conditions, order_by=None, limit: Optional[int] = None, offset: int = 0) -> list[dict]:
        stmt = select(self.primary).where(self._scope_clause(), *conditions)
        if order_by is not None:
            stmt = stmt.order_by(*order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)

        rows = [dict(row._mapping) for row in self.session.execute(stmt)]
        self._attach_children(rows)
        return rows

    def _attach_children(self, rows: list[dict]) -> None:
        if not rows or not self.children:
            return

        record_ids = [row["id"] for row in rows]
        for field_name, child in self.children.items():
            values = defaultdict(list)
            stmt = (
                select(child.c.record_id, child.c.value)
                .where(child.c.record_id.in_(record_ids))
                .order_by(child.c.record_id, child.c.delta)
            )
            for record_id, value in self.session.execute(stmt):
                values[record_id].append(value)
            for row in rows:
                row[field_name] = values.get(row["id"], [])
