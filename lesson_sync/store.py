"""Tabular store interface and an in-memory implementation.

Rows are addressed 0-based with the header at row 0, so data row ``i``
of a table lives at store row ``i + 1``.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Protocol, Sequence

from .errors import ConfigurationError
from .headers import normalize_header


class TabularStore(Protocol):
    def has_table(self, name: str) -> bool: ...

    def create_table(self, name: str, header: Sequence[str], hidden: bool = False) -> None: ...

    def read_table(self, name: str) -> List[List[str]]: ...

    def write_row(self, name: str, row: int, values: Sequence[str]) -> None: ...

    def write_cell(self, name: str, row: int, col: int, value: str) -> None: ...

    def ensure_column(self, name: str, header: str) -> int: ...

    def append_rows(self, name: str, rows: Sequence[Sequence[str]]) -> None: ...

    def delete_rows(self, name: str, start: int, count: int) -> None: ...


class InMemoryStore:
    """Dict-of-tables store used for dry runs and tests."""

    def __init__(self, tables: Dict[str, List[List[str]]] | None = None) -> None:
        self.tables: Dict[str, List[List[str]]] = {}
        self.hidden: set[str] = set()
        self.writes = 0
        for name, rows in (tables or {}).items():
            self.tables[name] = [[str(cell) for cell in row] for row in rows]

    def _table(self, name: str) -> List[List[str]]:
        try:
            return self.tables[name]
        except KeyError:
            raise ConfigurationError(f"Table {name} does not exist") from None

    def has_table(self, name: str) -> bool:
        return name in self.tables

    def create_table(self, name: str, header: Sequence[str], hidden: bool = False) -> None:
        if name in self.tables:
            raise ValueError(f"Table {name} already exists")
        self.tables[name] = [list(header)]
        if hidden:
            self.hidden.add(name)
        logging.debug("Created table %s", name)

    def read_table(self, name: str) -> List[List[str]]:
        return [list(row) for row in self._table(name)]

    def write_row(self, name: str, row: int, values: Sequence[str]) -> None:
        if row < 1:
            raise ValueError("The header row cannot be overwritten with write_row")
        table = self._table(name)
        while len(table) <= row:
            table.append([])
        current = table[row]
        width = max(len(current), len(values))
        table[row] = [str(values[i]) if i < len(values) else "" for i in range(width)]
        self.writes += 1

    def write_cell(self, name: str, row: int, col: int, value: str) -> None:
        table = self._table(name)
        while len(table) <= row:
            table.append([])
        current = table[row]
        while len(current) <= col:
            current.append("")
        current[col] = str(value)
        self.writes += 1

    def ensure_column(self, name: str, header: str) -> int:
        table = self._table(name)
        wanted = normalize_header(header)
        for index, existing in enumerate(table[0]):
            if normalize_header(existing) == wanted:
                return index
        table[0].append(header)
        logging.info("Added column %r to %s", header, name)
        return len(table[0]) - 1

    def append_rows(self, name: str, rows: Sequence[Sequence[str]]) -> None:
        table = self._table(name)
        table.extend([str(cell) for cell in row] for row in rows)
        self.writes += 1

    def delete_rows(self, name: str, start: int, count: int) -> None:
        if start < 1:
            raise ValueError("The header row cannot be deleted")
        table = self._table(name)
        del table[start:start + count]
        self.writes += 1
