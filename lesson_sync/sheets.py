from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from .errors import ConfigurationError
from .headers import normalize_header


def column_letter(col: int) -> str:
    """0-based column index to A1 letters (0 -> A, 26 -> AA)."""
    letters = ""
    col += 1
    while col:
        col, rem = divmod(col - 1, 26)
        letters = chr(65 + rem) + letters
    return letters


def _quote(name: str) -> str:
    return "'" + name.replace("'", "''") + "'"


class GoogleSheetsStore:
    """Tabular store backed by one spreadsheet through the Sheets v4 API."""

    def __init__(self, service, spreadsheet_id: str) -> None:
        self.service = service
        self.spreadsheet_id = spreadsheet_id
        self._properties: Optional[Dict[str, dict]] = None

    def _sheets(self) -> Dict[str, dict]:
        if self._properties is None:
            result = (
                self.service.spreadsheets()
                .get(spreadsheetId=self.spreadsheet_id, fields="sheets.properties")
                .execute()
            )
            self._properties = {
                sheet["properties"]["title"]: sheet["properties"] for sheet in result.get("sheets", [])
            }
        return self._properties

    def _sheet_id(self, name: str) -> int:
        props = self._sheets().get(name)
        if props is None:
            raise ConfigurationError(f"Sheet {name} does not exist")
        return props["sheetId"]

    def _batch_update(self, requests: List[dict]) -> dict:
        return (
            self.service.spreadsheets()
            .batchUpdate(spreadsheetId=self.spreadsheet_id, body={"requests": requests})
            .execute()
        )

    def has_table(self, name: str) -> bool:
        return name in self._sheets()

    def create_table(self, name: str, header: Sequence[str], hidden: bool = False) -> None:
        reply = self._batch_update(
            [
                {
                    "addSheet": {
                        "properties": {
                            "title": name,
                            "hidden": hidden,
                            "gridProperties": {"frozenRowCount": 1},
                        }
                    }
                }
            ]
        )
        props = reply["replies"][0]["addSheet"]["properties"]
        self._sheets()[name] = props
        self.write_row(name, 0, header)
        self._batch_update(
            [
                {
                    "repeatCell": {
                        "range": {"sheetId": props["sheetId"], "startRowIndex": 0, "endRowIndex": 1},
                        "cell": {
                            "userEnteredFormat": {
                                "textFormat": {"bold": True, "foregroundColor": {"red": 1, "green": 1, "blue": 1}},
                                "backgroundColor": {"red": 0.26, "green": 0.52, "blue": 0.96},
                            }
                        },
                        "fields": "userEnteredFormat(textFormat,backgroundColor)",
                    }
                }
            ]
        )
        logging.info("Created sheet %s%s", name, " (hidden)" if hidden else "")

    def read_table(self, name: str) -> List[List[str]]:
        self._sheet_id(name)
        result = (
            self.service.spreadsheets()
            .values()
            .get(spreadsheetId=self.spreadsheet_id, range=_quote(name), valueRenderOption="FORMATTED_VALUE")
            .execute()
        )
        return [[str(cell) for cell in row] for row in result.get("values", [])]

    def _ensure_grid(self, name: str, rows: int, cols: int) -> None:
        """Grow the sheet grid; value updates outside it are rejected."""
        props = self._sheets()[name]
        grid = props.setdefault("gridProperties", {})
        requests = []
        for dimension, key, wanted in (("ROWS", "rowCount", rows), ("COLUMNS", "columnCount", cols)):
            current = grid.get(key, 1000 if dimension == "ROWS" else 26)
            if wanted > current:
                requests.append(
                    {
                        "appendDimension": {
                            "sheetId": props["sheetId"],
                            "dimension": dimension,
                            "length": wanted - current,
                        }
                    }
                )
                grid[key] = wanted
        if requests:
            self._batch_update(requests)

    def write_row(self, name: str, row: int, values: Sequence[str]) -> None:
        self._sheet_id(name)
        self._ensure_grid(name, row + 1, len(values))
        (
            self.service.spreadsheets()
            .values()
            .update(
                spreadsheetId=self.spreadsheet_id,
                range=f"{_quote(name)}!A{row + 1}",
                valueInputOption="RAW",
                body={"values": [[str(v) for v in values]]},
            )
            .execute()
        )

    def write_cell(self, name: str, row: int, col: int, value: str) -> None:
        self._sheet_id(name)
        self._ensure_grid(name, row + 1, col + 1)
        (
            self.service.spreadsheets()
            .values()
            .update(
                spreadsheetId=self.spreadsheet_id,
                range=f"{_quote(name)}!{column_letter(col)}{row + 1}",
                valueInputOption="RAW",
                body={"values": [[str(value)]]},
            )
            .execute()
        )

    def ensure_column(self, name: str, header: str) -> int:
        rows = self.read_table(name)
        header_row = rows[0] if rows else []
        wanted = normalize_header(header)
        for index, existing in enumerate(header_row):
            if normalize_header(existing) == wanted:
                return index
        col = len(header_row)
        self.write_cell(name, 0, col, header)
        logging.info("Added column %r to %s at %s", header, name, column_letter(col))
        return col

    def append_rows(self, name: str, rows: Sequence[Sequence[str]]) -> None:
        self._sheet_id(name)
        # Trailing blank rows are implicit in a sheet (reads trim them and
        # write_row grows the grid), so appending them would only pad the grid.
        if not any(str(v).strip() for row in rows for v in row):
            return
        (
            self.service.spreadsheets()
            .values()
            .append(
                spreadsheetId=self.spreadsheet_id,
                range=_quote(name),
                valueInputOption="RAW",
                insertDataOption="INSERT_ROWS",
                body={"values": [[str(v) for v in row] for row in rows]},
            )
            .execute()
        )
        self._properties = None

    def delete_rows(self, name: str, start: int, count: int) -> None:
        if start < 1:
            raise ValueError("The header row cannot be deleted")
        if count <= 0:
            return
        self._batch_update(
            [
                {
                    "deleteDimension": {
                        "range": {
                            "sheetId": self._sheet_id(name),
                            "dimension": "ROWS",
                            "startIndex": start,
                            "endIndex": start + count,
                        }
                    }
                }
            ]
        )
        self._properties = None
