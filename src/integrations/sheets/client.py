"""
Google Sheets Record Store

Persists CRM records in one tab of a spreadsheet whose first row is a
free-form header. Columns are bound to record fields by schema discovery;
unmapped columns are read and written back untouched.

Row indices are 1-based sheet rows (the header is row 1).
"""

import asyncio
import logging
import re
from typing import Dict, List, Optional, Sequence

from src.crm_sync.base import RecordStore
from src.crm_sync.errors import CrmSyncError
from src.crm_sync.models import CRMRecord, HighlightState
from src.crm_sync.presentation import record_sort_key
from src.crm_sync.schema import FieldMap, column_letter
from src.integrations.google.auth import ServiceAccountAuth
from src.integrations.google.errors import translate_google_error

logger = logging.getLogger(__name__)

UPDATED_ROW_PATTERN = re.compile(r"![A-Z]+(\d+)")


class GoogleSheetsStore(RecordStore):
    """
    RecordStore over the Sheets v4 values and batchUpdate APIs.

    Attributes:
        spreadsheet_id: Target spreadsheet
        sheet_name: Tab holding the records
        field_map: Field map discovered from the header row
    """

    def __init__(self, auth: ServiceAccountAuth, spreadsheet_id: str, sheet_name: str = 'CRM'):
        self.auth = auth
        self.spreadsheet_id = spreadsheet_id
        self.sheet_name = sheet_name
        self.field_map: Optional[FieldMap] = None
        self._sheet_id: Optional[int] = None

    @property
    def _sheets(self):
        return self.auth.sheets().spreadsheets()

    def _range(self, a1: str) -> str:
        escaped = self.sheet_name.replace("'", "''")
        return f"'{escaped}'!{a1}"

    async def _execute(self, request, action: str) -> Dict:
        try:
            return await asyncio.to_thread(request.execute)
        except Exception as e:
            raise translate_google_error(e, action) from e

    def _require_field_map(self) -> FieldMap:
        if self.field_map is None:
            raise CrmSyncError("Schema not loaded; call load_schema() first")
        return self.field_map

    @property
    def _last_column(self) -> str:
        return column_letter(max(self._require_field_map().width, 1) - 1)

    async def ensure_sheet(self) -> str:
        """
        Check the target tab exists, falling back to the first tab.

        Returns:
            Name of the tab in use

        Raises:
            CrmSyncError: the spreadsheet has no tabs
        """
        spreadsheet = await self._execute(
            self._sheets.get(spreadsheetId=self.spreadsheet_id),
            "spreadsheets.get"
        )
        tabs = spreadsheet.get('sheets', [])
        for tab in tabs:
            if tab['properties']['title'] == self.sheet_name:
                self._sheet_id = tab['properties']['sheetId']
                return self.sheet_name
        if not tabs:
            raise CrmSyncError("No sheets found in spreadsheet")

        first = tabs[0]['properties']
        logger.warning(f"Tab '{self.sheet_name}' not found, using '{first['title']}'")
        self.sheet_name = first['title']
        self._sheet_id = first['sheetId']
        return self.sheet_name

    async def _get_sheet_id(self) -> int:
        if self._sheet_id is None:
            await self.ensure_sheet()
        return self._sheet_id

    async def read_header(self) -> List[str]:
        response = await self._execute(
            self._sheets.values().get(spreadsheetId=self.spreadsheet_id, range=self._range("1:1")),
            "read header"
        )
        values = response.get('values', [])
        headers = [str(cell) for cell in values[0]] if values else []
        logger.info(f"Found {len(headers)} column(s): {', '.join(headers)}")
        return headers

    async def _read_rows(self, render_option: str = 'FORMATTED_VALUE') -> List[List[str]]:
        """Data rows (header excluded) exactly as the API returns them."""
        response = await self._execute(
            self._sheets.values().get(
                spreadsheetId=self.spreadsheet_id,
                range=self._range(f"A2:{self._last_column}"),
                valueRenderOption=render_option
            ),
            "read records"
        )
        return response.get('values', [])

    async def read_all_records(self) -> List[CRMRecord]:
        field_map = self._require_field_map()
        records = []
        for offset, row in enumerate(await self._read_rows()):
            if not any(str(cell).strip() for cell in row):
                continue
            records.append(field_map.to_record(row, offset + 2))
        return records

    async def append_record(self, fields: Dict[str, str]) -> int:
        field_map = self._require_field_map()
        row = field_map.to_row(fields)
        response = await self._execute(
            self._sheets.values().append(
                spreadsheetId=self.spreadsheet_id,
                range=self._range(f"A:{self._last_column}"),
                valueInputOption='USER_ENTERED',
                insertDataOption='INSERT_ROWS',
                body={'values': [row]}
            ),
            "append record"
        )
        updated_range = response.get('updates', {}).get('updatedRange', '')
        match = UPDATED_ROW_PATTERN.search(updated_range)
        if match:
            return int(match.group(1))
        # Appended rows land after the last data row
        return len(await self._read_rows()) + 1

    async def update_record(self, row_index: int, fields: Dict[str, str]) -> None:
        field_map = self._require_field_map()
        data = []
        for field_name, value in fields.items():
            index = field_map.index(field_name)
            if index is None:
                continue
            data.append({
                'range': self._range(f"{column_letter(index)}{row_index}"),
                'values': [["" if value is None else str(value)]]
            })
        if not data:
            return
        await self._execute(
            self._sheets.values().batchUpdate(
                spreadsheetId=self.spreadsheet_id,
                body={'valueInputOption': 'USER_ENTERED', 'data': data}
            ),
            f"update row {row_index}"
        )
        logger.debug(f"Updated row {row_index}: {', '.join(fields)}")

    async def sort_records(self, spec: Sequence[str]) -> None:
        """
        Sort data rows by the canonical fields in ``spec`` and write them back.

        Keys come from displayed values so dates like "9 Jan 2025" compare
        chronologically. Cells are rewritten from their underlying values so
        formulas survive the move. Blank rows are dropped to the bottom.
        """
        field_map = self._require_field_map()
        if not any(field_map.has(field_name) for field_name in spec):
            logger.info("No sortable columns found, skipping sort")
            return

        displayed = await self._read_rows()
        underlying = await self._read_rows('FORMULA')
        if not displayed:
            return

        entries = []
        for offset, row in enumerate(displayed):
            source = underlying[offset] if offset < len(underlying) else row
            padded = list(source) + [""] * (field_map.width - len(source))
            if not any(str(cell).strip() for cell in row):
                continue
            entries.append((field_map.to_record(row, offset + 2), padded))

        entries.sort(key=lambda entry: record_sort_key(entry[0], spec))
        values = [padded for _, padded in entries]
        values += [[""] * field_map.width for _ in range(len(displayed) - len(values))]

        await self._execute(
            self._sheets.values().update(
                spreadsheetId=self.spreadsheet_id,
                range=self._range(f"A2:{self._last_column}{len(values) + 1}"),
                valueInputOption='USER_ENTERED',
                body={'values': values}
            ),
            "sort records"
        )

    async def recolor_record(self, row_index: int, state: HighlightState) -> None:
        field_map = self._require_field_map()
        sheet_id = await self._get_sheet_id()
        request = {
            'repeatCell': {
                'range': {
                    'sheetId': sheet_id,
                    'startRowIndex': row_index - 1,
                    'endRowIndex': row_index,
                    'startColumnIndex': 0,
                    'endColumnIndex': field_map.width
                },
                'cell': {
                    'userEnteredFormat': {
                        'backgroundColor': state.background
                    }
                },
                'fields': 'userEnteredFormat.backgroundColor'
            }
        }
        await self._execute(
            self._sheets.batchUpdate(spreadsheetId=self.spreadsheet_id, body={'requests': [request]}),
            f"recolor row {row_index}"
        )

    async def clear_all_records(self) -> None:
        """Clear every data row, keeping the header."""
        await self._execute(
            self._sheets.values().clear(
                spreadsheetId=self.spreadsheet_id,
                range=self._range(f"A2:{self._last_column}"),
                body={}
            ),
            "clear records"
        )
        logger.info(f"Cleared all records from '{self.sheet_name}'")
