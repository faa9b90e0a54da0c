"""xlsx reading and writing for attendance import/export."""
import io
from typing import Iterable, List, Optional, Sequence

from openpyxl import Workbook, load_workbook
from openpyxl.utils import get_column_letter

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class SpreadsheetError(ValueError):
    pass


def read_first_sheet(content: bytes) -> List[list]:
    """Cell values of the first sheet, one list per row."""
    try:
        wb = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except Exception as exc:
        raise SpreadsheetError(f"not a readable xlsx file: {exc}") from exc
    try:
        ws = wb.worksheets[0]
        return [list(row) for row in ws.iter_rows(values_only=True)]
    finally:
        wb.close()


def column_index(header: Sequence, name: str) -> Optional[int]:
    wanted = name.lower()
    for idx, cell in enumerate(header):
        if cell is not None and str(cell).strip().lower() == wanted:
            return idx
    return None


def build_workbook(title: str, rows: Iterable[Sequence], widths: Sequence[int] = ()) -> bytes:
    wb = Workbook()
    ws = wb.active
    # Sheet titles are capped at 31 characters.
    ws.title = title[:31]
    for row in rows:
        ws.append(list(row))
    for idx, width in enumerate(widths, start=1):
        ws.column_dimensions[get_column_letter(idx)].width = width
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()
