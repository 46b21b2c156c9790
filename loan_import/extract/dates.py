"""Workbook date-cell decoding."""

from datetime import date, datetime

from openpyxl.utils.datetime import from_excel

# 9999-12-31 in the 1900 date system
MAX_SERIAL = 2958465

# Day-first text dates as typed in the route workbooks
DAY_FIRST_FORMATS = ("%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y", "%d/%m/%y")


def to_date(value: object) -> date | None:
    """Convert a workbook cell value to a calendar date.

    Native date cells pass through, numeric serials are decoded with the
    1900 date system, and ISO or day-first (``31/01/2024``) strings are
    parsed. Anything that does not decode to a valid date yields ``None``.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        if value < 1 or value > MAX_SERIAL:
            return None
        try:
            decoded = from_excel(value)
        except (OverflowError, ValueError, TypeError):
            return None
        return decoded.date() if isinstance(decoded, datetime) else decoded
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return datetime.fromisoformat(text).date()
        except ValueError:
            pass
        for fmt in DAY_FIRST_FORMATS:
            try:
                return datetime.strptime(text, fmt).date()
            except ValueError:
                continue
        try:
            return to_date(float(text))
        except ValueError:
            return None
    return None
