import csv
import re
from io import StringIO
from typing import Iterable, Mapping

EXPORT_HEADER = ["Date", "Type", "Description", "Category", "Amount"]


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^\.",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def export_rows(rows: Iterable[Mapping[str, object]]) -> str:
    """Render flattened report rows (see ``ReportService.export_rows``) as CSV."""
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(EXPORT_HEADER)
    for row in rows:
        writer.writerow(
            [
                str(row["date"]),
                str(row["type"]).capitalize(),
                sanitize_csv_value(str(row["description"] or "")),
                sanitize_csv_value(str(row["category"] or "")),
                f"{int(row['amount_cents']) / 100:.2f}",
            ]
        )
    return output.getvalue()
