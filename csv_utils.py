import csv
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from io import StringIO
from typing import Sequence

from models import Expense
from schemas import CSVRow


CSV_HEADER = ["Date", "Category", "SubCategory", "Description", "Amount"]


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
        r"^sh\s*",
        r"^\.",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def unsanitize_csv_value(value: str) -> str:
    # Exported values may carry the injection guard tab; strip() drops it.
    return value.strip()


def parse_date(value: str):
    value = value.strip()
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        return datetime.strptime(value, "%d.%m.%Y").date()


def parse_amount(value: str) -> int:
    """Parse a signed amount into cents; tolerates currency signs and decimal commas."""
    clean = value.strip().replace("€", "").replace("$", "").replace(" ", "")
    clean = clean.replace(",", ".")
    if clean.count(".") > 1:
        parts = clean.split(".")
        clean = "".join(parts[:-1]) + "." + parts[-1]
    if not clean:
        raise ValueError("Amount is required")
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    return int((amount * 100).quantize(Decimal("1")))


def parse_csv(content: str) -> tuple[list[CSVRow], list[str]]:
    reader = csv.DictReader(StringIO(content))
    rows: list[CSVRow] = []
    errors: list[str] = []
    for idx, raw in enumerate(reader, start=1):
        try:
            date_value = parse_date(raw.get("Date") or "")
            category = unsanitize_csv_value(raw.get("Category") or "")
            if not category:
                raise ValueError("Category is required")
            sub_category = unsanitize_csv_value(raw.get("SubCategory") or "") or None
            description = unsanitize_csv_value(raw.get("Description") or "")
            amount_value = parse_amount(raw.get("Amount") or "")
            rows.append(
                CSVRow(
                    date=date_value,
                    category=category,
                    sub_category=sub_category,
                    description=description,
                    amount_cents=amount_value,
                )
            )
        except Exception as exc:
            errors.append(f"Row {idx}: {exc}")
    return rows, errors


def export_expenses(expenses: Sequence[Expense]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_HEADER)
    for expense in expenses:
        writer.writerow(
            [
                expense.date.isoformat(),
                sanitize_csv_value(expense.category),
                sanitize_csv_value(expense.sub_category or ""),
                sanitize_csv_value(expense.description or ""),
                f"{expense.amount_cents / 100:.2f}",
            ]
        )
    return output.getvalue()
