import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CURRENCY_SYMBOL = "R$"

_ALLOWED = re.compile(r"[^0-9,.\-]")


def format_currency(cents: int, *, include_symbol: bool = True) -> str:
    """Format integer cents the pt-BR way: ``R$ 1.234,56``."""
    sign = "-" if cents < 0 else ""
    units, rest = divmod(abs(cents), 100)
    grouped = f"{units:,}".replace(",", ".")
    number = f"{grouped},{rest:02d}"
    if include_symbol:
        return f"{sign}{CURRENCY_SYMBOL} {number}"
    return f"{sign}{number}"


def parse_currency(value: str) -> int:
    """Parse user input such as ``R$ 1.234,56`` or ``1234.56`` into cents.

    A comma is always the decimal separator. Without a comma, a single dot
    followed by one or two digits is read as decimal; any other dots are
    thousands separators.
    """
    clean = _ALLOWED.sub("", value.strip())
    negative = clean.startswith("-")
    clean = clean.replace("-", "")
    if not any(ch.isdigit() for ch in clean):
        raise ValueError("Invalid amount")

    if "," in clean:
        integer_part, _, fraction = clean.rpartition(",")
        integer_part = integer_part.replace(".", "").replace(",", "")
        clean = f"{integer_part or '0'}.{fraction}"
    elif clean.count(".") == 1 and len(clean.rpartition(".")[2]) in (1, 2):
        pass
    else:
        clean = clean.replace(".", "")

    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return -cents if negative else cents
