"""
Utilidades de formateo en estilo colombiano.
Punto como separador de miles, coma como separador decimal.
"""
from decimal import Decimal, InvalidOperation
from datetime import date, datetime
from typing import Union


def num_co(value: Union[int, float, Decimal, str, None]) -> str:
    """
    Formatea un número entero con separador de miles.

    Examples:
        num_co(79900) -> "79.900"
        num_co(1438320) -> "1.438.320"
        num_co(None) -> "-"
    """
    if value is None or value == "":
        return "-"

    try:
        num = Decimal(str(value)).quantize(Decimal('1'))
    except (InvalidOperation, ValueError, TypeError):
        return "-"

    sign = "-" if num < 0 else ""
    integer_part = str(abs(num))

    # Revertir, agrupar de 3, revertir de nuevo
    reversed_int = integer_part[::-1]
    groups = [reversed_int[i:i+3] for i in range(0, len(reversed_int), 3)]
    return f"{sign}{'.'.join(groups)[::-1]}"


def money_cop(value: Union[int, float, Decimal, str, None]) -> str:
    """
    Formatea un monto en pesos colombianos (sin decimales).

    Examples:
        money_cop(79900) -> "$79.900"
        money_cop(0) -> "$0"
    """
    formatted = num_co(value)
    if formatted == "-":
        return formatted
    if formatted.startswith("-"):
        return f"-${formatted[1:]}"
    return f"${formatted}"


def date_co(value: Union[date, datetime, None]) -> str:
    """
    Formatea una fecha: DD/MM/YYYY

    Examples:
        date_co(date(2026, 1, 12)) -> "12/01/2026"
    """
    if value is None:
        return "-"

    if isinstance(value, datetime):
        value = value.date()

    if not isinstance(value, date):
        return "-"

    return value.strftime("%d/%m/%Y")
