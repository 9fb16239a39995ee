"""Currency display utilities.

Internal unit: centavo (smallest PHP unit, 100 centavos = ₱1).
Amounts travel through the reconciliation protocol as integer minor units
only; pesos appear in log and display strings.
"""

from __future__ import annotations

from decimal import Decimal

CENTAVOS_PER_PESO: int = 100


def centavos_to_pesos(centavos: int) -> Decimal:
    """Convert centavos to Pesos. 100 centavos = ₱1."""
    return (Decimal(centavos) / CENTAVOS_PER_PESO).quantize(Decimal("0.01"))


def format_centavos(centavos: int) -> str:
    """Render a minor-unit amount for logs, e.g. 150000 -> '₱1,500.00'."""
    return f"₱{centavos_to_pesos(centavos):,.2f}"
