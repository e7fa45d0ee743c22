"""Amounts are stored as integer paise (₹1 = 100 paise)."""


def format_rupees(paise: int) -> str:
    """150000 -> "₹1500", 150050 -> "₹1500.50"."""
    if paise % 100 == 0:
        return f"₹{paise // 100}"
    return f"₹{paise / 100:.2f}"
