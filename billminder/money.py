from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

RUPEE = "₹"

MAX_BILL_AMOUNT = Decimal("10000000")


def to_decimal(value) -> Decimal:
    """Parse user or storage input into a two-place Decimal; raises ValueError on junk."""
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).replace(",", "").strip())
        except InvalidOperation:
            raise ValueError(f"Invalid amount: {value!r}") from None
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def group_indian(value: Decimal) -> str:
    """Whole-rupee string with Indian digit grouping: 1234567 -> 12,34,567."""
    whole = int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    sign = "-" if whole < 0 else ""
    digits = str(abs(whole))
    if len(digits) <= 3:
        return sign + digits
    head, tail = digits[:-3], digits[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return sign + ",".join(groups) + "," + tail


def format_amount(amount: Decimal) -> str:
    return f"{RUPEE}{group_indian(amount)}"
