import re
from decimal import Decimal
from typing import Annotated

from pydantic import PlainSerializer

# Money and percentages travel as Decimal and are rendered as JSON numbers
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]

PHONE_PATTERN = re.compile(r"^\+?[\d\s-]{6,}$")

def validate_phone(value: str, label: str = "phone number") -> str:
    if not PHONE_PATTERN.match(value):
        raise ValueError(f"Invalid {label} format")
    return value
