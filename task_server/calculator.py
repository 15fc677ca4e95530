"""
Parse a comma-separated list of integers and multiply them.
"""

from typing import Final, List
import logging
import re
import sys

LOGGER = logging.getLogger(__name__)

SEPARATOR: Final[str] = ","
RESULT_TEMPLATE: Final[str] = "Result of the multiplication is {}\n"

INTEGER_PATTERN: re.Pattern = re.compile(r"^[+-]?[0-9]+$")


class EmptyNumericValueError(ValueError):
    pass


class InvalidNumberError(ValueError):
    pass


def lift_int_digit_limit() -> None:
    """Allow operands and products of any length (Python 3.11+ caps int <-> str at 4300 digits)."""
    if hasattr(sys, "set_int_max_str_digits"):
        sys.set_int_max_str_digits(0)


def parse_numbers(text: str) -> List[int]:
    """
    Split on commas and parse every trimmed segment as a signed base-10 integer.

    An empty segment anywhere (including an empty body) is rejected, never skipped.
    """
    numbers = []
    for segment in text.split(SEPARATOR):
        trimmed = segment.strip()
        LOGGER.debug("Parsing number: [%s]", trimmed)
        if trimmed == "":
            raise EmptyNumericValueError("Input contains an empty numeric value")
        if INTEGER_PATTERN.match(trimmed) is None:
            raise InvalidNumberError(f"Not an integer: {trimmed!r}")
        numbers.append(int(trimmed))
    return numbers


def multiply(numbers: List[int]) -> int:
    result = 1
    for number in numbers:
        result *= number
    return result


def format_result(product: int) -> str:
    return RESULT_TEMPLATE.format(product)


def calculate_response(body: bytes) -> bytes:
    text = body.decode("utf-8")
    LOGGER.debug("Received body: [%s]", text)

    response = format_result(multiply(parse_numbers(text)))
    LOGGER.debug("Calculation result: %s", response.rstrip("\n"))
    return response.encode("utf-8")
