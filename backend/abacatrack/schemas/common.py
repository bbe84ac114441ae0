"""Common schemas used across the application."""

from decimal import Decimal
from typing import Annotated, Generic, TypeVar

from pydantic import BaseModel, BeforeValidator, Field

from abacatrack.quantity import SCALE, Quantity

T = TypeVar("T")


def _quantity_to_decimal(value):
    if isinstance(value, Quantity):
        return value.to_decimal()
    return value


# Request bodies: positive, at most three decimal places
QuantityIn = Annotated[Decimal, Field(gt=0, decimal_places=SCALE)]

# Response bodies: ORM attributes arrive as Quantity
QuantityOut = Annotated[Decimal, BeforeValidator(_quantity_to_decimal)]


class PaginatedResponse(BaseModel, Generic[T]):
    """Generic paginated response wrapper.

    Usage:
        response_model=PaginatedResponse[RootAllocationRow]
    """
    items: list[T]
    total: int
    limit: int
    offset: int
