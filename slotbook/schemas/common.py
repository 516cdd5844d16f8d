from typing import List, Generic, TypeVar
from pydantic import BaseModel

T = TypeVar("T")


# Paginated response wrapper: used by all list endpoints
class PaginatedResponse(BaseModel, Generic[T]):
    data: List[T]
    total: int
    page: int
    limit: int
    total_pages: int


# Error responses (rendered by the ReservationError handler in slotbook.main)
class ErrorResponse(BaseModel):
    error: str
    message: str


class InsufficientCapacityError(ErrorResponse):
    available: int
    requested: int


class InvalidTransitionError(ErrorResponse):
    action: str
    current_status: str
