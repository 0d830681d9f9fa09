from typing import List

from pydantic import BaseModel


# Error responses
class ErrorResponse(BaseModel):
    error: str
    message: str


class RecalculationFailure(ErrorResponse):
    rebuilt_granularities: List[str]
    records_processed: int
