from typing import Generic, TypeVar, Optional
from pydantic import BaseModel

T = TypeVar("T")

class APIResponse(BaseModel, Generic[T]):
    data: Optional[T] = None
    message: str = "Success"
    success: bool = True


class ErrorDetail(BaseModel):
    code: int
    message: str


class ErrorResponse(BaseModel):
    success: bool = False
    error: ErrorDetail
