"""
Standard response envelope.
"""
from typing import Any, Optional
from pydantic import BaseModel


class ApiResponse(BaseModel):
    """Success envelope: ``{success: true, data, message}``."""
    success: bool = True
    data: Any = None
    message: Optional[str] = None


class ApiErrorResponse(BaseModel):
    """Error envelope: ``{success: false, error, status}``."""
    success: bool = False
    error: Any
    status: int
