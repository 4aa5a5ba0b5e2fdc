"""
Pydantic request/response schemas for the Reconciliation API

Request validation for client administration mirrors the rules the CSV
import applies to client codes and names.
"""

from datetime import datetime
from typing import List, Optional, Dict, Any

from pydantic import BaseModel, Field, field_validator

CLIENT_CODE_PATTERN = r"^[A-Z0-9]+$"
PERSON_NAME_PATTERN = r"^[a-zA-ZáéíóúÁÉÍÓÚñÑüÜ\s]+$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
PHONE_PATTERN = r"^[0-9+\-\s()]+$"


class ClientPayload(BaseModel):
    """Request schema for creating or replacing a client."""
    client_code: str = Field(
        ...,
        min_length=3,
        max_length=20,
        pattern=CLIENT_CODE_PATTERN,
        description="Client code (uppercase letters and numbers)"
    )
    first_name: str = Field(
        ...,
        min_length=2,
        max_length=100,
        pattern=PERSON_NAME_PATTERN,
        description="First name (letters and spaces)"
    )
    last_name: str = Field(
        ...,
        min_length=2,
        max_length=100,
        pattern=PERSON_NAME_PATTERN,
        description="Last name (letters and spaces)"
    )
    email: Optional[str] = Field(default=None, max_length=150, pattern=EMAIL_PATTERN)
    phone: Optional[str] = Field(default=None, max_length=20, pattern=PHONE_PATTERN)
    address: Optional[str] = Field(default=None, max_length=500)
    city: Optional[str] = Field(default=None, max_length=100)
    department: Optional[str] = Field(default=None, max_length=100)

    @field_validator('email', 'phone', 'address', 'city', 'department', mode='before')
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        """Treat empty optional fields as absent."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v: Optional[str]) -> Optional[str]:
        return v.lower() if v else v


class ClientOut(BaseModel):
    """Client as returned by the API."""
    client_id: int
    client_code: str
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    department: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ClientResponse(BaseModel):
    """Single-client envelope."""
    success: bool = True
    message: Optional[str] = None
    data: ClientOut


class ClientListResponse(BaseModel):
    """Client list envelope."""
    success: bool = True
    data: List[ClientOut] = Field(default_factory=list)
    count: int = Field(..., ge=0)
    search_term: Optional[str] = None


class ClientStatistics(BaseModel):
    total_clients: int
    active_clients: int
    inactive_clients: int
    cities_count: int
    departments_count: int


class ClientStatisticsResponse(BaseModel):
    success: bool = True
    data: ClientStatistics


class MessageResponse(BaseModel):
    """Envelope for operations that return no data."""
    success: bool = True
    message: str


class ImportStatisticsOut(BaseModel):
    """Outcome of one CSV import batch."""
    clients_processed: int = 0
    clients_created: int = 0
    clients_updated: int = 0
    invoices_processed: int = 0
    invoices_created: int = 0
    invoices_updated: int = 0
    transactions_processed: int = 0
    transactions_created: int = 0
    transactions_updated: int = 0
    total_rows: int = 0
    failed_rows: int = 0
    errors: List[str] = Field(default_factory=list, description="Per-row error messages in file order")


class ImportResponse(BaseModel):
    success: bool = True
    message: str
    data: ImportStatisticsOut


class ReportResponse(BaseModel):
    """Envelope for the reporting queries."""
    success: bool = True
    data: List[Dict[str, Any]] = Field(default_factory=list)
    summary: Dict[str, Any] = Field(default_factory=dict)
    count: int = Field(..., ge=0)
    filtered_by_platform: Optional[str] = None


class HealthResponse(BaseModel):
    """Response schema for health check endpoint."""
    status: str = Field(default="healthy", description="Service status")
    database: str = Field(..., description="Database connectivity: ok or unavailable")
    uptime_seconds: Optional[int] = Field(default=None, description="Server uptime in seconds")


class ErrorDetail(BaseModel):
    """Detailed error information."""
    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    field: Optional[str] = Field(default=None, description="Field that caused error")
    timestamp: str = Field(..., description="Error timestamp (ISO 8601)")


class ErrorResponse(BaseModel):
    """Standardized error response format."""
    success: bool = False
    message: str
    error: ErrorDetail
    errors: Optional[List[Dict[str, Any]]] = None
