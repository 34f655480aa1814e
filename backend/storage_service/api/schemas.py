"""API response schemas."""
from pydantic import BaseModel


class ExistsResponse(BaseModel):
    blob_name: str
    exists: bool


class ErrorResponse(BaseModel):
    detail: str
    tracking_id: str | None = None
    stage: str | None = None
