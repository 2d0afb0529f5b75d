"""Shared Pydantic schemas for OrbitCRM."""

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    service: str = "orbit-crm"
    database: str = "ok"
