"""Pydantic models for documentation extracted by the LLM (the `response_model` of the extract phase)."""
from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


class ParameterDoc(BaseModel):
    name: str
    param_type: Literal["query", "path", "body", "header", "cookie"]
    data_type: Literal["string", "integer", "number", "boolean", "array", "object"] = "string"
    required: bool = False
    default_value: Optional[str] = None
    enum_values: Optional[List[str]] = None
    pattern: Optional[str] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    description: Optional[str] = None
    example: Optional[str] = None


class EndpointDoc(BaseModel):
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]
    path: str  # e.g. /v1/customers/{id}
    description: Optional[str] = None
    rate_limit: Optional[int] = None  # requests per rate_limit_period
    rate_limit_period: Optional[Literal["second", "minute", "hour", "day", "month"]] = None
    cost_per_call: Optional[float] = None  # USD unless cost_currency says otherwise
    cost_currency: str = "USD"
    response_format: Optional[str] = "json"
    success_status_code: int = 200
    is_deprecated: bool = False
    requires_auth: bool = True
    pagination_type: Optional[Literal["offset", "cursor", "page", "none"]] = None
    parameters: List[ParameterDoc] = Field(default_factory=list)

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, v):
        return v.upper() if isinstance(v, str) else v

    @field_validator("path")
    @classmethod
    def _leading_slash(cls, v: str) -> str:
        v = v.strip()
        return v if v.startswith("/") else "/" + v


class QuirkDoc(BaseModel):
    quirk_type: Literal["time", "currency", "encoding", "pagination", "rate_limit", "custom"]
    severity: Literal["low", "medium", "high", "critical"] = "medium"
    field_name: Optional[str] = None
    description: str
    conversion_function: Optional[str] = None
    conversion_language: Optional[str] = "python"
    example_input: Optional[str] = None
    example_output: Optional[str] = None
    discovered_by: Literal["auto", "manual", "user"] = "auto"


class ApiDoc(BaseModel):
    name: str
    base_url: str
    version: Optional[str] = None
    auth_type: Optional[Literal["api_key", "oauth", "bearer", "basic", "none"]] = None
    documentation_url: Optional[str] = None
    description: Optional[str] = None
    provider: Optional[str] = None
    category: Optional[str] = None  # payment, email, sms, crm, analytics, ...
    is_free: bool = False
    requires_approval: bool = False
    endpoints: List[EndpointDoc] = Field(default_factory=list)
    quirks: List[QuirkDoc] = Field(default_factory=list)

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.strip().rstrip("/")
