"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- Response models for API responses

Field names on the wire follow the chat protocol (ID, sender, text, success);
the Python attribute names are descriptive and mapped through aliases.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# Pydantic Request Models
# =============================================================================

class SubmitMessageRequest(BaseModel):
    """
    Body of POST /messages.

    Validates:
    - sender: non-empty ephemeral sender identity
    - text: non-empty, not only whitespace
    """
    sender_id: str = Field(
        ...,
        alias="sender",
        min_length=1,
        description="Ephemeral sender identity"
    )
    text: str = Field(
        ...,
        min_length=1,
        description="Message body"
    )

    @field_validator("text")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("text must not be blank")
        return v

    model_config = {
        "populate_by_name": True,
        "json_schema_extra": {
            "examples": [{"sender": "anonymous42", "text": "hi"}]
        }
    }


class AcknowledgeRequest(BaseModel):
    """Body of POST /delivered. ID may arrive as a number or a numeric string."""
    server_id: int = Field(..., alias="ID", ge=1, description="Identity of the delivered message")

    model_config = {"populate_by_name": True}


# =============================================================================
# Pydantic Response Models
# =============================================================================

class SubmitMessageResponse(BaseModel):
    """Response for POST /messages: the stored message plus its identity."""
    server_id: int = Field(
        ...,
        alias="ID",
        serialization_alias="ID",
        description="Identity assigned by the message store"
    )
    sender_id: str = Field(
        ...,
        alias="sender",
        serialization_alias="sender",
        description="Sender identity"
    )
    text: str = Field(..., description="Message body")
    success: int = Field(default=200, description="Always 200 on success")

    model_config = {"populate_by_name": True}


class AcknowledgeResponse(BaseModel):
    """Response for POST /delivered."""
    success: int = Field(default=200, description="Always 200 on success")


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
