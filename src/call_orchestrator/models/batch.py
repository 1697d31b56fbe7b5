"""Pydantic models for batch endpoints."""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from call_orchestrator.models.calls import CallAcceptedResponse, CreateCallRequest


class BatchCallRequest(BaseModel):
    """Request model for dispatching several calls together."""

    model_config = ConfigDict(populate_by_name=True)

    calls: List[CreateCallRequest] = Field(default_factory=list)
    batch_id: Optional[str] = Field(default=None, alias="batchId", max_length=64)


class BatchAcceptedResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    batch_id: str = Field(..., alias="batchId")
    calls: List[CallAcceptedResponse]


class BatchStatusResponse(BaseModel):
    """Aggregate status of a batch."""

    model_config = ConfigDict(populate_by_name=True)

    batch_id: str = Field(..., alias="batchId")
    total_calls: int = Field(..., alias="totalCalls")
    status_counts: Dict[str, int] = Field(default_factory=dict, alias="statusCounts")
    calls: List[CallAcceptedResponse]
