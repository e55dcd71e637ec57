"""Response contracts for the scoring oracle.

Every oracle answer is turned into an `OracleResult` right after the HTTP
call. Engines only ever read `result.value` when `result.ok` is true, so no
field of a raw response is trusted before it passes these models.
"""
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, Field, StrictFloat, StrictInt, ValidationError, field_validator

OK = "ok"
SCHEMA_ERROR = "schema_error"
TIMEOUT = "timeout"
UNAVAILABLE = "unavailable"

Number = Union[StrictInt, StrictFloat]


class OracleResult(BaseModel):
    status: Literal["ok", "schema_error", "timeout", "unavailable"]
    value: Optional[Any] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == OK

    @classmethod
    def success(cls, value: Any) -> "OracleResult":
        return cls(status=OK, value=value)

    @classmethod
    def failure(cls, status: str, error: str) -> "OracleResult":
        return cls(status=status, error=error)


def _unit(v):
    # confidences/probabilities: clamp into [0, 1], keep None as None
    return None if v is None else max(0.0, min(1.0, float(v)))


class ReputationAnalysis(BaseModel):
    reputation_change: Number = Field(ge=-100, le=100)
    confidence: Number = 0.5
    customer_tier: str = "unknown"
    risk_level: str = "medium"
    primary_factors: List[str] = Field(default_factory=list)
    explanation: str = ""
    recommendations: List[str] = Field(default_factory=list)

    @field_validator("confidence")
    @classmethod
    def clamp_unit(cls, v):
        return _unit(v)


class RiskPrediction(BaseModel):
    risk_score: Number = Field(ge=0, le=100)
    risk_category: str = "medium"
    future_return_probability: Optional[Number] = None
    future_delivery_failure_probability: Optional[Number] = None
    churn_probability: Optional[Number] = None
    warning_signs: List[str] = Field(default_factory=list)
    recommended_actions: List[str] = Field(default_factory=list)

    @field_validator("future_return_probability", "future_delivery_failure_probability", "churn_probability")
    @classmethod
    def clamp_unit(cls, v):
        return _unit(v)


class AllocationAnalysis(BaseModel):
    recommended_partner: Optional[str] = None
    partner_id: Optional[str] = None
    confidence: Number = 0.5
    reasoning: List[str] = Field(default_factory=list)
    risk_mitigation: List[str] = Field(default_factory=list)
    alternative_partners: List[str] = Field(default_factory=list)
    delivery_success_probability: Optional[Number] = None

    @field_validator("confidence", "delivery_success_probability")
    @classmethod
    def clamp_unit(cls, v):
        return _unit(v)


def validate_payload(payload: Any, model: Type[BaseModel]) -> OracleResult:
    """Pure check of a decoded oracle payload against its contract."""
    if not isinstance(payload, dict):
        return OracleResult.failure(SCHEMA_ERROR, f"expected a JSON object, got {type(payload).__name__}")
    try:
        return OracleResult.success(model.model_validate(payload))
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in e["loc"]) or "<root>" for e in exc.errors())
        return OracleResult.failure(SCHEMA_ERROR, f"{model.__name__} rejected: {fields}")


def validate_reputation_analysis(payload: Dict[str, Any]) -> OracleResult:
    return validate_payload(payload, ReputationAnalysis)


def validate_risk_prediction(payload: Dict[str, Any]) -> OracleResult:
    return validate_payload(payload, RiskPrediction)


def validate_allocation_analysis(payload: Dict[str, Any]) -> OracleResult:
    return validate_payload(payload, AllocationAnalysis)
