"""
Pydantic models for the analysis result and the API responses.

Rationale:
- The model's JSON is validated here before anything else touches it.
- Wire names follow the camelCase keys the model is asked to produce.
- Severity and chart type stay plain strings: unknown values are a rendering
  concern (neutral style, textual chart fallback), not a validation failure.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, field_validator


SEVERITIES = ("Low", "Medium", "High", "Critical")
CHART_TYPES = ("bar", "line", "pie")


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class Anomaly(_WireModel):
    description: str
    severity: str
    implication: str

    @field_validator("severity")
    @classmethod
    def _canonical_severity(cls, v: str) -> str:
        for name in SEVERITIES:
            if v.strip().lower() == name.lower():
                return name
        return v


class RootCause(_WireModel):
    # Free text title of the anomaly; not a reference into `anomalies`.
    anomaly: str
    cause: str
    recommendation: str


class ChartDatum(_WireModel):
    name: str
    # No coercion: "12" or true from the model is a schema mismatch.
    value: StrictFloat


class ChartSuggestion(_WireModel):
    chart_type: str = Field(alias="chartType")
    title: str
    description: str
    data: List[ChartDatum]


class AnalysisResult(_WireModel):
    summary: str
    anomalies: List[Anomaly]
    root_causes: List[RootCause] = Field(alias="rootCauses")
    chart_suggestion: Optional[ChartSuggestion] = Field(default=None, alias="chartSuggestion")


class SessionState(BaseModel):
    phase: Literal["idle", "loading", "success", "failure"]
    file_name: Optional[str] = None
    preview: Optional[List[List[str]]] = None
    result: Optional[AnalysisResult] = None
    error: Optional[str] = None
