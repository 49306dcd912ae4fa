"""Schemas for diagnosis results (weighted scoring and AI analysis)."""

from typing import Optional

from pydantic import BaseModel, Field


class CaseInput(BaseModel):
    """Patient signalment and findings submitted for analysis."""

    patient_name: Optional[str] = None
    species: str = "Other"
    breed: Optional[str] = None
    age: Optional[str] = None
    weight: Optional[str] = None
    clinical_signs: str = ""
    lab_findings: Optional[str] = None


class Diagnosis(BaseModel):
    name: str
    probability: int = Field(..., description="Protocol score, capped at 99")
    reasoning: str
    suggested_tests: list[str] = Field(default_factory=list)
    treatment_plan: str = ""


class DiagnosisResponse(BaseModel):
    diagnoses: list[Diagnosis] = Field(default_factory=list)
    summary: str
    commentary: Optional[str] = None
