"""Request bodies accepted by the HTTP API."""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

MethodologyType = Literal['interview', 'survey', 'focus_group', 'observation', 'mixed_methods', 'other']
License = Literal['CC-BY-4.0', 'CC-BY-SA-4.0', 'CC-BY-NC-4.0', 'MIT', 'Apache-2.0', 'other']
CompanySize = Literal['startup', 'small', 'medium', 'large', 'enterprise']
BudgetRange = Literal['under_10k', '10k_50k', '50k_100k', '100k_500k', 'over_500k']


class StructureRequest(BaseModel):
    # Checked by the endpoint so a missing or non-string value gets a 400
    content: Optional[Any] = None
    title: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class SuggestionsRequest(BaseModel):
    data: Dict[str, Any]


class Contributor(BaseModel):
    name: str
    profile_url: Optional[str] = None


class Methodology(BaseModel):
    type: MethodologyType = 'other'
    sample_size: int = Field(default=0, ge=0)
    collection_start: Optional[date] = None
    collection_end: Optional[date] = None
    additional_notes: Optional[str] = None


class Links(BaseModel):
    raw_data: Optional[str] = None
    report: Optional[str] = None
    landing_page: Optional[str] = None
    presentation: Optional[str] = None
    other: Optional[str] = None


class StudySubmission(BaseModel):
    """Submission form data.

    Every field is optional so that the same body serves complete
    submissions (checked against the wizard steps) and partial
    updates.
    """

    title: Optional[str] = None
    summary: Optional[str] = None
    industry: Optional[str] = None
    countries: List[str] = Field(default_factory=list)
    cities: List[str] = Field(default_factory=list)
    target_audience: List[str] = Field(default_factory=list)
    contributors: List[Contributor] = Field(default_factory=list)
    methodology: Optional[Methodology] = None
    top_findings: List[str] = Field(default_factory=list)
    insights: List[str] = Field(default_factory=list)
    links: Links = Field(default_factory=Links)
    license: Optional[License] = None
    tags: List[str] = Field(default_factory=list)
    raw_data: Optional[str] = None
    company_size: Optional[CompanySize] = None
    budget_range: Optional[BudgetRange] = None


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    profile_url: Optional[str] = None
    bio: Optional[str] = None
    company: Optional[str] = None
    role: Optional[str] = None
