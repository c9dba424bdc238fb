"""
Shared vocabularies for the Open Market Research back end.

These lists drive the dropdowns of the submission wizard and the
validation of structured study data.  They are plain Python lists so
that they can be serialised directly by the API.
"""

from __future__ import annotations

from typing import Any, Dict, List

COUNTRIES: List[str] = [
    "Afghanistan", "Albania", "Algeria", "Argentina", "Armenia", "Australia",
    "Austria", "Azerbaijan", "Bangladesh", "Belarus", "Belgium", "Brazil",
    "Bulgaria", "Canada", "Chile", "China", "Colombia", "Croatia",
    "Czech Republic", "Denmark", "Egypt", "Estonia", "Finland", "France",
    "Georgia", "Germany", "Ghana", "Greece", "Hungary", "Iceland", "India",
    "Indonesia", "Ireland", "Israel", "Italy", "Japan", "Jordan", "Kazakhstan",
    "Kenya", "Latvia", "Lebanon", "Lithuania", "Luxembourg", "Malaysia",
    "Mexico", "Morocco", "Netherlands", "New Zealand", "Nigeria", "Norway",
    "Pakistan", "Peru", "Philippines", "Poland", "Portugal", "Romania",
    "Russia", "Saudi Arabia", "Singapore", "Slovakia", "Slovenia",
    "South Africa", "South Korea", "Spain", "Sweden", "Switzerland",
    "Thailand", "Turkey", "Ukraine", "United Arab Emirates", "United Kingdom",
    "United States", "Vietnam",
]

INDUSTRIES: List[str] = [
    "Agriculture", "Automotive", "Banking & Finance", "Construction",
    "Education", "Energy", "Entertainment", "Food & Beverage", "Healthcare",
    "Hospitality", "Insurance", "Manufacturing", "Media", "Real Estate",
    "Retail", "Technology", "Telecommunications", "Transportation", "Travel",
    "Other",
]

TARGET_AUDIENCES: List[str] = [
    "real_estate_agent",
    "small_business_owner",
    "startup_founder",
    "product_manager",
    "marketing_manager",
    "sales_representative",
    "customer_service_rep",
    "developer",
    "designer",
    "consultant",
    "investor",
    "student",
    "researcher",
    "freelancer",
    "enterprise_executive",
    "non_profit_worker",
    "government_employee",
    "other",
]

METHODOLOGY_TYPES: List[str] = [
    "interview",
    "survey",
    "focus_group",
    "observation",
    "mixed_methods",
    "other",
]

COMPANY_SIZES: List[str] = ["startup", "small", "medium", "large", "enterprise"]

BUDGET_RANGES: List[str] = [
    "under_10k",
    "10k_50k",
    "50k_100k",
    "100k_500k",
    "over_500k",
]

LICENSES: List[str] = [
    "CC-BY-4.0",
    "CC-BY-SA-4.0",
    "CC-BY-NC-4.0",
    "MIT",
    "Apache-2.0",
    "other",
]

VERIFICATION_STATUSES: List[str] = ["pending", "verified", "rejected", "needs_revision"]

LINK_KEYS: List[str] = ["raw_data", "report", "landing_page", "presentation", "other"]

COMMON_TAGS: List[str] = [
    "user-research",
    "market-validation",
    "customer-interviews",
    "survey-data",
    "competitive-analysis",
    "pricing-research",
    "product-market-fit",
    "user-experience",
    "customer-journey",
    "pain-points",
    "opportunities",
    "trends",
    "demographics",
    "behavioral-insights",
    "quantitative",
    "qualitative",
    "mixed-methods",
]

# Ordered wizard steps.  ``fields`` lists the form fields collected on
# each step; the proceed checklist lives in ``submission.py``.
SUBMISSION_STEPS: List[Dict[str, Any]] = [
    {
        "id": "raw-research",
        "title": "Raw Research",
        "description": "Paste your research notes and let AI structure them",
        "fields": ["raw_data"],
    },
    {
        "id": "basic-info",
        "title": "Basic Information",
        "description": "Tell us about your research study",
        "fields": ["title", "summary", "industry"],
    },
    {
        "id": "market",
        "title": "Market & Location",
        "description": "Where was this research conducted?",
        "fields": ["countries", "cities"],
    },
    {
        "id": "audience",
        "title": "Target Audience",
        "description": "Who did you research?",
        "fields": ["target_audience"],
    },
    {
        "id": "methodology",
        "title": "Research Methodology",
        "description": "How did you conduct this research?",
        "fields": ["methodology"],
    },
    {
        "id": "findings",
        "title": "Key Findings",
        "description": "What did you discover?",
        "fields": ["top_findings", "insights"],
    },
    {
        "id": "metadata",
        "title": "Additional Information",
        "description": "Links, tags, and other details",
        "fields": ["links", "tags", "license", "company_size", "budget_range"],
    },
]


def all_options() -> Dict[str, Any]:
    """Return every vocabulary in a single JSON‑serialisable mapping."""
    return {
        "countries": COUNTRIES,
        "industries": INDUSTRIES,
        "target_audiences": TARGET_AUDIENCES,
        "methodology_types": METHODOLOGY_TYPES,
        "company_sizes": COMPANY_SIZES,
        "budget_ranges": BUDGET_RANGES,
        "licenses": LICENSES,
        "verification_statuses": VERIFICATION_STATUSES,
        "common_tags": COMMON_TAGS,
        "steps": SUBMISSION_STEPS,
    }
