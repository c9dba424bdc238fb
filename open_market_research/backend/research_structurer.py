"""
Turn raw research notes into a structured study record.

The structurer renders a fixed prompt around the user's raw text,
asks the chat model for a JSON document matching the study schema and
then cleans the response field by field.  Fields that are missing or
have the wrong type are dropped rather than failing the whole
document, and a warning describing each dropped or coerced field is
returned alongside the data.  A confidence score is derived from how
many of the core study fields ended up populated.

The public entry point, :meth:`ResearchStructurer.structure_research`,
never raises: every failure is reported as
``{"success": False, "error": ...}`` so the submission wizard can fall
back to manual entry.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from dateutil import parser as date_parser  # type: ignore

from .constants import BUDGET_RANGES, COMPANY_SIZES, LICENSES, LINK_KEYS, METHODOLOGY_TYPES
from .models_client import ModelsClient

logger = logging.getLogger(__name__)

STRUCTURING_TEMPERATURE = 0.3
STRUCTURING_MAX_TOKENS = 2000
SUGGESTION_TEMPERATURE = 0.4
SUGGESTION_MAX_TOKENS = 500
UNAVAILABLE_MESSAGE = "LLM service is not available. Please try again later."
PARSE_ERROR_MESSAGE = "Failed to parse structured data from LLM response"

REQUIRED_FIELDS: List[str] = [
    'title',
    'summary',
    'industry',
    'countries',
    'target_audience',
    'methodology',
    'top_findings',
    'tags',
]

STRING_FIELDS = ('title', 'summary', 'industry', 'raw_data')
STRING_LIST_FIELDS = ('countries', 'cities', 'target_audience', 'top_findings', 'insights', 'tags')

# Keys the prompt asks for that map onto stored link keys.
LINK_ALIASES = {
    'research_paper': 'report',
    'data_source': 'raw_data',
}

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?", re.IGNORECASE)


def build_structuring_prompt(
    content: str,
    title: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> str:
    """Render the structuring prompt for a piece of raw research."""
    return f"""You are an expert market research analyst. Your task is to structure raw research data into a standardized JSON format for the Open Market Research platform.

RAW RESEARCH DATA:
Title: {title or 'Not provided'}
Content: {content}
Metadata: {json.dumps(metadata or {}, indent=2, default=str)}

Please analyze this research and extract the following information in JSON format. If information is not available, use null or empty arrays as appropriate.

REQUIRED OUTPUT FORMAT (return ONLY valid JSON):
{{
  "title": "Clear, descriptive title of the research study",
  "summary": "2-3 sentence summary of the research",
  "industry": "Primary industry category (e.g., 'Technology', 'Healthcare', 'Finance')",
  "countries": ["List of countries where research was conducted"],
  "cities": ["List of cities where research was conducted"],
  "target_audience": ["List of target audience segments (e.g., 'startups', 'enterprises', 'consumers')"],
  "contributors": [{{"name": "Author name", "profile_url": "Optional profile URL"}}],
  "methodology": {{
    "type": "One of: {', '.join(METHODOLOGY_TYPES)}",
    "sample_size": 0,
    "collection_start": "Start date in YYYY-MM-DD format",
    "collection_end": "End date in YYYY-MM-DD format",
    "additional_notes": "Any additional methodology details"
  }},
  "top_findings": ["Key finding 1", "Key finding 2", "Key finding 3"],
  "insights": ["Strategic insight 1", "Strategic insight 2"],
  "links": {{
    "landing_page": "Optional project landing page URL",
    "research_paper": "Optional research paper URL",
    "data_source": "Optional raw data source URL"
  }},
  "license": "One of: {', '.join(LICENSES)}",
  "tags": ["Relevant tags for categorization"],
  "raw_data": "Original raw research content",
  "company_size": "One of: {', '.join(COMPANY_SIZES)}",
  "budget_range": "One of: {', '.join(BUDGET_RANGES)}"
}}

GUIDELINES:
1. Extract factual information only - do not make assumptions
2. Use clear, professional language
3. Ensure all dates are in YYYY-MM-DD format
4. Make findings actionable and specific
5. Choose appropriate tags for discoverability
6. If information is unclear, use your best judgment but mark with low confidence
7. Ensure the JSON is valid and complete

Return ONLY the JSON object, no additional text or formatting."""


def strip_code_fences(response: str) -> str:
    """Remove Markdown code fence markers around a model response."""
    return _FENCE_RE.sub('', response).strip()


def parse_llm_response(response: str) -> Tuple[Dict[str, Any], List[str]]:
    """Parse and clean a raw model response.

    Returns:
        A tuple of (partial study record, warnings).

    Raises:
        ValueError: The response is not a JSON object.
    """
    cleaned = strip_code_fences(response)
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse LLM response: {e}")
        raise ValueError(PARSE_ERROR_MESSAGE) from e
    if not isinstance(parsed, dict):
        logger.error(f"LLM response is a {type(parsed).__name__}, expected an object")
        raise ValueError(PARSE_ERROR_MESSAGE)
    return validate_structured_data(parsed)


def _clean_string(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _clean_string_list(values: List[Any]) -> List[str]:
    return [v.strip() for v in values if isinstance(v, str) and v.strip()]


def _clean_date(value: Any) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return date_parser.parse(value.strip()).date().isoformat()
    except (ValueError, OverflowError):
        return None


def _clean_sample_size(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return max(0, value)
    if isinstance(value, float) and value.is_integer():
        return max(0, int(value))
    if isinstance(value, str):
        digits = value.strip().replace(',', '')
        if digits.isdigit():
            return int(digits)
    return None


def _clean_methodology(raw: Dict[str, Any], warnings: List[str]) -> Dict[str, Any]:
    today = date.today().isoformat()
    method_type = raw.get('type')
    normalized_type = 'other'
    if isinstance(method_type, str):
        candidate = re.sub(r"[\s\-]+", '_', method_type.strip().lower())
        if candidate in METHODOLOGY_TYPES:
            normalized_type = candidate
        else:
            warnings.append(f"methodology.type: unknown value {method_type!r}, using 'other'")
    sample_size = _clean_sample_size(raw.get('sample_size'))
    if sample_size is None:
        if raw.get('sample_size') is not None:
            warnings.append("methodology.sample_size: not a number, using 0")
        sample_size = 0
    methodology: Dict[str, Any] = {
        'type': normalized_type,
        'sample_size': sample_size,
    }
    for key in ('collection_start', 'collection_end'):
        cleaned = _clean_date(raw.get(key))
        if cleaned is None:
            if raw.get(key) is not None:
                warnings.append(f"methodology.{key}: invalid date, using today")
            cleaned = today
        methodology[key] = cleaned
    notes = _clean_string(raw.get('additional_notes'))
    if notes:
        methodology['additional_notes'] = notes
    return methodology


def _clean_contributors(values: List[Any], warnings: List[str]) -> List[Dict[str, str]]:
    contributors: List[Dict[str, str]] = []
    for item in values:
        name = _clean_string(item.get('name')) if isinstance(item, dict) else None
        if not name:
            warnings.append(f"contributors: dropped entry without a name: {item!r}")
            continue
        contributor = {'name': name}
        profile_url = _clean_string(item.get('profile_url'))
        if profile_url:
            contributor['profile_url'] = profile_url
        contributors.append(contributor)
    return contributors


def _clean_links(raw: Dict[str, Any], warnings: List[str]) -> Dict[str, str]:
    links: Dict[str, str] = {}
    for key, value in raw.items():
        target = LINK_ALIASES.get(key, key)
        if target not in LINK_KEYS:
            warnings.append(f"links.{key}: unknown link type")
            continue
        cleaned = _clean_string(value)
        if cleaned and target not in links:
            links[target] = cleaned
    return links


def validate_structured_data(data: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    """Validate a parsed model response into a partial study record.

    Each field is checked on its own.  Invalid fields are left out of
    the result and described in the returned warnings list; no field
    is ever required.
    """
    cleaned: Dict[str, Any] = {}
    warnings: List[str] = []

    def reject(field: str, reason: str) -> None:
        warnings.append(f"{field}: {reason}")

    for field in STRING_FIELDS:
        value = data.get(field)
        if value is None:
            continue
        text = _clean_string(value)
        if text:
            cleaned[field] = text
        elif not isinstance(value, str):
            reject(field, f"expected a string, got {type(value).__name__}")

    for field in STRING_LIST_FIELDS:
        value = data.get(field)
        if value is None:
            continue
        if not isinstance(value, list):
            reject(field, f"expected a list, got {type(value).__name__}")
            continue
        items = _clean_string_list(value)
        if len(items) != len(value):
            reject(field, f"dropped {len(value) - len(items)} non-string or empty entries")
        cleaned[field] = items

    contributors = data.get('contributors')
    if isinstance(contributors, list):
        cleaned['contributors'] = _clean_contributors(contributors, warnings)
    elif contributors is not None:
        reject('contributors', 'expected a list')

    methodology = data.get('methodology')
    if isinstance(methodology, dict):
        cleaned['methodology'] = _clean_methodology(methodology, warnings)
    elif methodology is not None:
        reject('methodology', 'expected an object')

    links = data.get('links')
    if isinstance(links, dict):
        cleaned['links'] = _clean_links(links, warnings)
    elif links is not None:
        reject('links', 'expected an object')

    for field, allowed in (('license', LICENSES), ('company_size', COMPANY_SIZES), ('budget_range', BUDGET_RANGES)):
        value = data.get(field)
        if value is None:
            continue
        text = _clean_string(value)
        if text in allowed:
            cleaned[field] = text
        elif field == 'license' and text:
            cleaned[field] = 'other'
            reject(field, f"unknown license {text!r}, using 'other'")
        else:
            reject(field, f"unsupported value {value!r}")

    if warnings:
        logger.debug(f"Structured data warnings: {warnings}")
    return cleaned, warnings


def calculate_confidence(data: Dict[str, Any]) -> int:
    """Return the percentage of required fields that are populated."""
    present = 0
    for field in REQUIRED_FIELDS:
        value = data.get(field)
        if isinstance(value, (list, dict)):
            if len(value) > 0:
                present += 1
        elif value is not None and value != '':
            present += 1
    return round(present / len(REQUIRED_FIELDS) * 100)


class ResearchStructurer:
    """Structure raw research using a :class:`ModelsClient`."""

    def __init__(self, client: Optional[ModelsClient] = None) -> None:
        self.client = client or ModelsClient()

    def is_available(self) -> bool:
        try:
            return self.client.check_connection()
        except Exception as e:
            logger.error(f"LLM service unavailable: {e}")
            return False

    def structure_research(
        self,
        content: str,
        title: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Structure ``content`` into a partial study record.

        Returns:
            ``{"success": True, "data": ..., "confidence": ..., "warnings": ...}``
            or ``{"success": False, "error": ...}``.
        """
        try:
            if not self.is_available():
                return {'success': False, 'error': UNAVAILABLE_MESSAGE}
            prompt = build_structuring_prompt(content, title, metadata)
            response = self.client.generate_text(
                prompt,
                temperature=STRUCTURING_TEMPERATURE,
                max_tokens=STRUCTURING_MAX_TOKENS,
            )
            data, warnings = parse_llm_response(response)
            confidence = calculate_confidence(data)
            logger.info(f"Structured research with confidence {confidence}% ({len(warnings)} warnings)")
            return {
                'success': True,
                'data': data,
                'confidence': confidence,
                'warnings': warnings,
            }
        except Exception as e:
            logger.error(f"Error structuring research: {e}")
            return {'success': False, 'error': str(e) or "Failed to structure research data"}

    def get_improvement_suggestions(self, data: Dict[str, Any]) -> List[str]:
        """Ask the model for up to five ways to improve a structured study."""
        prompt = (
            "Review this structured research data and suggest 3-5 specific improvements "
            "to make it more valuable for market research:\n\n"
            f"{json.dumps(data, indent=2, default=str)}\n\n"
            "Provide specific, actionable suggestions for improving the research quality, "
            "clarity, or completeness."
        )
        try:
            response = self.client.generate_text(
                prompt,
                temperature=SUGGESTION_TEMPERATURE,
                max_tokens=SUGGESTION_MAX_TOKENS,
            )
        except Exception as e:
            logger.error(f"Error getting improvement suggestions: {e}")
            return ["Unable to generate suggestions at this time"]
        suggestions = [
            re.sub(r"^\d+\.\s*", '', line.strip()).strip()
            for line in response.splitlines()
            if line.strip()
        ]
        return [s for s in suggestions if len(s) > 10][:5]
