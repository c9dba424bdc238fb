"""
Submission wizard state.

A study is submitted through an ordered series of steps (see
``constants.SUBMISSION_STEPS``).  :class:`SubmissionDraft` keeps the
form data collected so far, knows which fields each step requires
before the user may continue, and converts the finished draft into the
study record that is persisted.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .constants import SUBMISSION_STEPS

logger = logging.getLogger(__name__)


def _filled(value: Any) -> bool:
    if isinstance(value, (list, dict, str)):
        return len(value) > 0
    return value is not None


def _missing_raw_research(data: Dict[str, Any]) -> List[str]:
    return [] if _filled(data.get('raw_data')) else ['raw_data']


def _missing_basic_info(data: Dict[str, Any]) -> List[str]:
    return [f for f in ('title', 'summary', 'industry') if not _filled(data.get(f))]


def _missing_market(data: Dict[str, Any]) -> List[str]:
    return [] if _filled(data.get('countries')) else ['countries']


def _missing_audience(data: Dict[str, Any]) -> List[str]:
    return [] if _filled(data.get('target_audience')) else ['target_audience']


def _missing_methodology(data: Dict[str, Any]) -> List[str]:
    methodology = data.get('methodology') or {}
    missing: List[str] = []
    if not methodology.get('type'):
        missing.append('methodology.type')
    if not methodology.get('sample_size'):
        missing.append('methodology.sample_size')
    return missing


def _missing_findings(data: Dict[str, Any]) -> List[str]:
    return [] if _filled(data.get('top_findings')) else ['top_findings']


def _missing_metadata(data: Dict[str, Any]) -> List[str]:
    return [] if _filled(data.get('license')) else ['license']


STEP_CHECKS: Dict[str, Callable[[Dict[str, Any]], List[str]]] = {
    'raw-research': _missing_raw_research,
    'basic-info': _missing_basic_info,
    'market': _missing_market,
    'audience': _missing_audience,
    'methodology': _missing_methodology,
    'findings': _missing_findings,
    'metadata': _missing_metadata,
}


def missing_fields(data: Dict[str, Any], step_id: Optional[str] = None) -> List[str]:
    """Return the required fields still missing for one step or for all steps."""
    step_ids = [step_id] if step_id else [s['id'] for s in SUBMISSION_STEPS]
    missing: List[str] = []
    for sid in step_ids:
        missing.extend(STEP_CHECKS[sid](data))
    return missing


class SubmissionDraft:
    """In‑memory form state for one study submission."""

    def __init__(self, data: Optional[Dict[str, Any]] = None) -> None:
        self.data: Dict[str, Any] = dict(data or {})
        self.current_step = 0
        self.confidence: Optional[int] = None

    @property
    def total_steps(self) -> int:
        return len(SUBMISSION_STEPS)

    @property
    def step(self) -> Dict[str, Any]:
        return SUBMISSION_STEPS[self.current_step]

    @property
    def progress(self) -> float:
        return (self.current_step + 1) / self.total_steps * 100

    @property
    def is_last_step(self) -> bool:
        return self.current_step == self.total_steps - 1

    def update(self, step_data: Dict[str, Any]) -> None:
        """Merge the fields collected on a step into the draft."""
        self.data.update(step_data)

    def apply_structuring(self, result: Dict[str, Any]) -> bool:
        """Pre‑fill the draft from a structuring result.

        Values already entered by the user win over structured ones.
        Returns ``False`` when the result reports a failure.
        """
        if not result.get('success'):
            logger.info(f"Structuring failed, draft left for manual entry: {result.get('error')}")
            return False
        for key, value in (result.get('data') or {}).items():
            if not _filled(self.data.get(key)):
                self.data[key] = value
        self.confidence = result.get('confidence')
        return True

    def can_proceed(self) -> bool:
        return not missing_fields(self.data, self.step['id'])

    def next_step(self) -> bool:
        if self.is_last_step or not self.can_proceed():
            return False
        self.current_step += 1
        return True

    def prev_step(self) -> bool:
        if self.current_step == 0:
            return False
        self.current_step -= 1
        return True

    def missing_fields(self) -> List[str]:
        return missing_fields(self.data)

    def is_complete(self) -> bool:
        return not self.missing_fields()

    def to_study_record(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Build the persisted study record for this draft."""
        return build_study_record(self.data, user_id, now)


def build_study_record(data: Dict[str, Any], user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Convert submission form data into a study record.

    Countries and cities are folded into ``market``.  Publication and
    audit timestamps are set to ``now`` and the record starts out as
    ``pending`` verification.
    """
    timestamp = (now or datetime.now(timezone.utc)).isoformat()
    methodology = dict(data.get('methodology') or {})
    for key in ('collection_start', 'collection_end'):
        value = methodology.get(key)
        if hasattr(value, 'isoformat'):
            methodology[key] = value.isoformat()
    return {
        'title': data.get('title', ''),
        'summary': data.get('summary', ''),
        'published_date': timestamp,
        'market': {
            'countries': list(data.get('countries') or []),
            'cities': list(data.get('cities') or []),
        },
        'target_audience': list(data.get('target_audience') or []),
        'contributors': list(data.get('contributors') or []),
        'methodology': methodology,
        'top_findings': list(data.get('top_findings') or []),
        'insights': list(data.get('insights') or []),
        'links': dict(data.get('links') or {}),
        'license': data.get('license', 'other'),
        'tags': list(data.get('tags') or []),
        'verification_status': 'pending',
        'created_at': timestamp,
        'updated_at': timestamp,
        'created_by': user_id,
        'raw_data': data.get('raw_data'),
        'industry': data.get('industry'),
        'company_size': data.get('company_size'),
        'budget_range': data.get('budget_range'),
    }
