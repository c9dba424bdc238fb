"""
Database module for the Open Market Research back end.

This module encapsulates all persistence logic for studies and user
profiles.  It uses SQLAlchemy to manage a SQLite or PostgreSQL
database.  List and object valued study fields (market, methodology,
findings, tags and so on) are stored as JSON encoded text so that the
records round trip exactly as the API receives them.

Write operations take the caller's user id and enforce the rules in
:mod:`permissions` before touching the database: studies are public,
but only their author may update or delete them, and a profile can
only be changed by its owner.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import Column, Integer, String, Text, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .permissions import require_permission

logger = logging.getLogger(__name__)

# SQLAlchemy base class used to declare models
Base = declarative_base()

JSON_FIELDS = (
    'market',
    'target_audience',
    'contributors',
    'methodology',
    'top_findings',
    'insights',
    'links',
    'tags',
)
PLAIN_FIELDS = (
    'title',
    'summary',
    'published_date',
    'license',
    'verification_status',
    'created_at',
    'updated_at',
    'created_by',
    'raw_data',
    'industry',
    'company_size',
    'budget_range',
)
# Fields an author may not change after submission
PROTECTED_FIELDS = {'id', 'created_by', 'created_at', 'published_date', 'verification_status'}
# Columns that may be cleared with null
NULLABLE_FIELDS = {'raw_data', 'industry', 'company_size', 'budget_range'}
PROFILE_FIELDS = ('name', 'profile_url', 'bio', 'company', 'role')


class Study(Base):
    """ORM model for a single market research study."""

    __tablename__ = 'studies'

    id = Column(String, primary_key=True)
    title = Column(Text, nullable=False)
    summary = Column(Text, nullable=False)
    published_date = Column(String, nullable=False)
    market = Column(Text, nullable=False)  # JSON {"countries": [...], "cities": [...]}
    target_audience = Column(Text, nullable=False)
    contributors = Column(Text, nullable=False)
    methodology = Column(Text, nullable=False)
    top_findings = Column(Text, nullable=False)
    insights = Column(Text, nullable=False)
    links = Column(Text, nullable=False)
    license = Column(String, nullable=False)
    tags = Column(Text, nullable=False)
    verification_status = Column(String, nullable=False, default='pending')
    created_at = Column(String, nullable=False, index=True)
    updated_at = Column(String, nullable=False)
    created_by = Column(String, nullable=False, index=True)
    raw_data = Column(Text, nullable=True)
    industry = Column(String, nullable=True)
    company_size = Column(String, nullable=True)
    budget_range = Column(String, nullable=True)


class Profile(Base):
    """ORM model for a user profile, one per user."""

    __tablename__ = 'profiles'

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=True)
    profile_url = Column(String, nullable=True)
    bio = Column(Text, nullable=True)
    company = Column(String, nullable=True)
    role = Column(String, nullable=True)
    created_at = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)
    submission_count = Column(Integer, nullable=True, default=0)


def _get_database_url() -> str:
    """Resolve the database URL from environment variables.

    SQLite is used by default.  A ``DATABASE_URL`` environment variable
    overrides it; ``postgres://`` URLs are rewritten to
    ``postgresql://`` because SQLAlchemy does not recognise the former
    scheme.
    """
    url = os.getenv('DATABASE_URL')
    if url:
        if url.startswith('postgres://'):
            url = url.replace('postgres://', 'postgresql://', 1)
        logger.info("Using database URL from environment")
        return url
    default_path = os.path.join(os.path.dirname(os.path.dirname(__file__)), 'studies.db')
    logger.info(f"Using local SQLite database at {default_path}")
    return f"sqlite:///{default_path}"


# StaticPool lets SQLite connections be shared across threads, which the
# FastAPI threadpool and in‑memory test databases both need.
DATABASE_URL = _get_database_url()
if DATABASE_URL.startswith('sqlite'):
    engine = create_engine(
        DATABASE_URL,
        connect_args={'check_same_thread': False},
        poolclass=StaticPool
    )
else:
    engine = create_engine(DATABASE_URL, pool_pre_ping=True)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


def init_db() -> None:
    """Create all tables if they do not exist yet."""
    Base.metadata.create_all(bind=engine)
    logger.info("Database initialised (tables created if missing)")


@contextmanager
def get_db() -> Any:
    """Provide a transactional scope for database operations.

    The session is committed on success, rolled back on error and
    always closed.
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _study_to_dict(study: Study) -> Dict[str, Any]:
    record: Dict[str, Any] = {'id': study.id}
    for field in PLAIN_FIELDS:
        record[field] = getattr(study, field)
    for field in JSON_FIELDS:
        raw = getattr(study, field)
        record[field] = json.loads(raw) if raw else ({} if field in ('market', 'methodology', 'links') else [])
    return record


def _profile_to_dict(profile: Profile) -> Dict[str, Any]:
    return {
        'id': profile.id,
        'user_id': profile.user_id,
        'name': profile.name,
        'profile_url': profile.profile_url,
        'bio': profile.bio,
        'company': profile.company,
        'role': profile.role,
        'created_at': profile.created_at,
        'updated_at': profile.updated_at,
        'submission_count': profile.submission_count or 0,
    }


def _apply_study_fields(study: Study, fields: Dict[str, Any]) -> None:
    for field, value in fields.items():
        if field in JSON_FIELDS:
            setattr(study, field, json.dumps(value))
        elif field in PLAIN_FIELDS:
            setattr(study, field, value)


def _refresh_submission_count(session: Any, user_id: str, create: bool) -> Optional[Profile]:
    profile = session.query(Profile).filter(Profile.user_id == user_id).first()
    if profile is None:
        if not create:
            return None
        now = _now()
        profile = Profile(id=uuid.uuid4().hex, user_id=user_id, created_at=now, updated_at=now)
        session.add(profile)
    profile.submission_count = session.query(Study).filter(Study.created_by == user_id).count()
    return profile


def create_study(record: Dict[str, Any], auth_id: Optional[str]) -> Dict[str, Any]:
    """Insert a study record and refresh its author's profile.

    ``record`` is the output of :func:`submission.build_study_record`.
    The author's profile is created on first submission.
    """
    require_permission('studies', 'create', auth_id)
    study_id = uuid.uuid4().hex
    with get_db() as session:
        study = Study(id=study_id)
        _apply_study_fields(study, {**record, 'created_by': auth_id})
        session.add(study)
        session.flush()
        _refresh_submission_count(session, auth_id, create=True)
        result = _study_to_dict(study)
    logger.info(f"Created study {study_id} for user {auth_id}")
    return result


def fetch_study(study_id: str) -> Optional[Dict[str, Any]]:
    """Return a single study by ID, or ``None`` if it does not exist."""
    with get_db() as session:
        study = session.query(Study).filter(Study.id == study_id).first()
        if not study:
            return None
        return _study_to_dict(study)


def _matches(study: Dict[str, Any], search: str, industry: Optional[str], country: Optional[str]) -> bool:
    if search:
        term = search.lower()
        in_text = term in (study['title'] or '').lower() or term in (study['summary'] or '').lower()
        in_tags = any(term in tag.lower() for tag in study['tags'] if isinstance(tag, str))
        if not (in_text or in_tags):
            return False
    if industry and study['industry'] != industry:
        return False
    if country and country not in (study['market'] or {}).get('countries', []):
        return False
    return True


def list_studies(
    search: Optional[str] = None,
    industry: Optional[str] = None,
    country: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """List studies, newest first.

    Args:
        search: Case‑insensitive substring matched against the title,
            the summary and each tag.
        industry: Exact industry match.
        country: Country that must appear in the study's market.
        limit: Optional maximum number of studies to return.
    """
    search = (search or '').strip()
    with get_db() as session:
        query = session.query(Study).order_by(Study.created_at.desc())
        if industry:
            query = query.filter(Study.industry == industry)
        studies = [_study_to_dict(s) for s in query]
    filtered = [s for s in studies if _matches(s, search, industry, country)]
    if limit is not None and limit > 0:
        filtered = filtered[:limit]
    return filtered


def count_studies() -> int:
    with get_db() as session:
        return session.query(Study).count()


def get_filter_options() -> Dict[str, List[str]]:
    """Return the distinct industries and countries present in the corpus."""
    industries = set()
    countries = set()
    with get_db() as session:
        for industry, market in session.query(Study.industry, Study.market):
            if industry:
                industries.add(industry)
            if market:
                countries.update(json.loads(market).get('countries', []))
    return {
        'industries': sorted(industries),
        'countries': sorted(countries),
    }


def list_user_studies(user_id: str) -> List[Dict[str, Any]]:
    """Return every study submitted by ``user_id``, newest first."""
    with get_db() as session:
        query = (
            session.query(Study)
            .filter(Study.created_by == user_id)
            .order_by(Study.created_at.desc())
        )
        return [_study_to_dict(s) for s in query]


def update_study(study_id: str, changes: Dict[str, Any], auth_id: Optional[str]) -> Optional[Dict[str, Any]]:
    """Apply ``changes`` to a study owned by ``auth_id``.

    Submission style ``countries``/``cities`` keys are folded into
    ``market``.  Identity, authorship and verification fields are
    ignored.  Returns the updated study, or ``None`` if it does not
    exist.
    """
    changes = dict(changes)
    with get_db() as session:
        study = session.query(Study).filter(Study.id == study_id).first()
        if not study:
            return None
        current = _study_to_dict(study)
        require_permission('studies', 'update', auth_id, current)
        if 'countries' in changes or 'cities' in changes:
            market = dict(current['market'])
            for key in ('countries', 'cities'):
                if key in changes:
                    market[key] = list(changes.pop(key) or [])
            changes['market'] = market
        allowed = {k: v for k, v in changes.items() if k not in PROTECTED_FIELDS}
        _apply_study_fields(study, {**allowed, 'updated_at': _now()})
        return _study_to_dict(study)


def delete_study(study_id: str, auth_id: Optional[str]) -> bool:
    """Delete a study owned by ``auth_id``.  Returns ``False`` if missing."""
    with get_db() as session:
        study = session.query(Study).filter(Study.id == study_id).first()
        if not study:
            return False
        require_permission('studies', 'delete', auth_id, _study_to_dict(study))
        owner = study.created_by
        session.delete(study)
        session.flush()
        _refresh_submission_count(session, owner, create=False)
    logger.info(f"Deleted study {study_id}")
    return True


def get_profile(user_id: str, auth_id: Optional[str]) -> Optional[Dict[str, Any]]:
    """Return the profile of ``user_id`` with a fresh submission count."""
    require_permission('profiles', 'view', auth_id)
    with get_db() as session:
        profile = _refresh_submission_count(session, user_id, create=False)
        if profile is None:
            return None
        return _profile_to_dict(profile)


def upsert_profile(user_id: str, fields: Dict[str, Any], auth_id: Optional[str]) -> Dict[str, Any]:
    """Create or update the profile of ``user_id``.

    Empty strings clear a field.  Only the profile owner may update it.
    """
    values = {k: (fields[k] or None) for k in PROFILE_FIELDS if k in fields}
    with get_db() as session:
        profile = session.query(Profile).filter(Profile.user_id == user_id).first()
        now = _now()
        if profile is None:
            require_permission('profiles', 'create', auth_id)
            if auth_id != user_id:
                require_permission('profiles', 'update', auth_id, {'user_id': user_id})
            profile = Profile(id=uuid.uuid4().hex, user_id=user_id, created_at=now)
            session.add(profile)
        else:
            require_permission('profiles', 'update', auth_id, {'user_id': profile.user_id})
        for key, value in values.items():
            setattr(profile, key, value)
        profile.updated_at = now
        session.flush()
        _refresh_submission_count(session, user_id, create=False)
        return _profile_to_dict(profile)
