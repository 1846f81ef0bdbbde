"""Multi-source merge engine.

Collapses every stored Partial Profile of a user into one Unified Profile:

- scalar fields take the most complete value, ties going to the more recent source
- tag lists are unioned under case-insensitive, whitespace-normalized equality
- record lists are grouped by identity key and merged field by field, then
  sorted with current/open-ended entries first, end date descending,
  start date descending

Inputs are always ordered most-recent-source-first. The engine is pure:
merging the same inputs twice yields the same profile.
"""

import logging
import re
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Type

from pydantic import BaseModel

from knowledge_base.profiling.profile_models import (
    CertificationEntry,
    DatePoint,
    EducationEntry,
    ExperienceEntry,
    LanguageEntry,
    PartialProfile,
    ProjectEntry,
    RecordEntry,
    SourceRef,
    UnifiedProfile,
)

logger = logging.getLogger(__name__)

SCALAR_FIELDS = (
    "name",
    "email",
    "phone",
    "location",
    "summary",
    "about",
    "linkedin_profile_url",
    "github_username",
)
TAG_FIELDS = ("skills", "technical_skills", "soft_skills", "interests")
SKILL_INDEX_FIELDS = ("skills", "technical_skills", "soft_skills")

# Preferred display form for common spellings, keyed by normalized spelling
SKILL_CANONICAL_NAMES: Dict[str, str] = {
    "javascript": "JavaScript",
    "js": "JavaScript",
    "typescript": "TypeScript",
    "ts": "TypeScript",
    "python": "Python",
    "python3": "Python",
    "java": "Java",
    "golang": "Go",
    "c++": "C++",
    "c#": "C#",
    "react": "React",
    "react.js": "React",
    "reactjs": "React",
    "node": "Node.js",
    "node.js": "Node.js",
    "nodejs": "Node.js",
    "vue": "Vue.js",
    "vue.js": "Vue.js",
    "next.js": "Next.js",
    "nextjs": "Next.js",
    "postgres": "PostgreSQL",
    "postgresql": "PostgreSQL",
    "mysql": "MySQL",
    "mongodb": "MongoDB",
    "sql": "SQL",
    "html": "HTML",
    "html5": "HTML",
    "css": "CSS",
    "css3": "CSS",
    "aws": "AWS",
    "gcp": "Google Cloud",
    "google cloud platform": "Google Cloud",
    "docker": "Docker",
    "kubernetes": "Kubernetes",
    "k8s": "Kubernetes",
    "git": "Git",
    "github": "GitHub",
    "graphql": "GraphQL",
    "fastapi": "FastAPI",
    "django": "Django",
    "flask": "Flask",
    "machine learning": "Machine Learning",
    "ml": "Machine Learning",
    "tensorflow": "TensorFlow",
    "pytorch": "PyTorch",
}

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_key(value: Optional[str]) -> str:
    """Case-insensitive, whitespace-normalized comparison key."""
    if not value:
        return ""
    return _WHITESPACE_RE.sub(" ", str(value)).strip().casefold()


def canonical_name(value: str, table: Dict[str, str] = SKILL_CANONICAL_NAMES) -> str:
    """Return the preferred display form of a tag (or the tag itself, trimmed)."""
    return table.get(normalize_key(value), _WHITESPACE_RE.sub(" ", value).strip())


def merge_tags(
    tag_lists: Iterable[Sequence[str]],
    table: Optional[Dict[str, str]] = SKILL_CANONICAL_NAMES,
) -> List[str]:
    """Union tag lists in order, keeping one display string per normalized value.

    The first spelling encountered wins unless the canonicalization table
    names a preferred form.
    """
    seen: Dict[str, str] = {}
    for tags in tag_lists:
        for tag in tags or []:
            display = canonical_name(tag, table) if table is not None else tag.strip()
            key = normalize_key(display)
            if key and key not in seen:
                seen[key] = display
    return list(seen.values())


def build_skill_index(
    profile: PartialProfile,
    table: Optional[Dict[str, str]] = SKILL_CANONICAL_NAMES,
) -> List[str]:
    """Flat deduplicated union of skills, technical_skills and soft_skills."""
    return merge_tags((getattr(profile, field) for field in SKILL_INDEX_FIELDS), table)


def _completeness(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, str):
        return len(value.strip())
    if isinstance(value, (list, tuple, dict)):
        return len(value)
    if isinstance(value, DatePoint):
        return value.specificity
    return 1


def pick_most_complete(values: Sequence[Any]) -> Any:
    """Most complete non-empty value; earlier (more recent) wins ties."""
    best, best_score = None, 0
    for value in values:
        score = _completeness(value)
        if score > best_score:
            best, best_score = value, score
    return best


def merge_languages(language_lists: Iterable[Sequence[LanguageEntry]]) -> List[LanguageEntry]:
    merged: Dict[str, LanguageEntry] = {}
    for entries in language_lists:
        for entry in entries or []:
            key = normalize_key(entry.language)
            if not key:
                continue
            current = merged.get(key)
            if current is None:
                merged[key] = entry.model_copy()
            elif not current.proficiency and entry.proficiency:
                current.proficiency = entry.proficiency
    return list(merged.values())


# ---------------------------------------------------------------------------
# Record lists
# ---------------------------------------------------------------------------

IdentityKey = Tuple[str, ...]


def experience_key(entry: ExperienceEntry) -> IdentityKey:
    return (normalize_key(entry.job_title), normalize_key(entry.company))


def education_key(entry: EducationEntry) -> IdentityKey:
    return (normalize_key(entry.degree), normalize_key(entry.institution))


def certification_key(entry: CertificationEntry) -> IdentityKey:
    return (normalize_key(entry.name), normalize_key(entry.issuer))


def project_key(entry: ProjectEntry) -> IdentityKey:
    return (normalize_key(entry.name),)


class RecordSpec:
    """How one record list is keyed, merged and ordered."""

    def __init__(
        self,
        model: Type[RecordEntry],
        key: Callable[[Any], IdentityKey],
        start_field: str,
        end_field: str,
        tag_fields: Tuple[str, ...] = (),
    ):
        self.model = model
        self.key = key
        self.start_field = start_field
        self.end_field = end_field
        self.tag_fields = tag_fields


RECORD_SPECS: Dict[str, RecordSpec] = {
    "experience": RecordSpec(
        ExperienceEntry, experience_key, "start_date", "end_date", ("skills",)
    ),
    "education": RecordSpec(EducationEntry, education_key, "start_date", "end_date"),
    "certifications": RecordSpec(
        CertificationEntry, certification_key, "issued_date", "expiry_date"
    ),
    "projects": RecordSpec(
        ProjectEntry, project_key, "start_date", "end_date", ("technologies",)
    ),
}


def _is_open_ended(entry: RecordEntry, spec: RecordSpec) -> bool:
    return bool(getattr(entry, "is_current", False)) or getattr(entry, spec.end_field) is None


def sort_records(records: List[RecordEntry], spec: RecordSpec) -> List[RecordEntry]:
    """Current/open-ended first, then end date descending, then start date descending.

    The sort is stable, so fully tied entries keep their input order.
    """

    def key(entry: RecordEntry) -> tuple:
        end = getattr(entry, spec.end_field)
        start = getattr(entry, spec.start_field)
        open_ended = _is_open_ended(entry, spec)
        end_key = (0, 0) if open_ended or end is None else end.sort_key()
        start_key = start.sort_key() if start is not None else (0, 0)
        # Negate so a single ascending sort gives the descending order we want
        return (
            0 if open_ended else 1,
            -end_key[0],
            -end_key[1],
            -start_key[0],
            -start_key[1],
        )

    return sorted(records, key=key)


def _resolve_date(members: List[RecordEntry], field: str) -> Optional[DatePoint]:
    """Prefer the more specific date, then the more recent source."""
    best: Optional[DatePoint] = None
    for member in members:
        value = getattr(member, field)
        if value is not None and (best is None or value.specificity > best.specificity):
            best = value
    return best


def _resolve_end(members: List[RecordEntry], spec: RecordSpec) -> Dict[str, Any]:
    """Reconcile end date and the current flag across a group.

    The most recent member that states either a "current" marker or an end
    date decides whether the entry is still ongoing. When it is closed, the
    most specific end date in the same year is kept, falling back to the
    most recent one.
    """
    has_current = "is_current" in spec.model.model_fields
    resolved: Dict[str, Any] = {spec.end_field: None}
    if has_current:
        resolved["is_current"] = False

    claims = [
        (has_current and bool(getattr(member, "is_current", False)), getattr(member, spec.end_field))
        for member in members
    ]
    claims = [(current, end) for current, end in claims if current or end is not None]
    if not claims:
        return resolved

    latest_current, latest_end = claims[0]
    if latest_current:
        resolved["is_current"] = True
        return resolved

    best = latest_end
    for current, end in claims[1:]:
        if (
            not current
            and end is not None
            and end.year == latest_end.year
            and end.specificity > best.specificity
        ):
            best = end
    resolved[spec.end_field] = best
    return resolved


def merge_record_group(members: List[RecordEntry], spec: RecordSpec) -> RecordEntry:
    """Merge records that share an identity key, resolving each field independently."""
    if len(members) == 1:
        return members[0].model_copy(deep=True)

    values: Dict[str, Any] = {}
    date_fields = {spec.start_field, spec.end_field, "is_current"}
    for field in spec.model.model_fields:
        if field in date_fields or field == "source":
            continue
        if field in spec.tag_fields:
            values[field] = merge_tags(getattr(m, field) for m in members)
        else:
            values[field] = pick_most_complete([getattr(m, field) for m in members])

    values[spec.start_field] = _resolve_date(members, spec.start_field)
    values.update(_resolve_end(members, spec))

    provenance = []
    for member in members:
        if member.source and member.source not in provenance:
            provenance.append(member.source)
    values["source"] = "+".join(provenance) or None

    return spec.model.model_validate(
        {k: v.model_dump() if isinstance(v, BaseModel) else v for k, v in values.items()}
    )


def merge_records(record_lists: Iterable[Sequence[RecordEntry]], spec: RecordSpec) -> List[RecordEntry]:
    """Group by identity key, merge each group, then sort.

    Records whose identity key is entirely empty cannot be matched with
    anything and are kept as their own group.
    """
    groups: Dict[Any, List[RecordEntry]] = {}
    for records in record_lists:
        for record in records or []:
            key = spec.key(record)
            if not any(key):
                key = ("__unkeyed__", len(groups))
            groups.setdefault(key, []).append(record)

    merged = [merge_record_group(members, spec) for members in groups.values()]
    return sort_records(merged, spec)


def backfill_provenance(
    records: List[RecordEntry],
    reference: Sequence[RecordEntry],
    spec: RecordSpec,
    fallback: Optional[str],
) -> None:
    """Give every untagged record the provenance of its reference match.

    A record matches a reference record with the same identity key; records
    with no match take ``fallback``.
    """
    known = {spec.key(r): r.source for r in reference if r.source and any(spec.key(r))}
    for record in records:
        if not record.source:
            record.source = known.get(spec.key(record)) or fallback


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ProfileMerger:
    """Deterministic rule engine implementing the multi-source merge contract."""

    def __init__(self, canonical_names: Optional[Dict[str, str]] = None):
        self.canonical_names = (
            SKILL_CANONICAL_NAMES if canonical_names is None else canonical_names
        )

    def merge(
        self,
        profiles: Sequence[PartialProfile],
        sources: Optional[Sequence[SourceRef]] = None,
        updated_at: Optional[datetime] = None,
    ) -> UnifiedProfile:
        """Merge Partial Profiles ordered most-recent-source-first.

        Args:
            profiles: One Partial Profile per source, most recent first
            sources: Source tracking entries to attach (same order)
            updated_at: Timestamp for the unified profile

        Returns:
            The Unified Profile
        """
        values: Dict[str, Any] = {}
        for field in SCALAR_FIELDS:
            values[field] = pick_most_complete([getattr(p, field) for p in profiles])
        for field in TAG_FIELDS:
            values[field] = merge_tags(
                (getattr(p, field) for p in profiles), self.canonical_names
            )
        values["personal_website_urls"] = merge_tags(
            (p.personal_website_urls for p in profiles), table=None
        )
        values["languages"] = merge_languages(p.languages for p in profiles)
        for field, spec in RECORD_SPECS.items():
            values[field] = merge_records((getattr(p, field) for p in profiles), spec)

        unified = UnifiedProfile(
            **values,
            sources=list(sources or []),
            updated_at=updated_at,
        )
        logger.info(
            f"Merged {len(profiles)} sources: {len(unified.experience)} experience, "
            f"{len(unified.education)} education, {len(unified.projects)} projects, "
            f"{len(self.skill_index(unified))} skills"
        )
        return unified

    def reconcile(self, candidate: PartialProfile, baseline: UnifiedProfile) -> UnifiedProfile:
        """Normalize a resolver-produced profile and backfill it from the baseline.

        ``candidate`` comes from an external resolver and has already passed
        schema validation. It is re-normalized under the same tag and record
        rules, and any field it leaves empty takes the deterministic
        baseline's value, so no source value is lost. Records the resolver
        returns without provenance take it from the matching baseline record.
        """
        values: Dict[str, Any] = {}
        for field in SCALAR_FIELDS:
            values[field] = getattr(candidate, field) or getattr(baseline, field)
        for field in TAG_FIELDS:
            values[field] = merge_tags([getattr(candidate, field)], self.canonical_names) or list(
                getattr(baseline, field)
            )
        values["personal_website_urls"] = merge_tags(
            [candidate.personal_website_urls], table=None
        ) or list(baseline.personal_website_urls)
        values["languages"] = merge_languages([candidate.languages]) or list(baseline.languages)
        fallback_source = "+".join(dict.fromkeys(ref.type for ref in baseline.sources)) or None
        for field, spec in RECORD_SPECS.items():
            records = merge_records([getattr(candidate, field)], spec)
            if records:
                backfill_provenance(records, getattr(baseline, field), spec, fallback_source)
            values[field] = records or list(getattr(baseline, field))

        return UnifiedProfile(
            **values,
            sources=list(baseline.sources),
            updated_at=baseline.updated_at,
        )

    def skill_index(self, profile: PartialProfile) -> List[str]:
        """Skill index under this merger's canonicalization table."""
        return build_skill_index(profile, self.canonical_names)
