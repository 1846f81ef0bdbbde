"""Pydantic models for the canonical profile schema.

A Partial Profile has the same shape regardless of which artifact it was
extracted from. The Unified Profile adds source tracking and a timestamp.
Both are validated at every service and store boundary.
"""

import re
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

SCHEMA_VERSION = "1.0"

SOURCE_TYPES = (
    "resume",
    "linkedin",
    "github",
    "personal_website",
    "project_document",
    "portfolio",
    "other_document",
    "manual_text",
)

PROCESSING_STATUSES = ("pending", "processing", "completed", "failed")

_MONTHS = {
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}
_OPEN_ENDED = {"present", "current", "now", "ongoing", "today"}
_YEAR_RE = re.compile(r"\b(19|20)\d{2}\b")
_ISO_MONTH_RE = re.compile(r"\b((?:19|20)\d{2})[-/.](\d{1,2})\b")


def _month_number(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, int):
        return value if 1 <= value <= 12 else None
    text = str(value).strip().lower()
    if text.isdigit():
        month = int(text)
        return month if 1 <= month <= 12 else None
    return _MONTHS.get(text[:3])


def _clean_str_list(value: Any) -> Any:
    """Drop empty entries and stringify scalars in tag lists."""
    if value is None:
        return []
    if isinstance(value, list):
        cleaned = []
        for item in value:
            if item is None:
                continue
            if isinstance(item, (str, int, float)):
                text = str(item).strip()
                if text:
                    cleaned.append(text)
            else:
                cleaned.append(item)
        return cleaned
    return value


class SchemaModel(BaseModel):
    """Base for schema models: unknown keys from the model output are ignored."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


class DatePoint(SchemaModel):
    """A date at year or year+month granularity."""

    year: int
    month: Optional[int] = None

    @field_validator("month", mode="before")
    @classmethod
    def _coerce_month(cls, value: Any) -> Optional[int]:
        return _month_number(value)

    @property
    def specificity(self) -> int:
        """2 for year+month, 1 for year only."""
        return 2 if self.month else 1

    def sort_key(self) -> tuple:
        return (self.year, self.month or 0)

    @classmethod
    def coerce(cls, value: Any) -> Optional["DatePoint"]:
        """Build a DatePoint from the loose shapes models emit.

        Accepts ``{"year": 2020, "month": "January"}``, ``"2021-05"``,
        ``"Jan 2020"``, ISO timestamps and bare years. Open-ended markers
        ("Present") and text without a year yield None.
        """
        if value is None or isinstance(value, DatePoint):
            return value
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            return cls(year=value) if 1900 <= value <= 2100 else None
        if isinstance(value, dict):
            year = value.get("year")
            if year in (None, ""):
                return None
            try:
                year = int(year)
            except (TypeError, ValueError):
                return None
            return cls(year=year, month=_month_number(value.get("month")))
        text = str(value).strip()
        if not text or text.lower() in _OPEN_ENDED:
            return None
        iso = _ISO_MONTH_RE.search(text)
        if iso:
            return cls(year=int(iso.group(1)), month=_month_number(iso.group(2)))
        year_match = _YEAR_RE.search(text)
        if not year_match:
            return None
        month = None
        for token in re.split(r"[\s,./-]+", text[: year_match.start()]):
            if token and not token.isdigit():
                month = _month_number(token) or month
        return cls(year=int(year_match.group(0)), month=month)


class LanguageEntry(SchemaModel):
    """A spoken language with optional proficiency."""

    language: str
    proficiency: Optional[str] = None


class RecordEntry(SchemaModel):
    """Common fields of every record list entry."""

    description: Optional[str] = None
    source: Optional[str] = Field(
        default=None, description="Provenance tag: the source type this entry came from"
    )

    @field_validator("start_date", "end_date", mode="before", check_fields=False)
    @classmethod
    def _coerce_dates(cls, value: Any) -> Optional[DatePoint]:
        return DatePoint.coerce(value)


class ExperienceEntry(RecordEntry):
    job_title: Optional[str] = None
    company: Optional[str] = None
    location: Optional[str] = None
    duration: Optional[str] = None
    start_date: Optional[DatePoint] = None
    end_date: Optional[DatePoint] = None
    is_current: bool = False
    skills: List[str] = Field(default_factory=list)

    @field_validator("skills", mode="before")
    @classmethod
    def _clean_skills(cls, value: Any) -> Any:
        return _clean_str_list(value)

    @field_validator("is_current", mode="before")
    @classmethod
    def _coerce_current(cls, value: Any) -> bool:
        return bool(value) if value is not None else False

    @model_validator(mode="before")
    @classmethod
    def _mark_open_ended(cls, data: Any) -> Any:
        # "Present" as an end date means the role is current
        if isinstance(data, dict):
            end = data.get("end_date")
            if isinstance(end, str) and end.strip().lower() in _OPEN_ENDED:
                data = {**data, "is_current": True}
        return data


class EducationEntry(RecordEntry):
    institution: Optional[str] = None
    degree: Optional[str] = None
    field_of_study: Optional[str] = None
    duration: Optional[str] = None
    start_date: Optional[DatePoint] = None
    end_date: Optional[DatePoint] = None
    gpa: Optional[str] = None

    @field_validator("gpa", mode="before")
    @classmethod
    def _gpa_to_str(cls, value: Any) -> Optional[str]:
        return None if value in (None, "") else str(value)


class CertificationEntry(RecordEntry):
    name: Optional[str] = None
    issuer: Optional[str] = None
    issued_date: Optional[DatePoint] = None
    expiry_date: Optional[DatePoint] = None
    credential_url: Optional[str] = None

    @field_validator("issued_date", "expiry_date", mode="before")
    @classmethod
    def _coerce_cert_dates(cls, value: Any) -> Optional[DatePoint]:
        return DatePoint.coerce(value)


class ProjectEntry(RecordEntry):
    name: Optional[str] = None
    technologies: List[str] = Field(default_factory=list)
    url: Optional[str] = None
    duration: Optional[str] = None
    start_date: Optional[DatePoint] = None
    end_date: Optional[DatePoint] = None

    @field_validator("technologies", mode="before")
    @classmethod
    def _clean_technologies(cls, value: Any) -> Any:
        return _clean_str_list(value)


class PartialProfile(SchemaModel):
    """Normalized extraction result from one artifact.

    Any field not found in the source stays empty; nothing is fabricated.
    """

    # Identity
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None

    # Narrative
    summary: Optional[str] = None
    about: Optional[str] = None

    # Tag lists
    skills: List[str] = Field(default_factory=list)
    technical_skills: List[str] = Field(default_factory=list)
    soft_skills: List[str] = Field(default_factory=list)
    interests: List[str] = Field(default_factory=list)
    languages: List[LanguageEntry] = Field(default_factory=list)

    # Record lists
    experience: List[ExperienceEntry] = Field(default_factory=list)
    education: List[EducationEntry] = Field(default_factory=list)
    certifications: List[CertificationEntry] = Field(default_factory=list)
    projects: List[ProjectEntry] = Field(default_factory=list)

    # Links
    linkedin_profile_url: Optional[str] = None
    github_username: Optional[str] = None
    personal_website_urls: List[str] = Field(default_factory=list)

    @field_validator(
        "name",
        "email",
        "phone",
        "location",
        "summary",
        "about",
        "linkedin_profile_url",
        "github_username",
        mode="before",
    )
    @classmethod
    def _empty_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator(
        "skills",
        "technical_skills",
        "soft_skills",
        "interests",
        "personal_website_urls",
        mode="before",
    )
    @classmethod
    def _clean_tags(cls, value: Any) -> Any:
        return _clean_str_list(value)

    @field_validator("languages", mode="before")
    @classmethod
    def _coerce_languages(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [
                {"language": item} if isinstance(item, str) else item
                for item in _clean_str_list(value)
            ]
        return [] if value is None else value

    @field_validator(
        "experience", "education", "certifications", "projects", mode="before"
    )
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    def record_lists(self) -> dict:
        return {
            "experience": self.experience,
            "education": self.education,
            "certifications": self.certifications,
            "projects": self.projects,
        }

    def stamp_source(self, source_type: str) -> "PartialProfile":
        """Tag every record that has no provenance with ``source_type``."""
        for records in self.record_lists().values():
            for record in records:
                if not record.source:
                    record.source = source_type
        return self


class SourceRef(BaseModel):
    """Source tracking entry on the Unified Profile."""

    type: str
    identifier: Optional[str] = None
    created_at: Optional[datetime] = None


class UnifiedProfile(PartialProfile):
    """The single merged profile persisted per user."""

    schema_version: str = SCHEMA_VERSION
    sources: List[SourceRef] = Field(default_factory=list)
    updated_at: Optional[datetime] = None
