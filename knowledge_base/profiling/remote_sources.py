"""Remote profile acquisition from third-party network-data providers."""

import logging
import re
import time
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import requests

from knowledge_base.config import (
    APIFY_LINKEDIN_URL,
    GITHUB_API_URL,
    GITHUB_MAX_REPOS,
    REMOTE_FETCH_TIMEOUT_SEC,
)
from knowledge_base.errors import AcquisitionError, InputError

logger = logging.getLogger(__name__)

_LINKEDIN_HOST_RE = re.compile(r"linkedin\.com", re.IGNORECASE)
_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)
_GITHUB_USER_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]{0,38})$")


def normalize_linkedin_url(raw: str) -> str:
    """Normalize a LinkedIn username, profile path or URL into a full https URL.

    Users paste "jdoe", "@jdoe", "/in/jdoe" or "linkedin.com/in/jdoe";
    all become ``https://www.linkedin.com/in/jdoe``.

    Raises:
        InputError: If the result is not a valid URL
    """
    value = (raw or "").strip()
    if not value:
        raise InputError("Missing LinkedIn URL or sourceId")

    if not _LINKEDIN_HOST_RE.search(value):
        username = value.lstrip("@").strip("/")
        if username.lower().startswith("in/"):
            username = username[3:]
        normalized = f"https://www.linkedin.com/in/{username}"
    elif not _SCHEME_RE.match(value):
        normalized = f"https://{value}"
    else:
        normalized = value

    parsed = urlparse(normalized)
    if not parsed.netloc or " " in normalized:
        raise InputError(f"Invalid LinkedIn URL: {raw}")
    return normalized


def extract_github_username(raw: str) -> str:
    """Return the GitHub username from a bare handle or any github.com URL.

    Raises:
        InputError: If no valid username can be found
    """
    value = (raw or "").strip()
    if "github.com" in value.lower():
        if not _SCHEME_RE.match(value):
            value = f"https://{value}"
        path = urlparse(value).path.strip("/")
        value = path.split("/")[0] if path else ""
    value = value.lstrip("@")
    if not _GITHUB_USER_RE.match(value):
        raise InputError(f"Invalid GitHub username or URL: {raw}")
    return value


def fetch_linkedin_profile(url: str, api_token: str) -> Dict[str, Any]:
    """Fetch a LinkedIn profile snapshot through the Apify actor.

    Args:
        url: Normalized LinkedIn profile URL
        api_token: Apify API token

    Returns:
        The first profile record returned by the provider

    Raises:
        AcquisitionError: On missing token, non-success response or empty payload
    """
    if not api_token:
        raise AcquisitionError("APIFY_API_TOKEN is not configured")

    logger.info(f"Starting LinkedIn fetch for: {url}")
    started = time.monotonic()
    try:
        response = requests.post(
            APIFY_LINKEDIN_URL,
            params={"token": api_token},
            json={"includeEmail": True, "username": url},
            timeout=REMOTE_FETCH_TIMEOUT_SEC,
        )
    except requests.RequestException as e:
        logger.error(f"LinkedIn fetch failed for {url}: {e}")
        raise AcquisitionError(f"LinkedIn fetch failed: {e}") from e

    if not response.ok:
        raise AcquisitionError(f"LinkedIn fetch failed: {response.status_code}")

    try:
        data = response.json()
    except ValueError as e:
        raise AcquisitionError("LinkedIn API returned a non-JSON response") from e

    logger.info(f"LinkedIn fetch completed in {time.monotonic() - started:.1f}s")

    if not isinstance(data, list) or len(data) == 0:
        raise AcquisitionError("No data returned from LinkedIn API")
    return data[0]


def linkedin_extraction_payload(snapshot: Dict[str, Any]) -> Dict[str, Any]:
    """Select the sections of a LinkedIn snapshot that are sent for extraction."""
    return {
        "basic_info": snapshot.get("basic_info"),
        "experience": snapshot.get("experience"),
        "education": snapshot.get("education"),
        "certifications": snapshot.get("certifications"),
        "skills": snapshot.get("skills"),
        "languages": snapshot.get("languages"),
    }


def _github_headers(token: str) -> Dict[str, str]:
    headers = {
        "Accept": "application/vnd.github+json",
        "User-Agent": "knowledge-base-pipeline",
        "X-GitHub-Api-Version": "2022-11-28",
    }
    if token:
        # Fine-grained tokens use Bearer, classic tokens use "token"
        scheme = "Bearer" if token.startswith("github_pat_") else "token"
        headers["Authorization"] = f"{scheme} {token}"
    return headers


def _github_error(username: str, response: requests.Response) -> AcquisitionError:
    if response.status_code == 404:
        return AcquisitionError(f"GitHub user '{username}' not found")
    if response.status_code == 403:
        remaining = response.headers.get("x-ratelimit-remaining")
        if remaining == "0":
            reset = response.headers.get("x-ratelimit-reset")
            reset_at = (
                datetime.utcfromtimestamp(int(reset)).strftime("%H:%M:%S UTC")
                if reset and reset.isdigit()
                else "unknown"
            )
            return AcquisitionError(
                f"GitHub API rate limit exceeded. Resets at {reset_at}. "
                "Set GITHUB_PERSONAL_TOKEN to increase the limit."
            )
        return AcquisitionError("GitHub API access forbidden (403)")
    return AcquisitionError(
        f"GitHub API failed ({response.status_code}): {response.text[:200]}"
    )


def fetch_github_profile(
    username: str,
    token: Optional[str] = None,
    max_repos: int = GITHUB_MAX_REPOS,
) -> Dict[str, Any]:
    """Fetch a GitHub user profile and their most recently updated repositories.

    A failed repository listing is tolerated (the profile alone is still
    useful); a failed profile lookup is fatal.

    Returns:
        ``{"profile": {...}, "repos": [...]}`` trimmed to the fields used for extraction

    Raises:
        AcquisitionError: If the profile request fails or returns nothing
    """
    headers = _github_headers(token or "")
    try:
        response = requests.get(
            f"{GITHUB_API_URL}/users/{username}",
            headers=headers,
            timeout=REMOTE_FETCH_TIMEOUT_SEC,
        )
    except requests.RequestException as e:
        raise AcquisitionError(f"GitHub fetch failed: {e}") from e

    if not response.ok:
        logger.error(
            "GitHub API error for %s: status=%s remaining=%s",
            username,
            response.status_code,
            response.headers.get("x-ratelimit-remaining"),
        )
        raise _github_error(username, response)

    profile = response.json()
    if not isinstance(profile, dict) or not profile:
        raise AcquisitionError("No data returned from GitHub API")

    repos: List[Dict[str, Any]] = []
    try:
        repos_response = requests.get(
            f"{GITHUB_API_URL}/users/{username}/repos",
            headers=headers,
            params={"sort": "updated", "per_page": max_repos},
            timeout=REMOTE_FETCH_TIMEOUT_SEC,
        )
        if repos_response.ok and isinstance(repos_response.json(), list):
            repos = repos_response.json()
        else:
            logger.warning(
                f"GitHub repository listing failed for {username}: {repos_response.status_code}"
            )
    except requests.RequestException as e:
        logger.warning(f"GitHub repository listing failed for {username}: {e}")

    return {
        "profile": {
            "name": profile.get("name"),
            "login": profile.get("login"),
            "email": profile.get("email"),
            "bio": profile.get("bio"),
            "location": profile.get("location"),
            "blog": profile.get("blog"),
            "company": profile.get("company"),
            "public_repos": profile.get("public_repos"),
            "followers": profile.get("followers"),
        },
        "repos": [
            {
                "name": repo.get("name"),
                "description": repo.get("description"),
                "language": repo.get("language"),
                "topics": repo.get("topics") or [],
                "stars": repo.get("stargazers_count"),
                "forks": repo.get("forks_count"),
                "url": repo.get("html_url"),
                "created_at": repo.get("created_at"),
                "updated_at": repo.get("updated_at"),
                "is_fork": repo.get("fork"),
            }
            for repo in repos[:max_repos]
        ],
    }
