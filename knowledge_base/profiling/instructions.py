"""Role-specific instruction schemas sent to the transformation service.

Each role's instructions describe the expected output shape (the Partial
Profile schema). The service is untrusted: its output is always parsed and
validated independently.
"""

ROLE_RESUME = "resume"
ROLE_LINKEDIN = "linkedin"
ROLE_GITHUB = "github"
ROLE_PROJECT_DOCUMENT = "project_document"
ROLE_MERGE = "merge"

_PROFILE_SHAPE = """{
  "name": "Full Name",
  "email": "email@example.com",
  "phone": "+1234567890",
  "location": "City, Country",
  "summary": "Professional summary or headline",
  "about": "Longer about/bio section",
  "skills": ["skill1", "skill2"],
  "technical_skills": ["tech1", "tech2"],
  "soft_skills": ["soft1", "soft2"],
  "interests": ["interest1"],
  "languages": [{"language": "English", "proficiency": "Native"}],
  "experience": [
    {
      "job_title": "Title",
      "company": "Company",
      "location": "City",
      "duration": "Jan 2020 - Present",
      "description": "What was done in this role",
      "start_date": {"year": 2020, "month": 1},
      "end_date": {"year": 2023, "month": 12},
      "is_current": false,
      "skills": ["skill1"]
    }
  ],
  "education": [
    {
      "institution": "University",
      "degree": "Bachelor of Science",
      "field_of_study": "Computer Science",
      "duration": "2016 - 2020",
      "start_date": {"year": 2016},
      "end_date": {"year": 2020},
      "gpa": "3.8"
    }
  ],
  "certifications": [
    {
      "name": "Certification Name",
      "issuer": "Issuer",
      "issued_date": {"year": 2021, "month": 5},
      "expiry_date": {"year": 2024}
    }
  ],
  "projects": [
    {
      "name": "Project Name",
      "description": "What the project does and its outcomes",
      "technologies": ["tech1"],
      "url": "https://...",
      "start_date": {"year": 2021},
      "end_date": {"year": 2022}
    }
  ],
  "linkedin_profile_url": "https://linkedin.com/in/...",
  "github_username": "username",
  "personal_website_urls": ["https://..."]
}"""

_OUTPUT_RULES = """
CRITICAL:
- Return ONLY valid JSON with exactly this structure, no markdown, no code blocks.
- Omit or leave empty ("" / []) any field that is not present in the input.
  Never invent names, dates, employers or contact details.
- Dates use {"year": YYYY, "month": 1-12}; leave out the month when unknown.
  A current position has "is_current": true and no end_date."""

RESUME_INSTRUCTIONS = f"""Extract resume information as JSON with this exact structure:
{_PROFILE_SHAPE}

Guidelines:
- Always include the phone number if it exists anywhere in the resume (look for
  phone, mobile, tel, telephone, contact number, etc.)
- Include duration/date ranges for experience, education, and projects when available
- Separate technical skills from soft skills where possible
{_OUTPUT_RULES}"""

LINKEDIN_INSTRUCTIONS = f"""Extract LinkedIn profile information and convert it to a structured knowledge base format.

You will receive LinkedIn profile data including basic information (name, headline,
location, about), experience history, education, certifications, skills and languages.

Extract and structure this information as JSON:
{_PROFILE_SHAPE}

Guidelines:
- Use the headline as summary and the about section as about
- Separate technical skills from soft skills where possible
- Include all experience entries with detailed descriptions
- Mark current positions with is_current: true
- Extract skills from both the skills section AND from experience descriptions
{_OUTPUT_RULES}"""

GITHUB_INSTRUCTIONS = f"""Extract GitHub profile information and convert it to a structured knowledge base format.

You will receive the GitHub user profile and a list of repositories with their metadata.

Extract and structure this information as JSON:
{_PROFILE_SHAPE}

Guidelines:
- Extract skills from repository languages and topics (most frequently used first)
- Convert the top 10 non-fork repositories to projects; exclude .github.io repositories
- Use repository created_at / updated_at as project start_date / end_date
- Use the bio as summary and about; put the blog URL in personal_website_urls
- Extract interests from topics and repository descriptions
{_OUTPUT_RULES}"""

PROJECT_DOCUMENT_INSTRUCTIONS = f"""Extract project information from technical documents, reports, and portfolios.

Focus on project details (name, description, purpose, outcomes), the technical stack,
key achievements, skills demonstrated, and the timeline if mentioned.

Return JSON with this exact structure:
{_PROFILE_SHAPE}

Guidelines:
- If the document describes paid work or an internship, put it in "experience"
- If the document is about a personal, academic or side project, put it in "projects"
- Extract ALL technical skills and technologies mentioned
- Include URLs, repository links or demo links if present
{_OUTPUT_RULES}"""

MERGE_INSTRUCTIONS = f"""You are a career data analyst merging profile information from multiple
sources into a single unified profile.

The sources are listed most recent first. Apply these rules exactly:

Scalar fields (name, email, phone, location, summary, about, linkedin_profile_url,
github_username): pick the most complete value across sources; on a tie prefer the
more recent source.

Tag lists (skills, technical_skills, soft_skills, interests, languages): take the
union, treating values as equal when they match case-insensitively after collapsing
whitespace. Keep the first spelling seen in source order, except prefer standard
names (e.g. "JavaScript" over "javascript").

Record lists:
- experience entries are the same item when job_title and company match
- education entries are the same item when degree and institution match
- certifications are the same item when name and issuer match
- projects are the same item when name matches
Merge each group field by field, keeping the most complete non-empty value. For
dates prefer the more specific value, then the more recent source. Never merge
entries whose identity differs. Keep each entry's "source" tag.

Sort every record list by end_date descending with current/open-ended entries first;
break ties by start_date descending.

Never drop a value that appears in some source if the merged field would otherwise
be empty.

Return JSON with this exact structure:
{_PROFILE_SHAPE}
{_OUTPUT_RULES}"""

ROLE_INSTRUCTIONS = {
    ROLE_RESUME: RESUME_INSTRUCTIONS,
    ROLE_LINKEDIN: LINKEDIN_INSTRUCTIONS,
    ROLE_GITHUB: GITHUB_INSTRUCTIONS,
    ROLE_PROJECT_DOCUMENT: PROJECT_DOCUMENT_INSTRUCTIONS,
    ROLE_MERGE: MERGE_INSTRUCTIONS,
}

USER_PROMPT_TEMPLATES = {
    ROLE_RESUME: "Parse this resume:\n\n{content}",
    ROLE_LINKEDIN: "Parse this LinkedIn profile data:\n\n{content}",
    ROLE_GITHUB: "Parse this GitHub profile data:\n\n{content}",
    ROLE_PROJECT_DOCUMENT: "Extract project information from this document:\n\n{content}",
    ROLE_MERGE: "Here are the profile sources to merge:\n\n{content}\n\n"
    "Merge these into a single unified profile.",
}


def get_instructions(role: str) -> str:
    """Return the instruction schema for ``role``."""
    try:
        return ROLE_INSTRUCTIONS[role]
    except KeyError:
        raise ValueError(f"Unknown extraction role: {role}") from None


def build_user_prompt(role: str, content: str) -> str:
    """Render the user prompt carrying the acquired content for ``role``."""
    if role not in USER_PROMPT_TEMPLATES:
        raise ValueError(f"Unknown extraction role: {role}")
    return USER_PROMPT_TEMPLATES[role].format(content=content)
