"""Static prompt for search-spec generation.

The system prompt never changes per user. Profile data travels only in the
user message, serialized as JSON, so identical profiles produce identical
requests.
"""

import json
from typing import Any

from src.profile.schema import NormalizedProfile

SEARCH_SPEC_SYSTEM_PROMPT = (
    "You are a job search specification generator. Your task is to analyze a "
    "user's professional profile and generate optimal search parameters for "
    "finding relevant job opportunities.\n\n"
    "INPUT: You will receive a normalized professional profile containing:\n"
    "- Skills (primary and secondary, with proficiency levels)\n"
    "- Work experience (titles, companies, durations)\n"
    "- Seniority level (entry/junior/mid/senior/lead/principal)\n"
    "- Preferences (platforms, rates, remote preference, contract type)\n\n"
    "OUTPUT: Generate a JSON object with job search parameters.\n\n"
    "RULES:\n"
    "1. title_keywords: Generate 3-8 realistic job titles the user would search for\n"
    "   - Base on their experience titles and skill combination\n"
    "   - Weight 8-10 for exact matches, 5-7 for related roles, 3-4 for stretch roles\n\n"
    "2. skill_keywords: Extract 5-15 technical skill keywords\n"
    "   - Include all primary skills with high weights (7-10)\n"
    "   - Include relevant secondary skills with medium weights (4-6)\n\n"
    "3. negative_keywords: Suggest 3-7 terms to exclude\n"
    '   - Common: "unpaid", "volunteer", "internship" (unless entry level)\n'
    '   - "equity only", "exposure", "for experience"\n'
    "   - Adjust based on seniority (entry level may want internships)\n\n"
    "4. seniority_levels: Select 1-3 appropriate levels\n"
    "   - Include user's inferred level\n"
    "   - Include one level above if senior enough\n"
    "   - Include one level below only if junior\n\n"
    "5. Preserve user preferences:\n"
    "   - remote_preference from profile\n"
    "   - contract_type mapped to contract_types array\n"
    "   - Budget ranges from profile preferences\n\n"
    "OUTPUT FORMAT: Strict JSON only. No markdown, no explanations."
)


def format_user_message(profile_json: str) -> str:
    return f"Generate search specification for this profile:\n\n{profile_json}"


def serialize_profile(profile: NormalizedProfile) -> str:
    """Serialize only the fields the generator needs, to keep prompts small."""
    prefs = profile.preferences
    relevant: dict[str, Any] = {
        "display_name": profile.display_name,
        "total_experience_months": profile.total_experience_months,
        "inferred_seniority": profile.inferred_seniority,
        "primary_skills": [
            {"name": s.display_name, "level": s.level, "years": s.years}
            for s in profile.primary_skills
        ],
        "secondary_skills": [
            {"name": s.display_name, "level": s.level} for s in profile.secondary_skills[:10]
        ],
        "experiences": [
            {
                "title": e.title,
                "company": e.company,
                "duration_months": e.duration_months,
                "is_current": e.is_current,
            }
            for e in profile.experiences[:5]
        ],
        "title_keywords": profile.title_keywords,
        "preferences": {
            "platforms": prefs.platforms,
            "hourly_rate": prefs.hourly_rate.model_dump(),
            "fixed_budget": prefs.fixed_budget.model_dump(),
            "remote_preference": prefs.remote_preference,
            "contract_type": prefs.contract_type,
            "tightness": prefs.tightness,
        },
    }
    return json.dumps(relevant, indent=2)
