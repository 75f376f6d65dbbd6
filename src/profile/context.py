"""Plain-text profile summary passed to the ranker and used for embeddings."""

from src.profile.schema import NormalizedProfile

_EMPTY_CONTEXT = "No profile data available."


def _fmt_number(value: float) -> str:
    return f"{value:g}"


def build_user_context(profile: NormalizedProfile) -> str:
    """Summarize the profile as "Key: value" lines.

    Lines with no data are omitted; an empty profile yields a fixed
    placeholder so prompts never carry an empty section.
    """
    parts: list[str] = []
    if profile.display_name:
        parts.append(f"Name: {profile.display_name}")
    if profile.headline:
        parts.append(f"Headline: {profile.headline}")
    if profile.about:
        parts.append(f"About: {profile.about}")

    skills = profile.all_skills
    if skills:
        rendered = [
            f"{s.display_name} ({_fmt_number(s.years)}y)" if s.years else s.display_name
            for s in skills
        ]
        parts.append(f"Skills: {', '.join(rendered)}")

    if profile.experiences:
        exp = "; ".join(
            f"{e.title} at {e.company}" if e.company else e.title
            for e in profile.experiences[:5]
        )
        parts.append(f"Experience: {exp}")

    rate = profile.preferences.hourly_rate
    if rate.min or rate.max:
        low = _fmt_number(rate.min) if rate.min is not None else "?"
        high = _fmt_number(rate.max) if rate.max is not None else "?"
        parts.append(f"Rate: {rate.currency} {low}–{high}/hr")

    return "\n".join(parts) if parts else _EMPTY_CONTEXT
