"""Structured output of the search-spec generator.

SearchSpecLLMOutput is the subset of SearchSpec the model produces; identity
fields are attached afterwards by build_search_spec.
"""

from typing import Any

from pydantic import ConfigDict

from src.core.schemas import SearchSpecFields


class SearchSpecLLMOutput(SearchSpecFields):
    model_config = ConfigDict(frozen=True, extra="forbid")


def _weighted_keyword(max_items: int) -> dict[str, Any]:
    return {
        "type": "array",
        "maxItems": max_items,
        "items": {
            "type": "object",
            "properties": {
                "keyword": {"type": "string"},
                "weight": {"type": "integer"},
            },
            "required": ["keyword", "weight"],
            "additionalProperties": False,
        },
    }


def _nullable_number() -> dict[str, Any]:
    return {"type": ["number", "null"]}


# Strict structured-output schemas require every property to be listed in
# "required"; optional values are expressed as nullable types instead.
SEARCH_SPEC_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "title_keywords": _weighted_keyword(10),
        "skill_keywords": _weighted_keyword(20),
        "negative_keywords": {"type": "array", "maxItems": 10, "items": {"type": "string"}},
        "locations": {
            "type": "array",
            "maxItems": 5,
            "items": {
                "type": "object",
                "properties": {
                    "country_code": {"type": ["string", "null"]},
                    "city": {"type": ["string", "null"]},
                    "region": {"type": ["string", "null"]},
                },
                "required": ["country_code", "city", "region"],
                "additionalProperties": False,
            },
        },
        "seniority_levels": {
            "type": "array",
            "maxItems": 6,
            "items": {
                "type": "string",
                "enum": ["entry", "junior", "mid", "senior", "lead", "principal"],
            },
        },
        "remote_preference": {
            "type": "string",
            "enum": ["remote_only", "hybrid", "onsite", "flexible"],
        },
        "contract_types": {
            "type": "array",
            "maxItems": 4,
            "items": {
                "type": "string",
                "enum": ["freelance", "contract", "full_time", "part_time"],
            },
        },
        "hourly_min": _nullable_number(),
        "hourly_max": _nullable_number(),
        "fixed_budget_min": _nullable_number(),
    },
    "required": [
        "title_keywords",
        "skill_keywords",
        "negative_keywords",
        "locations",
        "seniority_levels",
        "remote_preference",
        "contract_types",
        "hourly_min",
        "hourly_max",
        "fixed_budget_min",
    ],
    "additionalProperties": False,
}
