"""
Spellbook Filter Translation
----------------------------
Converts the simple ``field -> value`` filter maps accepted at the tool
boundary into Qdrant's structured filter format.

Translation rules:
  - list value                      -> match any (OR within the field)
  - dict with gt/gte/lt/lte         -> numeric range
  - any other dict                  -> exact match on the dict value
  - str / int / float / bool        -> exact match
  - None                            -> skipped

``keywords`` values are lower-cased to match how keywords are stored.

All per-field conditions are AND-ed under a single top-level ``must``.
A map whose top-level keys include ``must``, ``should`` or ``must_not`` is
treated as already structured and returned unchanged.

Translation never raises; shapes Qdrant cannot accept surface later as a
search error, which callers decorate with :func:`filter_error_message`.
"""

from typing import Any, Dict, Optional

STRUCTURED_KEYS = frozenset({"must", "should", "must_not"})
RANGE_KEYS = frozenset({"gt", "gte", "lt", "lte"})


def is_structured_filter(filter_map: Dict[str, Any]) -> bool:
    return any(key in STRUCTURED_KEYS for key in filter_map)


def _lower_keywords(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    if isinstance(value, (list, tuple, set)):
        return [v.strip().lower() if isinstance(v, str) else v for v in value]
    return value


def _condition(key: str, value: Any) -> Dict[str, Any]:
    if key == "keywords":
        # stored keywords are lower-cased on write
        value = _lower_keywords(value)
    if isinstance(value, (list, tuple, set)):
        return {"key": key, "match": {"any": list(value)}}
    if isinstance(value, dict) and any(k in RANGE_KEYS for k in value):
        return {"key": key, "range": value}
    return {"key": key, "match": {"value": value}}


def convert_filter(filter_map: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Translate a simple filter map; returns None when there is nothing to filter on."""
    if not filter_map:
        return None

    if is_structured_filter(filter_map):
        return filter_map

    conditions = [
        _condition(key, value)
        for key, value in filter_map.items()
        if value is not None
    ]
    return {"must": conditions} if conditions else None


def keyword_condition(keywords) -> Dict[str, Any]:
    """Condition matching chunks whose ``keywords`` contain any of the given words."""
    return {"key": "keywords", "match": {"any": [str(k).lower() for k in keywords]}}


def combine_with_keywords(user_filter: Optional[Dict[str, Any]], keywords) -> Dict[str, Any]:
    """AND a keyword condition onto a (possibly structured) user filter."""
    combined: Dict[str, Any] = dict(user_filter or {})
    must = combined.get("must") or []
    if isinstance(must, dict):
        must = [must]
    combined["must"] = [*must, keyword_condition(keywords)]
    return combined


FILTER_GUIDE = """
# Spellbook Filter Guide

## Simple filters (recommended)

Give plain key/value pairs; they are converted to Qdrant filters automatically.

| Filter | Meaning |
|--------|---------|
| `{"category": "system"}` | category is "system" |
| `{"importance": "high"}` | importance is "high" |
| `{"category": "system", "importance": "high"}` | both hold (AND) |

### List values (OR within a field)

| Filter | Meaning |
|--------|---------|
| `{"keywords": ["docker", "mcp"]}` | keywords contain "docker" or "mcp" |
| `{"category": ["system", "project"]}` | category is "system" or "project" |

### Ranges

| Filter | Meaning |
|--------|---------|
| `{"score": {"gte": 3, "lt": 7}}` | 3 <= score < 7 |

### Filterable fields

| Field | Type | Description |
|-------|------|-------------|
| `category` | string | category (system, project, preference, ...) |
| `topic_id` | string | topic id |
| `importance` | string | high, medium or low |
| `keywords` | string[] | keywords (stored lower-cased; filter values are lower-cased too) |
| `entities[].type` | string | entity type (person, project, technology, ...) |

## Advanced: native Qdrant format

```json
{
  "must": [
    {"key": "category", "match": {"value": "system"}}
  ],
  "should": [
    {"key": "importance", "match": {"value": "high"}},
    {"key": "importance", "match": {"value": "medium"}}
  ]
}
```

- `must`: every condition holds (AND)
- `should`: at least one holds (OR)
- `must_not`: none holds (NOT)

## Canon and Lores

`memorize`/`find` search Canon only; pass `lore` to search a Lore instead.
Canon searches never see Lore data and Lore searches never see Canon data.
""".strip()


def filter_error_message(error: str) -> str:
    return (
        f"{error}\n\n---\n"
        "Check that the filter is well formed. "
        "Call the 'filter_guide' tool for filter usage."
    )
