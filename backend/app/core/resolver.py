import re
from typing import Any, List, Mapping, Optional

# {{ name }} where name is word chars, dots or hyphens. Dotted names are
# looked up as flat keys: {{user.id}} reads variables["user.id"].
PLACEHOLDER = re.compile(r"\{\{\s*([\w.\-]+)\s*\}\}", re.ASCII)


def resolve(text: Any, variables: Optional[Mapping[str, Any]] = None) -> Any:
    """
    Replace every {{name}} in text with variables[name].
    Unknown names become the empty string. Values are not re-scanned, so a
    value that itself contains {{...}} is inserted literally.
    Non-string input is returned as-is.
    """
    if not isinstance(text, str):
        return text
    variables = variables or {}

    def _sub(match: re.Match) -> str:
        name = match.group(1)
        if name in variables:
            value = variables[name]
            return "" if value is None else str(value)
        return ""

    return PLACEHOLDER.sub(_sub, text)


def find_placeholders(text: Any) -> List[str]:
    """Names referenced by text, in first-seen order, without duplicates."""
    if not isinstance(text, str):
        return []
    seen: List[str] = []
    for name in PLACEHOLDER.findall(text):
        if name not in seen:
            seen.append(name)
    return seen
