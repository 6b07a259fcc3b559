import json
import logging
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote

from app.core.errors import MalformedBody
from app.core.resolver import find_placeholders, resolve
from app.models import QueryParam, RequestTemplate, ResolvedRequest

logger = logging.getLogger(__name__)

# Characters encodeURIComponent leaves alone besides alphanumerics.
_URI_COMPONENT_SAFE = "-_.!~*'()"


def _encode_component(value: str) -> str:
    return quote(value, safe=_URI_COMPONENT_SAFE)


def build_query(params: List[QueryParam], env_vars: Mapping[str, Any]) -> str:
    pairs = []
    for p in params:
        if not (p.key or "").strip():
            continue
        key = resolve(p.key, env_vars)
        value = resolve(p.value or "", env_vars)
        pairs.append(f"{_encode_component(key)}={_encode_component(value)}")
    return "&".join(pairs)


def build_url(url: str, params: List[QueryParam], env_vars: Mapping[str, Any]) -> str:
    final_url = resolve(url or "", env_vars)
    query = build_query(params, env_vars)
    if not query:
        return final_url
    joiner = "&" if "?" in final_url else "?"
    return f"{final_url}{joiner}{query}"


def _reject_constant(name: str):
    # NaN, Infinity and -Infinity are not JSON
    raise ValueError(f"Invalid JSON constant: {name}")


def _loads(text: str) -> Any:
    return json.loads(text, parse_constant=_reject_constant)


def _parse_json_headers(text: str, env_vars: Mapping[str, Any]) -> Optional[Dict[str, str]]:
    try:
        parsed = _loads(resolve(text, env_vars))
    except ValueError:
        return None
    if not isinstance(parsed, dict):
        return None
    return {str(k): v if isinstance(v, str) else json.dumps(v) for k, v in parsed.items()}


def _header_lines(text: str):
    """(key, raw value) pairs of "Key: Value" lines; keys are never resolved."""
    for line in text.split("\n"):
        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip()
        if not key:
            continue
        yield key, value.strip()


def _parse_header_lines(text: str, env_vars: Mapping[str, Any]) -> Dict[str, str]:
    return {key: resolve(value, env_vars) for key, value in _header_lines(text)}


def parse_headers(text: str, env_vars: Mapping[str, Any]) -> Dict[str, str]:
    """
    Headers are either a JSON object or "Key: Value" lines.
    JSON is tried first; if it does not yield an object the whole text is
    re-read as lines. Results from the two paths are never merged.
    """
    if not (text or "").strip():
        return {}
    headers = _parse_json_headers(text, env_vars)
    if headers is not None:
        return headers
    logger.debug("Headers are not a JSON object, falling back to line format")
    return _parse_header_lines(text, env_vars)


def parse_body(method: str, text: str, env_vars: Mapping[str, Any]) -> Any:
    if method == "GET" or not (text or "").strip():
        return None
    try:
        return _loads(resolve(text, env_vars))
    except ValueError as ex:
        raise MalformedBody() from ex


def build_request(template: RequestTemplate, env_vars: Optional[Mapping[str, Any]] = None) -> ResolvedRequest:
    """
    Resolve every field of template against one variables snapshot.
    Raises MalformedBody when the resolved body is not JSON; nothing else
    in the template can make the build fail.
    """
    env_vars = dict(env_vars or {})
    return ResolvedRequest(
        final_url=build_url(template.url, template.params, env_vars),
        method=template.method,
        headers=parse_headers(template.headers_text, env_vars),
        body=parse_body(template.method, template.body_text, env_vars),
    )


def unresolved_names(template: RequestTemplate, env_vars: Mapping[str, Any]) -> List[str]:
    """Placeholders in template that have no value in env_vars."""
    texts = [template.url]
    if (template.headers_text or "").strip():
        if _parse_json_headers(template.headers_text, env_vars) is not None:
            texts.append(template.headers_text)
        else:
            texts.extend(value for _, value in _header_lines(template.headers_text))
    if template.method != "GET":
        texts.append(template.body_text)
    for p in template.params:
        texts.extend([p.key, p.value])
    missing: List[str] = []
    for text in texts:
        for name in find_placeholders(text):
            if name not in env_vars and name not in missing:
                missing.append(name)
    return missing
