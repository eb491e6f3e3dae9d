# contact_api/services/threats.py
"""Injection signatures shared by form validation and the request security chain.

Matches are reported with the offending pattern so they can be logged, but
callers must never echo the pattern or the matched text back to the client.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Iterator, List, Optional, Pattern

MARKUP_PATTERNS: List[Pattern[str]] = [
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
    re.compile(r"\bon\w+\s*=", re.IGNORECASE),
    re.compile(r"<iframe", re.IGNORECASE),
    re.compile(r"<object", re.IGNORECASE),
    re.compile(r"<embed", re.IGNORECASE),
    re.compile(r"data:text/html", re.IGNORECASE),
    re.compile(r"eval\s*\(", re.IGNORECASE),
    re.compile(r"document\.", re.IGNORECASE),
    re.compile(r"window\.", re.IGNORECASE),
]

SQL_PATTERNS: List[Pattern[str]] = [
    re.compile(r"\bunion\b.*\bselect\b", re.IGNORECASE | re.DOTALL),
    re.compile(r"\bdrop\s+table\b", re.IGNORECASE),
    re.compile(r"\binsert\s+into\b", re.IGNORECASE),
    re.compile(r"\bdelete\s+from\b", re.IGNORECASE),
]

# Signatures checked against the decoded request URL.
URL_PATTERNS: List[Pattern[str]] = [
    re.compile(r"(\bunion\b.*\bselect\b)|(\bselect\b.*\bunion\b)", re.IGNORECASE),
    re.compile(r"(\bdrop\s+table\b)|(\bdelete\s+from\b)|(\binsert\s+into\b)", re.IGNORECASE),
    re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
]

# Scanners and scripted clients. Only scored together with a URL match.
ATTACK_TOOL_AGENTS: List[Pattern[str]] = [
    re.compile(r"sqlmap", re.IGNORECASE),
    re.compile(r"nikto", re.IGNORECASE),
    re.compile(r"nmap", re.IGNORECASE),
    re.compile(r"burpsuite", re.IGNORECASE),
    re.compile(r"python-requests", re.IGNORECASE),
    re.compile(r"curl", re.IGNORECASE),
    re.compile(r"wget", re.IGNORECASE),
]

BOT_AGENTS: List[Pattern[str]] = [
    re.compile(r"bot", re.IGNORECASE),
    re.compile(r"crawler", re.IGNORECASE),
    re.compile(r"spider", re.IGNORECASE),
    re.compile(r"scraper", re.IGNORECASE),
]

ALLOWED_BOT_AGENTS: List[Pattern[str]] = [
    re.compile(r"googlebot", re.IGNORECASE),
    re.compile(r"bingbot", re.IGNORECASE),
    re.compile(r"slackbot", re.IGNORECASE),
    re.compile(r"facebookexternalhit", re.IGNORECASE),
]

MAX_PAYLOAD_CHARS = 10_000

XSS = "xss"
SQL_INJECTION = "sql_injection"
OVERSIZED = "oversized_payload"


@dataclass(frozen=True)
class ThreatMatch:
    kind: str
    pattern: str
    field: Optional[str] = None


def match_markup(value: str) -> Optional[Pattern[str]]:
    for pattern in MARKUP_PATTERNS:
        if pattern.search(value):
            return pattern
    return None


def match_sql(value: str) -> Optional[Pattern[str]]:
    for pattern in SQL_PATTERNS:
        if pattern.search(value):
            return pattern
    return None


def contains_markup(value: Optional[str]) -> bool:
    return bool(value) and match_markup(value) is not None


def _string_leaves(data: Any) -> Iterator[tuple[str, str]]:
    # Explicit stack: nesting depth is attacker controlled.
    stack: List[tuple[str, Any]] = [("", data)]
    while stack:
        path, value = stack.pop()
        if isinstance(value, str):
            yield path, value
        elif isinstance(value, dict):
            children = [(f"{path}.{key}" if path else str(key), item) for key, item in value.items()]
            stack.extend(reversed(children))
        elif isinstance(value, list):
            stack.extend(reversed([(f"{path}[{index}]", item) for index, item in enumerate(value)]))


def scan_payload(data: Any) -> List[ThreatMatch]:
    """Walk every string leaf of a decoded JSON document."""
    matches: List[ThreatMatch] = []

    try:
        oversized = len(json.dumps(data, ensure_ascii=False)) > MAX_PAYLOAD_CHARS
    except RecursionError:
        oversized = True
    if oversized:
        matches.append(ThreatMatch(kind=OVERSIZED, pattern="max_payload_chars"))

    for field, value in _string_leaves(data):
        markup = match_markup(value)
        if markup is not None:
            matches.append(ThreatMatch(kind=XSS, pattern=markup.pattern, field=field))
        sql = match_sql(value)
        if sql is not None:
            matches.append(ThreatMatch(kind=SQL_INJECTION, pattern=sql.pattern, field=field))

    return matches


def is_attack_tool(user_agent: str) -> bool:
    return any(pattern.search(user_agent) for pattern in ATTACK_TOOL_AGENTS)


def is_disallowed_bot(user_agent: str) -> bool:
    if not any(pattern.search(user_agent) for pattern in BOT_AGENTS):
        return False
    return not any(pattern.search(user_agent) for pattern in ALLOWED_BOT_AGENTS)


URL_MATCH_SCORE = 8
ATTACK_TOOL_SCORE = 7
BLOCK_THRESHOLD = 15


@dataclass(frozen=True)
class RequestAssessment:
    threats: List[str]
    risk_score: int

    @property
    def should_block(self) -> bool:
        return self.risk_score >= BLOCK_THRESHOLD


def assess_request(url: str, user_agent: str) -> RequestAssessment:
    """Score a request from its decoded URL and user agent alone."""
    threats: List[str] = []
    score = 0

    for pattern in URL_PATTERNS:
        if pattern.search(url):
            threats.append("suspicious_url_pattern")
            score += URL_MATCH_SCORE

    if is_attack_tool(user_agent):
        threats.append("suspicious_user_agent")
        score += ATTACK_TOOL_SCORE

    return RequestAssessment(threats=threats, risk_score=min(score, 100))
