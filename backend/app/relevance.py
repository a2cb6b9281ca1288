"""
Shrink a full page down to the parts worth showing the model.

Whole pages run to hundreds of KB; the auth UI is a few forms and buttons.
Patterns are tried in priority order, matches are de-duplicated in
first-seen order and the result is capped. If nothing matches we send the
start of <body> instead.
"""
import re
from dataclasses import dataclass
from typing import Callable, Optional

from app.log_utils import log_event, log_warning

AUTH_BUTTON_VOCABULARY = re.compile(
    r"sign|login|auth|continue|google|facebook|github|twitter|apple|microsoft|linkedin|amazon|passkey|magic",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class ExtractionPattern:
    name: str
    regex: re.Pattern
    keep: Optional[Callable[[str], bool]] = None


HTML_EXTRACTION_PATTERNS = [
    ExtractionPattern(
        "password-forms",
        re.compile(
            r"<form[^>]*>[\s\S]{0,2000}?<input[^>]*type=[\"']password[\"'][^>]*>[\s\S]{0,2000}?</form>",
            re.IGNORECASE,
        ),
    ),
    ExtractionPattern(
        "auth-forms",
        re.compile(
            r"<form[^>]*(?:login|signin|sign-in|signup|sign-up|auth|register)[^>]*>[\s\S]{0,1500}?</form>",
            re.IGNORECASE,
        ),
    ),
    ExtractionPattern(
        "auth-buttons",
        re.compile(r"<(?:button|a)\b[^>]*>[\s\S]{0,500}?</(?:button|a)>", re.IGNORECASE),
        keep=lambda match: bool(AUTH_BUTTON_VOCABULARY.search(match)),
    ),
    ExtractionPattern(
        "auth-divs",
        re.compile(
            r"<div[^>]*(?:class|id)=[\"'][^\"']*(?:login|signin|sign-in|auth|authentication|oauth|social)"
            r"[^\"']*[\"'][^>]*>[\s\S]{0,1500}?</div>",
            re.IGNORECASE,
        ),
    ),
    ExtractionPattern(
        "webauthn-passkey",
        re.compile(r"<webauthn-subtle[^>]*>[\s\S]{0,800}?</webauthn-subtle>", re.IGNORECASE),
    ),
]

BODY_PATTERN = re.compile(r"<body[^>]*>([\s\S]*)</body>", re.IGNORECASE)


def extract_relevant_html(html: str, request_id: str, max_size: int = 15000, min_size: int = 20) -> str:
    log_event(request_id, "HTML_EXTRACTION_START", originalSize=f"{round(len(html) / 1024)}KB")

    sections: list[str] = []
    for pattern in HTML_EXTRACTION_PATTERNS:
        matches = [m.group(0) for m in pattern.regex.finditer(html)]
        if pattern.keep:
            matches = [m for m in matches if pattern.keep(m)]
        if matches:
            sections.extend(matches)
            log_event(request_id, "HTML_EXTRACTION_FOUND", pattern=pattern.name, count=len(matches))

    relevant = "\n\n".join(dict.fromkeys(sections))

    if len(relevant) < min_size:
        log_warning(request_id, "HTML_EXTRACTION_MINIMAL", "Using body fallback")
        body = BODY_PATTERN.search(html)
        source = body.group(1) if body and body.group(1) else html
        return source[:max_size]

    relevant = relevant[:max_size]
    log_event(request_id, "HTML_EXTRACTION_SUCCESS",
              extractedSize=f"{round(len(relevant) / 1024)}KB",
              sectionsFound=len(sections),
              compressionRatio=f"{round(len(relevant) / max(len(html), 1) * 100)}%")
    return relevant
