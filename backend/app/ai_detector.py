"""
Gemini side of detection: prompt construction, the model call, and the
parse-and-validate boundary for whatever text comes back.

Nothing from the model leaves this module without passing through
AIDetectionResponse; anything that doesn't fit raises AIResponseError and
the caller falls back to pattern matching.
"""

import json
from typing import Optional

from pydantic import ValidationError

from app.config import Settings
from app.image_utils import data_url_to_bytes
from app.log_utils import log_event, log_error
from app.models import AIDetectionResponse


class AIResponseError(Exception):
    """The model answered, but not with usable JSON."""


# ============================================================
# Prompt
# ============================================================

DETECTION_PROMPT = """You are an expert at detecting authentication components on websites by analyzing both visual layout and HTML structure.

URL: {url}

TASK: Analyze this page and identify ALL authentication methods present. For each component found, provide a Playwright locator that extracts the exact HTML.

AUTHENTICATION TYPES TO DETECT:

1. **traditional** - Login forms with username/email + password fields
   - Look for: <form> with password input, email/username input

2. **oauth** - Social login buttons (OAuth/SSO providers)
   - Look for: Buttons/links for Google, Facebook, GitHub, Twitter, Microsoft, Apple, LinkedIn, Amazon, etc.
   - List ALL providers you see (scan the entire page)
   - OAuth is ONLY sign-in through an EXTERNAL provider ("Sign in with Google", "Continue with GitHub")
   - A site's own "Sign in" button is NOT oauth

3. **passwordless** - Authentication without a password
   - Methods: magic-link, otp, email-verification, passkey, webauthn, sms
   - Look for: "Send magic link", one-time code inputs, "Continue with passkey", WebAuthn buttons

LOCATOR GUIDELINES:
- Prefer visible text over CSS classes (classes change): `button:has-text("Continue with Google")`
- For forms: `form:has(input[type="password"])`
- Attributes are fine when stable: `[data-provider="google"]`, `[aria-label*="login"]`
- Several OAuth providers in one container: give ONE locator for the parent container,
  e.g. `div.social-login` or `div:has(> button:has-text("Google"))`
- If the container is unclear, give a locator for the FIRST provider only.
  Do NOT chain several :has() filters for different providers.
- If unsure, still give your best guess. A fallback will handle misses.

REQUIRED JSON OUTPUT FORMAT:

{{
  "found": true,
  "components": [
    {{
      "type": "traditional",
      "details": {{
        "fields": ["email", "password"],
        "locatorHint": "form:has(input[type='password'])",
        "note": "Main login form with email and password"
      }}
    }},
    {{
      "type": "oauth",
      "details": {{
        "providers": ["google", "apple", "github"],
        "locatorHint": "div.auth-providers",
        "note": "Container with all OAuth buttons"
      }}
    }},
    {{
      "type": "passwordless",
      "details": {{
        "method": "passkey",
        "locatorHint": "button:has-text('Continue with passkey')",
        "note": "WebAuthn passkey button"
      }}
    }}
  ]
}}

If NO authentication is found, return:
{{
  "found": false,
  "components": []
}}
{visual_context}
HTML TO ANALYZE:
{html}

Return ONLY valid JSON:"""

VISUAL_CONTEXT = """
VISUAL CONTEXT: A screenshot of the page is attached. Use it to understand the layout and to spot auth components that are not obvious from the HTML alone.
"""


def build_prompt(url: str, html: str, has_screenshot: bool) -> str:
    return DETECTION_PROMPT.format(
        url=url,
        html=html,
        visual_context=VISUAL_CONTEXT if has_screenshot else "",
    )


def build_content_parts(screenshot: Optional[str], prompt: str) -> list:
    """Screenshot (if any) as inline JPEG first, then the prompt text."""
    from google.genai import types

    parts = []
    if screenshot:
        parts.append(types.Part.from_bytes(data=data_url_to_bytes(screenshot), mime_type="image/jpeg"))
    parts.append(types.Part.from_text(text=prompt))
    return parts


# ============================================================
# Model call
# ============================================================

async def request_model_text(parts: list, settings: Settings) -> str:
    """One generate_content round trip. The caller owns the timeout."""
    from google import genai
    from google.genai import types

    client = genai.Client(api_key=settings.gemini_api_key)
    response = await client.aio.models.generate_content(
        model=settings.gemini_model,
        contents=[types.Content(role="user", parts=parts)],
        config=types.GenerateContentConfig(temperature=0.1),
    )
    return response.text or ""


# ============================================================
# Response parsing
# ============================================================

def find_json_object(text: str) -> Optional[str]:
    """First balanced {...} in ``text``, ignoring braces inside strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # Unbalanced from here; maybe a later brace starts a complete object
        start = text.find("{", start + 1)
    return None


def _copy_string(text: str, i: int, out: list) -> int:
    """Copy the string literal starting at ``text[i] == '"'``; return the index after it."""
    n = len(text)
    out.append(text[i])
    i += 1
    while i < n:
        ch = text[i]
        out.append(ch)
        if ch == "\\" and i + 1 < n:
            out.append(text[i + 1])
            i += 2
            continue
        i += 1
        if ch == '"':
            break
    return i


def strip_json_comments(text: str) -> str:
    out = []
    i = 0
    n = len(text)
    while i < n:
        if text[i] == '"':
            i = _copy_string(text, i, out)
        elif text.startswith("//", i):
            end = text.find("\n", i)
            i = n if end == -1 else end
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = n if end == -1 else end + 2
        else:
            out.append(text[i])
            i += 1
    return "".join(out)


def strip_trailing_commas(text: str) -> str:
    out = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == '"':
            i = _copy_string(text, i, out)
            continue
        if ch == ",":
            j = i + 1
            while j < n and text[j].isspace():
                j += 1
            if j < n and text[j] in "}]":
                i += 1
                continue
        out.append(ch)
        i += 1
    return "".join(out)


def clean_json(text: str) -> str:
    """
    Drop // and /* */ comments, then trailing commas, both outside strings.
    Comments go first: ``"a": 1, // note`` before ``}`` only becomes a
    trailing comma once the comment is gone.
    """
    return strip_trailing_commas(strip_json_comments(text))


def parse_ai_response(response_text: str, request_id: str) -> AIDetectionResponse:
    log_event(request_id, "AI_RESPONSE_PARSE_START", responseLength=len(response_text))

    block = find_json_object(response_text)
    if block is None:
        raise AIResponseError("No JSON found in AI response")

    try:
        payload = json.loads(clean_json(block))
        parsed = AIDetectionResponse.model_validate(payload)
    except (json.JSONDecodeError, ValidationError) as e:
        log_error(request_id, "AI_RESPONSE_PARSE_ERROR", e, responsePreview=response_text[:200])
        raise AIResponseError(f"Failed to parse AI response: {e}") from e

    log_event(request_id, "AI_RESPONSE_PARSE_SUCCESS", componentsFound=len(parsed.components))
    return parsed
