"""Tests for prompt building, relevant-HTML extraction and AI response parsing."""

import json

import pytest

from app.ai_detector import (
    AIResponseError,
    build_prompt,
    clean_json,
    find_json_object,
    parse_ai_response,
)
from app.models import AuthType
from app.relevance import extract_relevant_html

REQ = "REQ-test"


class TestFindJsonObject:

    def test_object_inside_prose_and_fences(self):
        text = 'Here is what I found:\n```json\n{"found": true, "components": []}\n```\nHope that helps!'
        assert json.loads(find_json_object(text)) == {"found": True, "components": []}

    def test_braces_inside_strings_do_not_count(self):
        text = '{"note": "closing } brace", "nested": {"a": "{"}}'
        assert find_json_object(text) == text

    def test_skips_unbalanced_leading_brace(self):
        text = 'Use { like this. {"found": false, "components": []}'
        assert json.loads(find_json_object(text))["found"] is False

    def test_no_json(self):
        assert find_json_object("I could not analyze this page.") is None


class TestCleanJson:

    def test_removes_comments_and_trailing_commas(self):
        text = '{\n  "a": 1, // first\n  /* block */ "b": [1, 2,],\n}'
        assert json.loads(clean_json(text)) == {"a": 1, "b": [1, 2]}

    def test_leaves_strings_alone(self):
        text = '{"url": "https://example.com/login", "note": "a, } b /* c */"}'
        assert json.loads(clean_json(text)) == {
            "url": "https://example.com/login",
            "note": "a, } b /* c */",
        }

    def test_comma_before_comment_is_trailing(self):
        text = '{"a": [1, 2, /* last */ ], "b": {"c": "form", // the form\n}, }'
        assert json.loads(clean_json(text)) == {"a": [1, 2], "b": {"c": "form"}}

    def test_escaped_quote_inside_string(self):
        text = '{"note": "say \\"hi\\", // not a comment",}'
        assert json.loads(clean_json(text)) == {"note": 'say "hi", // not a comment'}


class TestParseAiResponse:

    def test_parses_components(self):
        text = """Sure! Here's the analysis:
        {
          "found": true,
          "components": [
            {
              "type": "traditional",
              "details": {
                "fields": ["email", "password"],
                "locatorHint": "form:has(input[type='password'])", // login form
              },
            },
            {"type": "OAuth", "details": {"providers": ["google", "github"], "playwrightSelector": "div.social"}},
          ]
        }"""
        parsed = parse_ai_response(text, REQ)

        assert [c.type for c in parsed.components] == [AuthType.TRADITIONAL, AuthType.OAUTH]
        assert parsed.components[0].details.locator_hint == "form:has(input[type='password'])"
        assert parsed.components[1].details.providers == ["google", "github"]
        assert parsed.components[1].details.locator_hint == "div.social"

    def test_comment_after_last_property(self):
        text = '{"found": true, "components": [{"type": "traditional", "details": {"locatorHint": "form", // the form\n}}]}'
        parsed = parse_ai_response(text, REQ)
        assert parsed.components[0].details.locator_hint == "form"

    def test_empty_result(self):
        parsed = parse_ai_response('{"found": false, "components": []}', REQ)
        assert parsed.found is False
        assert parsed.components == []

    def test_no_json_raises(self):
        with pytest.raises(AIResponseError):
            parse_ai_response("Sorry, I can't help with that.", REQ)

    def test_malformed_json_raises(self):
        with pytest.raises(AIResponseError):
            parse_ai_response('{"found": true, "components": [ {"type": } ]}', REQ)

    def test_unknown_component_type_raises(self):
        with pytest.raises(AIResponseError):
            parse_ai_response('{"found": true, "components": [{"type": "biometric"}]}', REQ)


class TestExtractRelevantHtml:

    PAGE = """<html><head><title>Shop</title></head><body>
    <nav><ul><li>Products</li><li>Pricing</li></ul></nav>
    <form action="/session"><input type="email" name="email"><input type="password" name="password"></form>
    <button class="google-btn">Continue with Google</button>
    <button class="cart">Add to cart</button>
    <footer>Copyright</footer>
    </body></html>"""

    def test_keeps_auth_sections_only(self):
        relevant = extract_relevant_html(self.PAGE, REQ)
        assert 'type="password"' in relevant
        assert "Continue with Google" in relevant
        assert "Add to cart" not in relevant
        assert "Pricing" not in relevant

    def test_sections_are_deduplicated(self):
        page = '<form class="login-form"><input type="password"></form>'
        relevant = extract_relevant_html(page, REQ)
        # matched by both password-forms and auth-forms
        assert relevant.count("<form") == 1

    def test_falls_back_to_body(self):
        page = "<html><body><p>Nothing to see here</p></body></html>"
        assert extract_relevant_html(page, REQ) == "<p>Nothing to see here</p>"

    def test_output_capped(self):
        page = "<body>" + "".join(f"<button>Sign in {i}</button>" for i in range(2000)) + "</body>"
        assert len(extract_relevant_html(page, REQ, max_size=500)) == 500


class TestBuildPrompt:

    def test_includes_url_and_html(self):
        prompt = build_prompt("https://example.com/login", "<form>X</form>", has_screenshot=False)
        assert "URL: https://example.com/login" in prompt
        assert "<form>X</form>" in prompt
        assert "VISUAL CONTEXT" not in prompt
        assert '"locatorHint"' in prompt

    def test_visual_context_with_screenshot(self):
        prompt = build_prompt("https://example.com", "<form></form>", has_screenshot=True)
        assert "VISUAL CONTEXT" in prompt
