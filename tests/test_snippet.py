"""Tests for snippet truncation."""

from app.snippet import TAG_PATTERN, VOID_ELEMENTS, truncate_snippet


def open_elements(html: str) -> list[str]:
    """Elements still open at the end of ``html``; [] means balanced."""
    stack = []
    for match in TAG_PATTERN.finditer(html):
        if match.group(2) is None:
            continue
        name = match.group(2).lower()
        if match.group(1) == "/":
            assert stack and stack[-1] == name, f"unexpected </{name}> in {html!r}"
            stack.pop()
        elif not match.group(0).endswith("/>") and name not in VOID_ELEMENTS:
            stack.append(name)
    return stack


def test_short_snippet_unchanged():
    html = '<form><input type="password"></form>'
    assert truncate_snippet(html, 1500) == html


def test_closes_open_elements_innermost_first():
    html = "<div><form><label>" + "x" * 500 + "</label></form></div>"
    result = truncate_snippet(html, 100)
    assert result.endswith("</label></form></div>")
    assert open_elements(result) == []


def test_length_bound():
    html = "<div><ul>" + "<li><a href='#'>Sign in</a></li>" * 200 + "</ul></div>"
    result = truncate_snippet(html, 300)
    closers = "</a></li></ul></div>"
    assert len(result) <= 300 + len(closers)
    assert open_elements(result) == []


def test_partial_tag_at_cut_is_dropped():
    html = '<div>' + 'a' * 10 + '<button class="oauth-google">Google</button></div>'
    # Cut lands inside the <button ...> tag
    result = truncate_snippet(html, 22)
    assert "<button" not in result
    assert result == "<div>" + "a" * 10 + "</div>"


def test_void_and_self_closing_elements_are_not_closed():
    html = '<form><input type="email"><br><img src="x.png"/><span/>' + "y" * 300 + "</form>"
    result = truncate_snippet(html, 120)
    assert result.endswith("</form>")
    assert "</input>" not in result
    assert "</br>" not in result
    assert "</img>" not in result
    assert "</span>" not in result


def test_closer_pops_elements_opened_inside_it():
    # <p> left unclosed inside the div; </div> closes both
    html = "<section><div><p>text</div>" + "z" * 300 + "</section>"
    result = truncate_snippet(html, 60)
    assert result.endswith("</section>")
    assert "</p>" not in result


def test_unmatched_closer_ignored():
    html = "</span><div>" + "q" * 300 + "</div>"
    result = truncate_snippet(html, 50)
    assert result.endswith("</div>")
    assert result.count("</div>") == 1


def test_tags_inside_comments_are_ignored():
    html = "<div><!-- <span> wrapper --><p>" + "x" * 100 + "</p></div>"
    result = truncate_snippet(html, 50)
    assert result.endswith("</p></div>")
    assert "</span>" not in result
    assert open_elements(result) == []


def test_cut_inside_comment_drops_it():
    html = "<section><!-- <form> legacy login form kept for reference --></section>" + "w" * 100
    result = truncate_snippet(html, 30)
    assert result == "<section></section>"
