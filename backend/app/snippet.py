"""HTML snippet truncation that keeps the result well-formed."""
import re

MAX_SNIPPET_LENGTH = 1500

# Comments are matched first so tag-like text inside them is skipped;
# a comment match has no tag name.
TAG_PATTERN = re.compile(r"<!--[\s\S]*?-->|<(/?)([A-Za-z][\w:-]*)[^>]*>")

# Elements that never take a closing tag
VOID_ELEMENTS = {
    "area", "base", "br", "col", "embed", "hr", "img", "input",
    "link", "meta", "param", "source", "track", "wbr",
}


def truncate_snippet(snippet: str, max_length: int = MAX_SNIPPET_LENGTH) -> str:
    """
    Cut ``snippet`` to ``max_length`` characters, drop a trailing partial
    tag or unterminated comment, then close every element left open,
    innermost first.

    The result is at most ``max_length`` plus the appended closing tags.
    """
    if len(snippet) <= max_length:
        return snippet

    truncated = snippet[:max_length]

    # Cut landed inside a comment: drop the whole comment
    comment_start = truncated.rfind("<!--")
    if comment_start > truncated.rfind("-->"):
        truncated = truncated[:comment_start]

    # Cut landed inside a tag: back up to before it
    last_open = truncated.rfind("<")
    if last_open > truncated.rfind(">"):
        truncated = truncated[:last_open]

    open_tags: list[str] = []
    for match in TAG_PATTERN.finditer(truncated):
        if match.group(2) is None:
            continue
        is_closing = match.group(1) == "/"
        name = match.group(2).lower()
        if is_closing:
            # A closer implicitly closes anything opened inside it;
            # closers with no matching opener are ignored
            if name in open_tags:
                while open_tags.pop() != name:
                    pass
        elif not match.group(0).endswith("/>") and name not in VOID_ELEMENTS:
            open_tags.append(name)

    while open_tags:
        truncated += f"</{open_tags.pop()}>"

    return truncated
