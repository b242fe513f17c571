"""Escaping for text placed into dashboard HTML.

Two contexts:
  escape_html  - element text and attribute values
  script_json  - a JSON literal inlined into a <script> block
"""

import json

_HTML_ESCAPES = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#39;",
    "`": "&#96;",
}

_HTML_TABLE = str.maketrans(_HTML_ESCAPES)

# Applied in order; every replacement is a valid escape inside a JS string.
_SCRIPT_ESCAPES = (
    ("</", "<\\/"),
    ("<!--", "\\u003c!--"),
    ("`", "\\u0060"),
    ("${", "\\u0024{"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)


def escape_html(value) -> str:
    if value is None:
        return ""
    return str(value).translate(_HTML_TABLE)


def escape_for_script(text: str) -> str:
    """Neutralise sequences that could end or re-enter a script block."""
    for needle, replacement in _SCRIPT_ESCAPES:
        text = text.replace(needle, replacement)
    return text


def script_json(value) -> str:
    return escape_for_script(json.dumps(value, ensure_ascii=False))
