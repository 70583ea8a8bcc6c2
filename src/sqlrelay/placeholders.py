import re

from sqlrelay.errors import UnsupportedPlaceholderError

_TOKEN_REGEX = re.compile(
    r"""
    (?P<squote>'(?:[^']|'')*') |
    (?P<dquote>"(?:[^"]|"")*") |
    (?P<backtick>`(?:[^`]|``)*`) |
    (?P<unterminated>['"`][\s\S]*) |
    (?P<line_comment>--[^\r\n]*) |
    (?P<block_comment>/\*[\s\S]*?(?:\*/|\Z)) |
    (?P<system_variable>@@[A-Za-z_][\w.]*) |
    (?P<named>@(?P<name>[A-Za-z_]\w*)) |
    (?P<qmark>\?)
    """,
    re.VERBOSE,
)

# Same patterns SQLAlchemy's text() uses to find ':name' binds and to unescape
# '\:name' when compiling.
_TEXT_BIND_REGEX = re.compile(r"(?<![:\w\\]):(\w+)(?!:)")
_TEXT_ESCAPED_REGEX = re.compile(r"\\(:\w*)(?![:\w])")


def _tokens(template: str) -> list[re.Match[str]]:
    matches = []
    for match in _TOKEN_REGEX.finditer(template):
        if match.lastgroup == "qmark":
            raise UnsupportedPlaceholderError(
                f"'?' parameters are not supported (at offset {match.start()} "
                f"in command '{template}')"
            )
        matches.append(match)
    return matches


def placeholders(template: str) -> list[str]:
    """Return the '@name' placeholders of a template in order of occurrence.

    Quoted spans, comments and '@@' system variables are skipped. A bare '?'
    outside those spans raises UnsupportedPlaceholderError.
    """
    return [
        "@" + match["name"]
        for match in _tokens(template)
        if match.lastgroup == "named"
    ]


def _escape_text(chunk: str) -> str:
    # a literal '\:x' must survive the unescape as '\:x', not ':x'
    chunk = _TEXT_ESCAPED_REGEX.sub(lambda m: "\\" + m.group(0), chunk)
    return _TEXT_BIND_REGEX.sub(lambda m: "\\" + m.group(0), chunk)


def render(template: str) -> str:
    """Rewrite '@name' placeholders into SQLAlchemy text() ':name' binds."""
    parts: list[str] = []
    position = 0
    for match in _tokens(template):
        parts.append(_escape_text(template[position : match.start()]))
        if match.lastgroup == "named":
            bind = ":" + match["name"]
            before = template[match.start() - 1] if match.start() > 0 else ""
            after = template[match.end() : match.end() + 1]
            if after == ":":
                # keeps '@id::int' casts from swallowing the bind name
                bind = "(" + bind + ")"
            if before and (before.isalnum() or before in "_:\\"):
                bind = " " + bind
            parts.append(bind)
        else:
            parts.append(_escape_text(match.group(0)))
        position = match.end()
    parts.append(_escape_text(template[position:]))
    return "".join(parts)
