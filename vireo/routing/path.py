"""
Path pattern compilation for Vireo routing.

Turns a route pattern into an anchored regular expression and the ordered
list of keys its capturing groups map to.

Supported string syntax:
    /users/:id            named segment
    /users/:id?           optional named segment
    /users/:id(\\d+)      named segment with a custom capture
    /files/:path*         named segment followed by any number of segments
    /archive/:name.:ext   format segment
    /assets/*             wildcard, captured under a numeric key
    /ab?cd                other regex characters pass through
"""

import re
from typing import List, NamedTuple, Sequence, Tuple, Union

PathPattern = Union[str, "re.Pattern[str]", Sequence[Union[str, "re.Pattern[str]"]]]

_PARAM_RE = re.compile(r"(/)?(\.)?:(\w+)(\(.*?\))?(\*)?(\?)?")


class PathKey(NamedTuple):
    """A capturing group of a compiled path. Unnamed groups get numeric names."""

    name: Union[str, int]
    optional: bool = False


def compile_path(
    path: PathPattern,
    sensitive: bool = False,
    strict: bool = False,
    end: bool = True,
) -> Tuple["re.Pattern[str]", List[PathKey]]:
    """
    Compile a path pattern.

    Args:
        path: String pattern, compiled regex, or a list of either
        sensitive: Match case-sensitively
        strict: Do not accept an optional trailing slash
        end: Require the pattern to match the whole path; when False the
             pattern matches a prefix ending at "/" or at the end of the path

    Returns:
        Tuple of (compiled regex, ordered keys)
    """
    flags = 0 if sensitive else re.IGNORECASE

    if isinstance(path, re.Pattern):
        return path, _regex_keys(path)

    if isinstance(path, (list, tuple)):
        keys: List[PathKey] = []
        sources = []
        for item in path:
            if isinstance(item, re.Pattern):
                sources.append(item.pattern)
                keys.extend(_regex_keys(item))
            else:
                sources.append(_string_source(item, keys, strict, end))
        return re.compile("(?:" + "|".join(sources) + ")", flags), keys

    if not isinstance(path, str):
        raise TypeError(f"Path must be a string, regex or list, got {type(path).__name__}")

    keys = []
    source = _string_source(path, keys, strict, end)
    return re.compile(source, flags), keys


def _regex_keys(pattern: "re.Pattern[str]") -> List[PathKey]:
    """Keys for a user-supplied regex: named groups keep their names."""
    names = {index: name for name, index in pattern.groupindex.items()}
    keys = []
    counter = 0
    for index in range(1, pattern.groups + 1):
        if index in names:
            keys.append(PathKey(names[index]))
        else:
            keys.append(PathKey(counter))
            counter += 1
    return keys


def _string_source(path: str, keys: List[PathKey], strict: bool, end: bool) -> str:
    parts = ["^"]
    counter = 0
    position = 0
    length = len(path)

    while position < length:
        match = _PARAM_RE.match(path, position)
        if match:
            source, has_star = _param_source(match)
            parts.append(source)
            keys.append(PathKey(match.group(3), bool(match.group(6))))
            if has_star:
                keys.append(PathKey(counter))
                counter += 1
            position = match.end()
            continue

        char = path[position]
        if char == "\\":
            # escaped character passes through untouched
            parts.append(path[position : position + 2])
            position += 2
            continue

        if char == "*":
            parts.append("(.*)")
            keys.append(PathKey(counter))
            counter += 1
        elif char == "(" and not path.startswith("(?", position):
            parts.append("(")
            keys.append(PathKey(counter))
            counter += 1
        elif char in "/.":
            parts.append("\\" + char)
        else:
            parts.append(char)
        position += 1

    if not strict:
        parts.append("?" if path.endswith("/") else "\\/?")

    source = "".join(parts)

    if end:
        source += "$"
    elif not source.endswith("/"):
        source += "(?=\\/|$)"

    return source


def _param_source(match: "re.Match[str]") -> Tuple[str, bool]:
    """Regex source for one ``/:name`` token."""
    slash = "\\/" if match.group(1) else ""
    fmt = "\\." if match.group(2) else ""
    capture = match.group(4) or "([^\\/" + fmt + "]+?)"
    star = bool(match.group(5))
    optional = match.group(6) or ""

    source = (
        ("" if optional else slash)
        + "(?:"
        + fmt
        + (slash if optional else "")
        + capture
        + ("((?:[\\/" + fmt + "].+?)?)" if star else "")
        + ")"
        + optional
    )
    return source, star
