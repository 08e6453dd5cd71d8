"""
Argus utilities (internal helpers, carefully exposed)

Scope
- Core building blocks used across the package for consistent semantics.
- Text helpers shared by help generation and value casting.

Overview
- UnsetType / Unset
  • Singleton sentinel to represent “value not provided” without conflating with None.
  • Falsey (bool(Unset) is False), printable as "Unset", and non-subclassable.

- coalesce(value, default=None)
  • Replace Unset with a concrete default, but preserve legitimate falsey values like None/0/""/[].

- rename(callable, name) / @rename("name")
  • Assign stable __name__/__qualname__ to generated closures (actions, store bindings).

- dedent / dedent_trim / word_wrap
  • Help-text formatting.

- string_to_slice / string_to_map
  • Parse "a,b,c" and "k=v,k2=v2" (or a JSON object) into python containers.

- load_file / is_char_device
  • Read configuration text from a path or from a piped stdin.

Stability and contract
- Names not in __all__ are internal and may change without notice.
"""
import builtins
import functools
import json
import os
import re
import stat
import sys
import textwrap
from typing import final


@final
class UnsetType:
    """
    Internal sentinel type representing a value that was not provided.

    This is used when None is a legitimate user value, but the API needs a way
    to distinguish “not provided” from “provided as None”. A single instance,
    Unset, is exposed for use as the default in internal parameters.

    Characteristics
    - Boolean-false: bool(Unset) is False, but it is distinct from None and 0.
    - Printable: repr(Unset) -> "Unset" for friendly diagnostics.
    - Non-subclassable: this type is sealed; do not subclass.
    - Singleton per process: UnsetType() always yields the same instance.
    """

    def __or__(self, other, /):
        """
        Support PEP 604 unions in annotations (e.g., str | UnsetType).
        """
        try:
            return other | type(self)
        except TypeError:
            return NotImplemented

    def __ror__(self, other, /):
        """
        Support reversed PEP 604 unions when UnsetType appears on the right.
        """
        try:
            return other | type(self)
        except TypeError:
            return NotImplemented

    @functools.cache
    def __new__(cls):
        return super().__new__(cls)

    def __bool__(self):
        return False

    def __repr__(self):
        return "Unset"

    def __init_subclass__(cls, **options):
        raise TypeError("type 'UnsetType' is not an acceptable base type")


def coalesce(object, default=None, /):
    """
    Resolve an internal Unset sentinel to a concrete default.

    Falsey values like None, 0, "" or [] are preserved as-is; only Unset is
    replaced.

    Examples
    - coalesce("name", "fallback") -> "name"
    - coalesce(Unset, "fallback")  -> "fallback"
    - coalesce(None, "fallback")   -> None
    """
    return object if object is not Unset else default


def rename(*parameters):
    """
    Set a stable __name__/__qualname__ on a callable, or return a decorator
    that will do so later.

    Forms
    - rename(callable, name) -> callable
    - rename(name) -> decorator

    Notes
    - Only metadata is touched; behavior is unchanged.
    - Built-in callables are not updatable and raise TypeError.
    """
    match len(parameters):
        case 2:
            callable, name = parameters
            if not builtins.callable(callable):
                raise TypeError("rename() first argument must be callable")
            if not isinstance(name, str):
                raise TypeError("rename() second argument must be a string")
            try:
                callable.__qualname__ = name
                callable.__name__ = name
            except (AttributeError, TypeError):
                raise TypeError("rename() first argument must be a updatable callable") from None
            return callable
        case 1:
            name, = parameters
            if not isinstance(name, str):
                raise TypeError("@rename() argument must be a string")

            def wrapper(callable):
                if not builtins.callable(callable):
                    raise TypeError("@rename() must be applied to a callable")
                return rename(callable, name)

            return rename(wrapper, "rename")
        case _:
            raise TypeError("rename takes 1 to 2 arguments but %d were given" % len(parameters))


def dedent(text, /):
    """
    Remove common leading indentation; a leading newline is dropped so
    triple-quoted help strings can start on their own line.
    """
    if not isinstance(text, str):
        raise TypeError("dedent() argument must be a string")
    return textwrap.dedent(text.removeprefix("\n"))


def dedent_trim(text, characters=None, /):
    """dedent() followed by str.strip(characters)."""
    return dedent(text).strip(characters)


def word_wrap(text, indent=0, width=200, /):
    """
    Wrap text to width columns; lines after the first are indented by indent
    spaces so descriptions line up under their first line in help output.

    A width smaller than or equal to the indent disables wrapping.
    """
    if not isinstance(text, str):
        raise TypeError("word_wrap() first argument must be a string")
    if not isinstance(indent, int) or isinstance(indent, bool) or indent < 0:
        raise ValueError("word_wrap() indent must be a non-negative integer")
    if width <= indent:
        return text
    lines = textwrap.wrap(
        " ".join(text.split()),
        width=width,
        initial_indent=" " * indent,
        subsequent_indent=" " * indent,
        break_on_hyphens=False,
    )
    # the caller already printed the first indent columns
    return "\n".join(lines)[indent:]


def string_to_slice(text, /, *modifiers):
    """
    Split a comma separated string into a list, applying each modifier
    (e.g. str.strip, str.lower) to every item in order.

    Examples
    - string_to_slice("one,two") -> ["one", "two"]
    - string_to_slice(" a , b ", str.strip) -> ["a", "b"]
    - string_to_slice("") -> []
    """
    if not isinstance(text, str):
        raise TypeError("string_to_slice() argument must be a string")
    if not text:
        return []
    items = text.split(",")
    for modifier in modifiers:
        items = list(map(modifier, items))
    return items


_KEY_VALUE = re.compile(r"""
    \s*(?P<key>[^=,]*)                               # key, up to '='
    (?P<equals>=)?\s*                                # separator
    (?:"(?P<quoted>(?:[^"\\]|\\.)*)"|(?P<bare>(?:[^,\\]|\\.)*?))\s*
    (?:,|$)                                          # item terminator
""", re.VERBOSE)


def string_to_map(text, /):
    """
    Parse "key=value,key2=value2" or a JSON object into a dict of strings.

    Notes
    - Values may be double-quoted; a backslash escapes the next character, so
      "\\," keeps a comma inside a value.
    - Text starting with "{" is decoded as JSON; every value must be a string.
    - An item without '=' raises ValueError naming the offending key.
    """
    if not isinstance(text, str):
        raise TypeError("string_to_map() argument must be a string")
    if not (text := text.strip()):
        return {}
    if text.startswith("{"):
        try:
            decoded = json.loads(text)
        except json.JSONDecodeError as error:
            raise ValueError(f"json decoding error: {error}") from None
        if not isinstance(decoded, dict) or not all(isinstance(value, str) for value in decoded.values()):
            raise ValueError(f"json string '{text}' must be an object of string values")
        return decoded

    result = {}
    position = 0
    while position < len(text):
        match = _KEY_VALUE.match(text, position)
        if match is None or match.end() == position:
            raise ValueError(f"malformed key=value pair near '{text[position:]}'")
        position = match.end()
        if not (key := match["key"].strip()):
            raise ValueError(f"expected a key before '=' near '{match.group(0).strip()}'")
        if not match["equals"]:
            raise ValueError(f"expected '=' after '{key}'")
        value = match["quoted"] if match["quoted"] is not None else match["bare"]
        result[key] = re.sub(r"\\(.)", r"\1", value)
    return result


def is_char_device(stream, /):
    """
    True when stream is attached to a character device (an interactive tty),
    False when it is a pipe or a regular file.
    """
    try:
        return stat.S_ISCHR(os.fstat(stream.fileno()).st_mode)
    except (AttributeError, OSError, ValueError):
        return False


def load_file(path, /):
    """
    Read a whole text file; "-" reads from stdin when stdin is not a tty.

    Raises OSError when the file cannot be read, ValueError when "-" is given
    while stdin is interactive.
    """
    if path == "-":
        if is_char_device(sys.stdin):
            raise ValueError("load_file() refusing to read configuration from an interactive terminal")
        return sys.stdin.read()
    with open(os.path.expanduser(path), encoding="utf-8") as file:
        return file.read()


Unset = UnsetType()
"""
Internal sentinel for “not provided”.

Use Unset as a default when None is a valid, user-meaningful value but you still
need to distinguish “no input” from “explicitly passed None”.
"""


__all__ = (
    # Functions
    "coalesce",
    "rename",
    "dedent",
    "dedent_trim",
    "word_wrap",
    "string_to_slice",
    "string_to_map",
    "is_char_device",
    "load_file",

    # Types
    "UnsetType",

    # Constants
    "Unset",
)
