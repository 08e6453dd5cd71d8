"""
Tagged values and casts.

Every resolved configuration value travels as a Value: a payload plus an
explicit ValueKind tag (and the source it came from). Accessors branch on the
tag instead of guessing at runtime types.

Casts
- Each ValueKind knows how to cast a raw input (usually a string from argv,
  the environment, an ini file or a backend) into its payload type.
- Casts are total over "no input": None and "" yield the zero value.
- Invalid input raises CastError naming the option and the offending text.
"""
import json
from enum import Enum, IntFlag

from rich.text import Text

from .faults import CastError, FaultCode
from .utils import Unset, string_to_map, string_to_slice

_TRUE = frozenset(("1", "t", "T", "TRUE", "true", "True"))
_FALSE = frozenset(("0", "f", "F", "FALSE", "false", "False"))


class Source(IntFlag):
    """
    where a resolved value came from (checked in this order of precedence).
    """
    NONE    = 0
    ARGV    = 1 << 0
    ENV     = 1 << 1
    MAP     = 1 << 2
    DEFAULT = 1 << 3


def _fault(name, raw, expected):
    return CastError(
        f"invalid value for '{name}' - '{raw}' is not {expected}",
        code=FaultCode.INVALID_CAST,
        title="invalid value",
        hint=f"provide {expected} for '{name}'",
        name=name,
        value=raw,
    )


def _cast_string(name, raw):
    if raw is None:
        return ""
    match raw:
        case str():
            return raw
        case bool():
            return "true" if raw else "false"
        case int() | float():
            return str(raw)
        case _:
            raise _fault(name, raw, "a string")


def _cast_int(name, raw):
    match raw:
        case None | "":
            return 0
        case bool():
            return int(raw)
        case int():
            return raw
        case str():
            try:
                return int(raw.strip())
            except ValueError:
                raise _fault(name, raw, "an integer") from None
        case _:
            raise _fault(name, raw, "an integer")


def _cast_bool(name, raw):
    match raw:
        case None | "":
            return False
        case bool():
            return raw
        case int():
            return raw != 0
        case str() if raw.strip() in _TRUE:
            return True
        case str() if raw.strip() in _FALSE:
            return False
        case _:
            raise _fault(name, raw, "a boolean")


def _cast_string_slice(name, raw):
    match raw:
        case None | "":
            return []
        case str():
            return string_to_slice(raw)
        case list() | tuple():
            return [_cast_string(name, item) for item in raw]
        case _:
            raise _fault(name, raw, "a comma separated list")


def _cast_string_map(name, raw):
    match raw:
        case None | "":
            return {}
        case dict():
            return {str(key): _cast_string(name, value) for key, value in raw.items()}
        case str():
            try:
                return string_to_map(raw)
            except ValueError as error:
                fault = _fault(name, raw, "a key=value list or a json object")
                raise fault.__replace__(hint=str(error)) from None
        case _:
            raise _fault(name, raw, "a key=value list or a json object")


class ValueKind(Enum):
    """
    the type tag of a Value; each member carries its cast and zero value.
    """
    STRING       = "string"
    INT          = "int"
    BOOL         = "bool"
    STRING_SLICE = "string-slice"
    STRING_MAP   = "string-map"

    def cast(self, name, raw, /):
        """
        cast raw input for the option called name; raises CastError.
        """
        match self:
            case ValueKind.STRING:
                return _cast_string(name, raw)
            case ValueKind.INT:
                return _cast_int(name, raw)
            case ValueKind.BOOL:
                return _cast_bool(name, raw)
            case ValueKind.STRING_SLICE:
                return _cast_string_slice(name, raw)
            case ValueKind.STRING_MAP:
                return _cast_string_map(name, raw)

    def zero(self):
        """the zero value of this kind (a fresh container for slices/maps)."""
        return self.cast("", None)

    def render(self, payload, /):
        """payload as it would be typed on a command line."""
        match self:
            case ValueKind.BOOL:
                return "true" if payload else "false"
            case ValueKind.STRING_SLICE:
                return ",".join(payload)
            case ValueKind.STRING_MAP:
                return json.dumps(payload, sort_keys=True)
            case _:
                return str(payload)


class Value:
    """
    A resolved value: payload tagged with its kind and source.

    - rule is the Rule that produced it, or None for values that came from an
      unmanaged key (e.g. keys of a config group).
    - Values compare equal on (kind, payload, source).
    """

    __slots__ = ("kind", "payload", "source", "rule")

    def __init__(self, kind, payload=Unset, /, source=Source.NONE, rule=None):
        if not isinstance(kind, ValueKind):
            raise TypeError("Value() kind must be a ValueKind")
        if not isinstance(source, Source):
            raise TypeError("Value() source must be a Source")
        self.kind = kind
        self.payload = kind.zero() if payload is Unset else payload
        self.source = source
        self.rule = rule

    @classmethod
    def zero(cls, kind, /, rule=None):
        return cls(kind, Unset, Source.NONE, rule)

    @classmethod
    def of(cls, payload, /, source=Source.MAP, rule=None):
        """
        tag a plain python object, inferring its kind.
        """
        match payload:
            case bool():
                kind = ValueKind.BOOL
            case int():
                kind = ValueKind.INT
            case list() | tuple():
                kind, payload = ValueKind.STRING_SLICE, [str(item) for item in payload]
            case dict():
                kind, payload = ValueKind.STRING_MAP, {str(key): str(value) for key, value in payload.items()}
            case None:
                kind, payload = ValueKind.STRING, ""
            case _:
                kind, payload = ValueKind.STRING, str(payload)
        return cls(kind, payload, source, rule)

    @property
    def seen(self):
        return bool(self.source & Source.ARGV)

    def __eq__(self, other):
        if not isinstance(other, Value):
            return NotImplemented
        return (self.kind, self.payload, self.source) == (other.kind, other.payload, other.source)

    __hash__ = None

    def __repr__(self):
        return f"Value({self.kind.name}, {self.payload!r}, source={self.source!r})"

    def __rich_repr__(self):
        yield self.kind.name
        yield self.payload
        yield "source", self.source

    def __rich__(self):
        return Text.assemble((self.kind.render(self.payload), "cyan"), (f" ({self.kind.value})", "dim"))


__all__ = (
    "Source",
    "ValueKind",
    "Value",
)
