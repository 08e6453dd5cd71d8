"""
Argus faults and rendering.

Scope
- FaultCode: canonical, stable numeric identifiers for all user-facing issues.
  Codes are grouped by domain to keep logs/searches predictable.
- ConfigException: base type that carries message + options and knows how
  to render itself with rich.
- ConfigExit: several faults raised together (e.g. more than one required
  option missing after Parser.apply()).
- trigger(): central entry point to surface any fault (raise, or print and exit
  when running as a shell entry point).

Domains
- declaration (110xx): rule definitions that can never parse anything.
- matching (111xx): argv tokens that do not fit the declared rules.
- casting (112xx): a value present but not convertible to its declared kind.
- resolution (113xx): values absent after every source was consulted.
- backends (114xx): key/value store, ini and watch failures.

Options commonly carried by faults
- code: FaultCode, title: short heading, hint: one-line suggestion.
- rule: the Rule involved (when any), token: the argv token involved.
- snapshot: the Options published by Parser.apply() before raising.
- shell/colorful/fancy: rendering switches used by __trigger__ and __rich__.
"""
import sys
from collections import defaultdict
from enum import IntEnum
from types import MappingProxyType

from rich.console import Console, Group
from rich.panel import Panel
from rich.text import Text

from .utils import Unset, coalesce

console = Console(stderr=True)


class FaultCode(IntEnum):
    """
    canonical fault codes (stable identifiers).

    - numeric ranges encode domains (declaration, matching, casting, resolution,
      backends).
    - spacing leaves room for future additions without reshuffling existing codes.
    - normalize() allows host remapping to custom labels while keeping code-stability.
    """
    # --- declaration errors (110xx) ---
    NO_RULES                = 11001
    DUPLICATE_RULE          = 11002
    DUPLICATE_ALIAS         = 11003
    INVALID_RULE_NAME       = 11004
    AMBIGUOUS_GREEDY        = 11005
    INVALID_DEFAULT         = 11006

    # --- matching errors (111xx) ---
    MISSING_VALUE           = 11101
    UNKNOWN_ARGUMENT        = 11102
    MISSING_COMMAND         = 11103

    # --- casting errors (112xx) ---
    INVALID_CAST            = 11201
    INVALID_CHOICE          = 11202

    # --- resolution errors (113xx) ---
    REQUIRED_VALUE          = 11301

    # --- backend errors (114xx) ---
    BACKEND_FAILURE         = 11401
    KEY_NOT_FOUND           = 11402
    WATCH_FAILURE           = 11403
    INI_SYNTAX              = 11404

    def normalize(self):
        """
        return a host-normalized string for this code.

        the host application can provide a __codes__ mapping in __main__
        to override numeric ids with friendlier labels. when no mapping
        is present, the numeric value is returned as a string.
        """
        return str(getattr(__import__("__main__"), "__codes__", {}).get(self, self.value))


def _render(fault):
    """
    internal helper: build the rich renderable of a fault.
    """
    main = __import__("__main__")

    defaults = {
        "prog-name": "bold #E6E6F0",
        "code": "bold #00E5FF",
        "title": "bold #FF4DA6",
        "message": "#C8C8D0",
        "hint-arrow": "#9CE19C dim",
        "hint": "italic #9CE19C",
    }
    styles = defaultdict(str, defaults | getattr(main, "__styles__", {}))
    colorful = fault.options.get("colorful", True)
    fancy = fault.options.get("fancy", False)

    def text(fragment, style=""):
        if not fragment:
            return Text("")
        if isinstance(fragment, Text):
            return fragment
        return Text(str(fragment), styles[style] if colorful else "")

    prog = getattr(main, "__prog__", None) or fault.options.get("prog") or "argus"
    code = fault.options.get("code")
    title = fault.options.get("title") or type(fault).__name__

    header = Text.assemble(
        "[ ",
        text(prog, "prog-name"),
        " | ",
        text(code.normalize() if isinstance(code, FaultCode) else "", "code"),
        " | ",
        text(str(title).title(), "title"),
        " ]"
    )
    renders = [text(coalesce(fault.message, ""), "message")]
    if hint := fault.options.get("hint"):
        renders.append(Text.assemble(text(" → ", "hint-arrow"), text(hint, "hint")))

    if fancy:
        return Panel(Group(*renders), title=header, title_align="left")
    return Group(header, *renders)


class ConfigException(Exception):
    """
    Base class of every argus error.

    Carries a message plus a read-only mapping of options describing where the
    fault came from. str(fault) is the plain message, so faults read naturally
    in logs and tracebacks.
    """

    def __init__(self, message=Unset, /, **options):
        assert isinstance(message, str | Unset)
        super().__init__(coalesce(message, ""))
        self.message = message
        self.options = MappingProxyType(options)

    def __str__(self):
        return coalesce(self.message, "")

    def __rich__(self):
        return _render(self)

    def __trigger__(self) -> None:
        if not self.options.get("shell"):
            raise self
        console.print(self)
        if self.options.get("deferred"):
            return
        sys.exit(1)

    def __replace__(self, *unused, **overrides):
        assert not unused, "unused arguments are not allowed"
        fault = type(self)(self.message, **{**self.options, **overrides})
        fault.__cause__ = self.__cause__
        return fault


# declaration errors
class NoRulesError(ConfigException, RuntimeError): ...
class DuplicateRuleError(ConfigException, ValueError): ...
class DuplicateAliasError(ConfigException, ValueError): ...
class InvalidRuleNameError(ConfigException, ValueError): ...
class AmbiguousGreedyError(ConfigException, ValueError): ...
class InvalidDefaultError(ConfigException, ValueError): ...

# matching errors
class MissingValueError(ConfigException, ValueError): ...
class UnknownArgumentError(ConfigException, ValueError): ...
class MissingCommandError(ConfigException, LookupError): ...

# casting errors
class CastError(ConfigException, ValueError): ...
class InvalidChoiceError(CastError): ...

# resolution errors
class RequiredValueError(ConfigException, LookupError): ...

# backend errors
class BackendError(ConfigException, RuntimeError): ...
class NotFoundError(BackendError, LookupError): ...
class WatchError(BackendError): ...
class IniError(ConfigException, ValueError): ...


class ConfigExit(ExceptionGroup):
    """
    Several faults surfaced at once.

    Parser.apply() raises it when more than one rule failed to resolve; each
    member is the individual fault and options["snapshot"] is the snapshot that
    was published anyway.
    """

    def __new__(cls, exceptions, **options):
        return super().__new__(cls, "bad configuration", tuple(exceptions))

    def __init__(self, exceptions, **options):
        super().__init__("bad configuration", tuple(exceptions))
        self.options = MappingProxyType(options)

    def __rich__(self):
        renders = [exception.__rich__() for exception in self.exceptions]
        if self.options.get("fancy"):
            return Panel(Group(*renders), title=Text(f"[ {self.message.title()} ]"), title_align="left")
        return Group(*renders)

    def __trigger__(self) -> None:
        if not self.options.get("shell"):
            raise self
        console.print(self)
        sys.exit(1)

    def __replace__(self, *unused, **overrides):
        assert not unused, "positional arguments are not allowed"
        exceptions = [exception.__replace__(**overrides) for exception in self.exceptions]
        return type(self)(exceptions, **{**self.options, **overrides})


def trigger(fault, /, **options):
    """
    surface a fault with the given runtime options.

    contract
    - fault must provide __trigger__ and __replace__ methods (see base classes).
    - options are merged into the fault via __replace__(**options) before triggering.
    - with shell=True the fault is printed to stderr and the process exits with
      status 1; otherwise the fault is raised.
    """
    if (
        not hasattr(fault, "__trigger__") or
        not callable(fault.__trigger__) or
        not hasattr(fault, "__replace__") or
        not callable(fault.__replace__)
    ):
        raise TypeError("trigger() argument must have a __trigger__ and __replace__ methods")
    fault.__replace__(**options).__trigger__()


def getdoc(code, /):
    """
    optional documentation fetch for a fault code.

    the host application may expose a __docs__ mapping in __main__ where keys
    are FaultCode instances and values are short documentation strings.
    """
    if not isinstance(code, FaultCode):
        raise TypeError("getdoc() argument must be a fault-code")
    try:
        return getattr(__import__("__main__"), "__docs__", {})[code]
    except KeyError:
        return None


__all__ = (
    "FaultCode",
    "ConfigException",
    "NoRulesError",
    "DuplicateRuleError",
    "DuplicateAliasError",
    "InvalidRuleNameError",
    "AmbiguousGreedyError",
    "InvalidDefaultError",
    "MissingValueError",
    "UnknownArgumentError",
    "MissingCommandError",
    "CastError",
    "InvalidChoiceError",
    "RequiredValueError",
    "BackendError",
    "NotFoundError",
    "WatchError",
    "IniError",
    "ConfigExit",
    "trigger",
    "getdoc",
)
