"""
Options: the resolved configuration tree.

Scope
- Each node maps a key to either a tagged Value or a nested Options node (a
  group). Parser.apply() builds a complete tree and publishes it as a
  snapshot; callers treat a snapshot as read-only.

Behavior
- group(name) never fails: "" is the node itself, a missing group is created
  empty, a name bound to a string map becomes a group holding its entries,
  and a name bound to any other scalar yields a detached empty node plus a
  logged warning.
- Typed accessors (string, int, bool, string_slice, string_map, ...) never
  raise: a missing key or a value that does not cast is logged and the zero
  value of the requested kind is returned.
- from_change_event() returns an updated copy, so a published snapshot is
  never mutated by watch callbacks.
"""
import logging
import os
from collections.abc import Mapping

from rich.pretty import pretty_repr

from .faults import CastError, FaultCode, RequiredValueError
from .rules import Flag
from .values import Source, Value, ValueKind

LOG = logging.getLogger(__name__)


class Options:
    """
    A hierarchical, tagged map of resolved values.

    Parameters
    - values: optional mapping used to seed the node (see set()).
    - logger: logging.Logger receiving accessor diagnostics; groups share it.
    """

    def __init__(self, values=None, /, *, logger=None):
        self.log = logger or LOG
        self._values = {}
        self._commands = []
        for key, value in (values or {}).items():
            self.set(key, value)

    @classmethod
    def from_map(cls, mapping, /, *, logger=None, source=Source.MAP):
        """
        Build a tree from plain python data; nested mappings become groups.
        """
        if not isinstance(mapping, Mapping):
            raise TypeError("Options.from_map() argument must be a mapping")
        options = cls(logger=logger)
        for key, value in mapping.items():
            if isinstance(value, Mapping):
                options._values[key] = cls.from_map(value, logger=logger, source=source)
            else:
                options.set(key, value, source=source)
        return options

    # structure

    def group(self, name, /):
        if name == "":
            return self
        match self._values.get(name):
            case Options() as group:
                return group
            case None:
                return self._values.setdefault(name, Options(logger=self.log))
            case Value(kind=ValueKind.STRING_MAP, payload=payload, source=source):
                group = Options.from_map(payload, logger=self.log, source=source)
                self._values[name] = group
                return group
            case _:
                self.log.warning("attempted to call group(%r) on a non-group key", name)
                return Options(logger=self.log)

    def set(self, key, value, /, rule=None, source=Source.MAP):
        """
        Bind key to value and return self.

        - Value and Options instances are stored as they are.
        - anything else is tagged with Value.of(value, source, rule).
        """
        if not isinstance(key, str):
            raise TypeError("Options key must be a string")
        match value:
            case Options() | Value():
                self._values[key] = value
            case _:
                self._values[key] = Value.of(value, source, rule)
        return self

    def set_group(self, key, mapping, /):
        self._values[key] = Options.from_map(mapping, logger=self.log)
        return self

    def delete(self, key, /):
        self._values.pop(key, None)
        return self

    def copy(self):
        """
        a structural copy; Values are shared since they are never mutated in place.
        """
        options = Options(logger=self.log)
        for key, value in self._values.items():
            options._values[key] = value.copy() if isinstance(value, Options) else value
        options._commands = list(self._commands)
        return options

    # introspection

    def keys(self):
        return list(self._values)

    def has_key(self, key, /):
        return key in self._values

    def inspect(self, key, /):
        """
        the tagged Value bound to key, or None (for groups and missing keys).
        """
        value = self._values.get(key)
        return value if isinstance(value, Value) else None

    def get(self, key, default=None, /):
        """
        the raw payload bound to key (a group yields its Options node).
        """
        match self._values.get(key):
            case None:
                return default
            case Value(payload=payload):
                return payload
            case group:
                return group

    def _source(self, key, /):
        value = self.inspect(key)
        return value.source if value is not None else Source.NONE

    def is_set(self, key, /):
        """
        True when key resolved from any source (argv, env, map or default).
        """
        if isinstance(self._values.get(key), Options):
            return True
        return self._source(key) != Source.NONE

    def is_env(self, key, /):
        return bool(self._source(key) & Source.ENV)

    def is_arg(self, key, /):
        return bool(self._source(key) & Source.ARGV)

    def is_default(self, key, /):
        return bool(self._source(key) & Source.DEFAULT)

    def was_seen(self, key, /):
        return self.is_arg(key)

    def seen(self):
        """
        True when any value of this tree was given on the command line.
        """
        for value in self._values.values():
            if isinstance(value, Options):
                if value.seen():
                    return True
            elif value.seen:
                return True
        return False

    def no_args(self):
        return not self.seen()

    def required(self, keys, /):
        """
        raise RequiredValueError naming every key of keys that is not set.
        """
        if missing := [key for key in keys if not self.is_set(key)]:
            raise RequiredValueError(
                f"missing required {'keys' if len(missing) > 1 else 'key'} {', '.join(map(repr, missing))}",
                code=FaultCode.REQUIRED_VALUE,
                title="required value",
                keys=tuple(missing),
            )

    def sub_commands(self):
        return list(self._commands)

    def set_sub_commands(self, commands, /):
        self._commands = list(commands)
        return self

    # typed accessors

    def _typed(self, key, kind, /):
        match self._values.get(key):
            case None:
                self.log.debug("options: no such key '%s'", key)
                return kind.zero()
            case Options():
                self.log.warning("options: key '%s' is a group, not a %s", key, kind.value)
                return kind.zero()
            case Value(payload=payload):
                try:
                    return kind.cast(key, payload)
                except CastError as error:
                    self.log.warning("%s for key '%s'", error, key)
                    return kind.zero()

    def string(self, key, /):
        return self._typed(key, ValueKind.STRING)

    def int(self, key, /):
        return self._typed(key, ValueKind.INT)

    def bool(self, key, /):
        return self._typed(key, ValueKind.BOOL)

    def string_slice(self, key, /):
        return self._typed(key, ValueKind.STRING_SLICE)

    def string_map(self, key, /):
        """
        a string map value, or every key of a group rendered as strings.
        """
        if isinstance(group := self._values.get(key), Options):
            return {name: group.string(name) for name in group.keys()}
        return self._typed(key, ValueKind.STRING_MAP)

    def file_path(self, key, /):
        """
        a string value with "~" expanded; "" stays "".
        """
        if not (path := self.string(key)):
            return path
        return os.path.expanduser(path)

    def key_slice(self, key, /):
        """the keys of group key."""
        return self.group(key).keys()

    # conversion

    def to_map(self):
        result = {}
        for key, value in self._values.items():
            result[key] = value.to_map() if isinstance(value, Options) else value.payload
        return result

    def to_string(self, indent=0, /):
        """
        a sorted, indented rendering meant for humans (logs, debugging).
        """
        padding = " " * (indent + 2)
        lines = ["{"]
        for key in sorted(self._values):
            value = self._values[key]
            if isinstance(value, Options):
                lines.append(f"{padding}{key}: {value.to_string(indent + 2)}")
            else:
                lines.append(f"{padding}{key}: {value.kind.render(value.payload)}")
        lines.append(" " * indent + "}")
        return "\n".join(lines)

    def from_change_event(self, event, /):
        """
        A copy of this tree with one ChangeEvent applied.

        Deleted events remove the key from its group; other events bind it.
        Events resolved to an ordinary rule are stored under the rule's name.
        """
        updated = self.copy()
        group = updated.group(event.key.group)
        rule = event.rule
        name = event.key.name
        if rule is not None and not rule.has_flag(Flag.CONFIG_GROUP):
            name = rule.name
        if event.deleted:
            group.delete(name)
        else:
            group.set(name, event.value, rule=None, source=Source.MAP)
        return updated

    # mapping protocol

    def __contains__(self, key):
        return key in self._values

    def __len__(self):
        return len(self._values)

    def __iter__(self):
        return iter(list(self._values))

    def __getitem__(self, key):
        if key not in self._values:
            raise KeyError(key)
        return self.get(key)

    def __eq__(self, other):
        if not isinstance(other, Options):
            return NotImplemented
        return self.to_map() == other.to_map()

    __hash__ = None

    def __repr__(self):
        return f"Options({pretty_repr(self.to_map())})"

    def __rich_repr__(self):
        for key in self._values:
            yield key, self.get(key)


__all__ = (
    "Options",
)
