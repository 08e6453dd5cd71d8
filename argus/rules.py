r"""
Argus rules: declarations, matching and value resolution.

Overview
- Flag
  • bit set describing what a rule is (flag, positional argument, config key,
    config group, command) and how it behaves (required, greedy, counting,
    expecting a value).

- Rule
  • one option, flag, positional argument or config-only key.
  • match(args, index): tries to consume argv tokens at index.
  • computed_value(external): resolves the final tagged Value with a fixed
    precedence: argv > environment > external map/backend > default > zero.

- RuleModifier
  • fluent builder returned by every Parser.add_*() call. Each method mutates
    only its own rule and returns the modifier, so declarations chain:

        parser.add_flag("--power-level").alias("-p").is_int().default("10000") \
            .env("POWER_LEVEL").help("specify our power level")

- validate_rules(rules)
  • checks a whole rule set before any argv is consumed.

Names
- A name with a non-word prefix ("--power-level", "-p", "++config", "+c") is a
  flag; its canonical name drops the prefix ("power-level") and the full token
  becomes its first alias.
- Any other name is a positional argument, unless the rule is config-only.
"""
import collections.abc
import copy
import os
import re
from enum import IntFlag

from .backends import Key
from .faults import (
    AmbiguousGreedyError,
    CastError,
    DuplicateAliasError,
    DuplicateRuleError,
    FaultCode,
    InvalidChoiceError,
    InvalidDefaultError,
    InvalidRuleNameError,
    MissingValueError,
    RequiredValueError,
)
from .utils import Unset, coalesce, rename
from .values import Source, Value, ValueKind

PREFIXED = re.compile(r"^(\W+)([\w|-]*)$")
ILLEGAL = re.compile(r"""[\s"'`\[\](){}<>|&;$*?!\\]""")


class Flag(IntFlag):
    NONE            = 0
    FLAG            = 1 << 0
    ARGUMENT        = 1 << 1
    CONFIG          = 1 << 2
    CONFIG_GROUP    = 1 << 3
    COMMAND         = 1 << 4
    REQUIRED        = 1 << 5
    GREEDY          = 1 << 6
    COUNT           = 1 << 7
    EXPECTING_VALUE = 1 << 8


@rename("increment")
def _increment(rule, alias, /):
    rule.count += 1


@rename("store_true")
def _store_true(rule, alias, /):
    rule.value = True


def _external(options, key, /):
    return (value := options.inspect(key)) is not None and value.source == Source.MAP


def _binder(destination, attribute=Unset, /):
    """
    internal helper: turn a store_*() destination into a callable(value).

    - (object, "attribute"): setattr on every apply.
    - callable: called with the value.
    - list / dict: replaced in place, never appended to.
    """
    if attribute is not Unset:
        if not isinstance(attribute, str):
            raise TypeError("store attribute must be a string")

        @rename(f"store_{attribute}")
        def setter(value):
            setattr(destination, attribute, value)
        return setter

    if callable(destination):
        return destination

    if isinstance(destination, collections.abc.MutableSequence):
        @rename("store_sequence")
        def setter(value):
            destination[:] = value
        return setter

    if isinstance(destination, collections.abc.MutableMapping):
        @rename("store_mapping")
        def setter(value):
            destination.clear()
            destination.update(value)
        return setter

    raise TypeError("store destination must be a callable, a list, a dict or an (object, attribute) pair")


class Rule:
    """
    A single declaration.

    Attributes
    - name: canonical, unprefixed name; (group, name) is unique per parser.
    - aliases: literal argv tokens matching this rule, in declaration order.
    - group: namespace of the resolved value ("" is the default group).
    - kind: ValueKind, which carries the cast.
    - default: Unset or a literal that must survive kind.cast().
    - env_vars / env_prefix: environment variables, first non-empty one wins.
    - order: declaration order of positional arguments.
    - action: callable(rule, alias) replacing "consume the next token" (counters, booleans).
    - store: callable(payload) copying the resolved value to caller-owned storage.
    - command: callable(parser, data) -> int for command rules.

    Match state (cleared by reset())
    - seen: matched on the command line.
    - count: number of matches of a counting flag.
    - value: last matched payload.
    """
    __introspectable__ = ("name", "aliases", "group", "kind", "default", "env_vars", "flags")

    def __init__(self, name="", /, *, group="", flags=Flag.EXPECTING_VALUE):
        if not isinstance(name, str):
            raise TypeError("rule 'name' must be a string")
        if not isinstance(group, str):
            raise TypeError("rule 'group' must be a string")
        self.name = name
        self.aliases = []
        self.group = group
        self.kind = ValueKind.STRING
        self.default = Unset
        self.env_vars = []
        self.env_prefix = ""
        self.help = ""
        self.metavar = Unset
        self.order = 0
        self.flags = Flag(flags)
        self.action = None
        self.store = None
        self.command = None
        self.choices = None
        self.backend_name = Unset
        self.reset()

    def reset(self):
        self.seen = False
        self.count = 0
        self.value = Unset

    def copy(self):
        """a copy of the declaration with its own lists and a fresh match state."""
        rule = copy.copy(self)
        rule.aliases = list(self.aliases)
        rule.env_vars = list(self.env_vars)
        rule.reset()
        return rule

    def has_flag(self, flag, /):
        return bool(self.flags & flag)

    def set_flag(self, flag, /):
        self.flags |= flag

    def clear_flag(self, flag, /):
        self.flags &= ~flag

    @property
    def key(self):
        return Key(self.group, self.name)

    def backend_key(self):
        """
        the key a backend is queried with; config groups list their whole group.
        """
        if self.has_flag(Flag.CONFIG_GROUP):
            return Key(self.group, "")
        return Key(self.group, coalesce(self.backend_name, self.name))

    @property
    def label(self):
        """
        how messages refer to this rule, e.g. "option '--power-level'".
        """
        if self.has_flag(Flag.COMMAND):
            return f"command '{self.name}'"
        if self.has_flag(Flag.CONFIG_GROUP):
            return f"config group '{self.group}'"
        if self.has_flag(Flag.CONFIG):
            return f"config '{self.key.join('.')}'"
        if self.has_flag(Flag.ARGUMENT):
            return f"argument '{self.name}'"
        return f"option '{self.aliases[0] if self.aliases else self.name}'"

    def cast(self, name, raw, /):
        """
        cast raw input with this rule's kind and check it against choices.
        """
        payload = self.kind.cast(name, raw)
        if raw not in (None, ""):
            self._check(name, payload if self.kind is ValueKind.STRING_SLICE else [payload])
        return payload

    def _check(self, name, items, /):
        if self.choices is not None:
            for item in items:
                if item not in self.choices:
                    raise InvalidChoiceError(
                        f"invalid value for '{name}' - '{item}' is not one of {', '.join(map(str, self.choices))}",
                        code=FaultCode.INVALID_CHOICE,
                        title="invalid choice",
                        hint=f"choose from {', '.join(map(str, self.choices))}",
                        rule=self,
                        value=item,
                    )
        return items

    def match(self, args, index, /):
        """
        Try to consume args[index].

        Returns
        - (False, index) when this rule does not match the token.
        - (True, next_index) after a match; next_index skips a consumed value.

        Raises
        - MissingValueError when a value-expecting flag is the last token.
        - CastError when the consumed value does not fit the rule's kind.
        """
        if self.has_flag(Flag.CONFIG | Flag.CONFIG_GROUP):
            return False, index

        token = args[index]

        if self.has_flag(Flag.ARGUMENT):
            if self.seen and not self.has_flag(Flag.GREEDY):
                return False, index
            self.seen = True
            if self.has_flag(Flag.GREEDY):
                self.value = [*coalesce(self.value, []), *self._check(self.name, [token])]
            else:
                self.value = self.cast(self.name, token)
            return True, index + 1

        inline = Unset
        if token not in self.aliases:
            alias, separator, inline = token.partition("=")
            if not separator or alias not in self.aliases or not self.has_flag(Flag.EXPECTING_VALUE):
                return False, index
            token = alias

        self.seen = True

        if self.has_flag(Flag.COMMAND):
            self.value = True
            return True, index + 1

        if self.action is not None:
            self.action(self, token)
            return True, index + 1

        if inline is not Unset:
            self.value = self.cast(token, inline)
            return True, index + 1

        if index + 1 >= len(args):
            raise MissingValueError(
                f"expected '{token}' to have an argument",
                code=FaultCode.MISSING_VALUE,
                title="missing value",
                hint=f"pass a value after '{token}' or use '{token}=<value>'",
                rule=self,
                token=token,
            )
        self.value = self.cast(token, args[index + 1])
        return True, index + 2

    def env_value(self):
        """
        the first non-empty environment variable, cast; Unset when none is set.

        A cast failure here is raised with source=Source.ENV: the operator set
        the variable explicitly, so it is never silently skipped.
        """
        for variable in self.env_vars:
            name = self.env_prefix + variable
            if raw := os.environ.get(name, ""):
                try:
                    return Value(self.kind, self.cast(name, raw), Source.ENV, self)
                except CastError as fault:
                    raise fault.__replace__(source=Source.ENV, rule=self) from None
        return Unset

    def computed_value(self, external=None, /):
        """
        Resolve the final Value of this rule.

        Precedence (first satisfied source wins)
        1. matched on the command line (counting flags yield their count)
        2. environment variables, in declaration order
        3. external Options (ini text, backend snapshot, change events)
        4. declared default
        5. required rules raise RequiredValueError
        6. the zero value of the kind, with Source.NONE
        """
        if self.has_flag(Flag.COUNT) and self.count:
            self.value = self.count

        if self.seen:
            return Value(self.kind, coalesce(self.value, self.kind.zero()), Source.ARGV, self)

        if (value := self.env_value()) is not Unset:
            return value

        if external is not None:
            # a re-applied snapshot also carries defaults, zero values and
            # argv/env results; only map entries belong to this layer
            group = external.group(self.group)
            if self.has_flag(Flag.CONFIG_GROUP):
                if keys := [key for key in group.keys() if _external(group, key)]:
                    return Value(ValueKind.STRING_MAP, {key: group.string(key) for key in keys}, Source.MAP, self)
            elif _external(group, self.name):
                return Value(self.kind, self.cast(self.name, group.get(self.name)), Source.MAP, self)

        if self.default is not Unset:
            return Value(self.kind, self.cast(self.name, self.default), Source.DEFAULT, self)

        if self.has_flag(Flag.REQUIRED):
            raise RequiredValueError(
                f"{self.label} is required",
                code=FaultCode.REQUIRED_VALUE,
                title="required value",
                hint=self._hint(),
                rule=self,
            )

        return Value.zero(self.kind, rule=self)

    def _hint(self):
        sources = []
        if self.aliases and not self.has_flag(Flag.COMMAND):
            sources.append(f"pass '{self.aliases[0]} <value>'")
        elif self.has_flag(Flag.ARGUMENT):
            sources.append(f"pass a value for '{self.name}'")
        sources.extend(f"set ${self.env_prefix}{variable}" for variable in self.env_vars)
        if self.has_flag(Flag.CONFIG):
            sources.append(f"set '{self.backend_key().join('.')}' in the configuration")
        return " or ".join(sources)

    def help_text(self):
        """
        (aliases, description) pair used by help generation.
        """
        if self.has_flag(Flag.ARGUMENT):
            left = self.name
        else:
            left = ", ".join(sorted(self.aliases, reverse=True))
        parens = []
        if not self.has_flag(Flag.COMMAND):
            if self.default is not Unset:
                parens.append(f"Default={self.default}")
            if self.env_vars:
                parens.append(f"Env={','.join(self.env_prefix + variable for variable in self.env_vars)}")
        description = self.help
        if parens:
            description = f"{description} ({' '.join(parens)})".strip()
        return left, description

    def __repr__(self):
        return f"rule({', '.join(f'{name}={value!r}' for name, value in self.__rich_repr__())})"

    def __rich_repr__(self):
        for name in type(self).__introspectable__:
            yield name, getattr(self, name)


class RuleModifier:
    """
    Fluent builder over one Rule.

    - Created by Parser.add_*(); parser.in_group(...) returns a modifier over
      an unregistered template rule whose add_*() calls declare new rules in
      that group.
    - build() validates the single rule and returns it.
    """

    def __init__(self, rule=None, parser=None, /):
        if rule is not None and not isinstance(rule, Rule):
            raise TypeError("RuleModifier() rule must be a Rule")
        self.rule = rule if rule is not None else Rule()
        self.parser = parser

    def get_rule(self):
        return self.rule

    def build(self):
        validate_rules([self.rule])
        return self.rule

    # kinds

    def _kind(self, kind, /):
        if self.rule.has_flag(Flag.GREEDY) and kind is not ValueKind.STRING_SLICE:
            raise ValueError(f"{self.rule.label} is greedy; it always collects a {ValueKind.STRING_SLICE.value}")
        self.rule.kind = kind
        if not self.rule.has_flag(Flag.COUNT) and self.rule.action is None:
            self.rule.set_flag(Flag.EXPECTING_VALUE)
        return self

    def is_string(self):
        return self._kind(ValueKind.STRING)

    def is_int(self):
        return self._kind(ValueKind.INT)

    def is_bool(self):
        return self._kind(ValueKind.BOOL)

    def is_string_slice(self):
        return self._kind(ValueKind.STRING_SLICE)

    def is_string_map(self):
        return self._kind(ValueKind.STRING_MAP)

    def is_true(self):
        """
        presence flag: matching sets the value to True, no value is consumed.
        """
        self._conflicts("is_true")
        self.rule.kind = ValueKind.BOOL
        self.rule.action = _store_true
        self.rule.clear_flag(Flag.EXPECTING_VALUE)
        return self

    def count(self):
        """
        counting flag: every match increments the resolved integer.
        """
        self._conflicts("count")
        self.rule.kind = ValueKind.INT
        self.rule.action = _increment
        self.rule.set_flag(Flag.COUNT)
        self.rule.clear_flag(Flag.EXPECTING_VALUE)
        return self

    def _conflicts(self, method, /):
        if self.rule.store is not None and self.rule.kind in (ValueKind.STRING, ValueKind.STRING_SLICE, ValueKind.STRING_MAP):
            raise ValueError(f"{method}() cannot be combined with a store expecting a following value")

    # bindings

    def _store(self, kind, destination, attribute, /):
        if self.rule.action is not None and kind is not self.rule.kind:
            raise ValueError(f"{self.rule.label} does not consume a value; it cannot store a {kind.value}")
        self._kind(kind)
        self.rule.store = _binder(destination, attribute)
        return self

    def store_str(self, destination, attribute=Unset, /):
        return self._store(ValueKind.STRING, destination, attribute)

    store_string = store_str

    def store_int(self, destination, attribute=Unset, /):
        return self._store(ValueKind.INT, destination, attribute)

    def store_true(self, destination, attribute=Unset, /):
        self.is_true()
        self.rule.store = _binder(destination, attribute)
        return self

    def store_string_slice(self, destination, attribute=Unset, /):
        return self._store(ValueKind.STRING_SLICE, destination, attribute)

    def store_string_map(self, destination, attribute=Unset, /):
        return self._store(ValueKind.STRING_MAP, destination, attribute)

    # metadata

    def default(self, value, /):
        if not isinstance(value, str | int | bool):
            raise TypeError(f"{self.rule.label} default must be a string")
        if self.rule.has_flag(Flag.REQUIRED):
            raise ValueError(f"{self.rule.label} is required; it cannot also have a default")
        self.rule.default = value if isinstance(value, str) else ValueKind.STRING.cast(self.rule.name, value)
        return self

    def required(self):
        if self.rule.default is not Unset:
            raise ValueError(f"{self.rule.label} has a default; it cannot also be required")
        self.rule.set_flag(Flag.REQUIRED)
        return self

    def alias(self, name, /):
        if not isinstance(name, str) or not name:
            raise TypeError("alias() argument must be a non-empty string")
        if self.rule.has_flag(Flag.ARGUMENT):
            raise ValueError(f"{self.rule.label} is positional; it cannot have aliases")
        if name not in self.rule.aliases:
            self.rule.aliases.append(name)
        return self

    def short(self, letter, /):
        return self.alias(f"-{letter}")

    def greedy(self):
        """
        positional argument collecting every remaining unmatched token.
        """
        if not self.rule.has_flag(Flag.ARGUMENT):
            raise ValueError(f"{self.rule.label} is not positional; only arguments can be greedy")
        self.rule.set_flag(Flag.GREEDY)
        self.rule.kind = ValueKind.STRING_SLICE
        return self

    def choices(self, choices, /):
        if isinstance(choices, str) or not isinstance(choices, collections.abc.Iterable):
            raise TypeError(f"{self.rule.label} choices must be an iterable of values")
        self.rule.choices = tuple(choices)
        return self

    def env(self, variable, /):
        if not isinstance(variable, str) or not variable:
            raise TypeError("env() argument must be a non-empty string")
        self.rule.env_vars.append(variable)
        return self

    def help(self, message, /):
        if not isinstance(message, str):
            raise TypeError("help() argument must be a string")
        self.rule.help = message
        return self

    def metavar(self, name, /):
        if not isinstance(name, str):
            raise TypeError("metavar() argument must be a string")
        self.rule.metavar = name
        return self

    def key(self, name, /):
        """
        name this rule is stored under in a backend, when it differs from its name.
        """
        if not isinstance(name, str) or not name:
            raise TypeError("key() argument must be a non-empty string")
        self.rule.backend_name = name
        return self

    def in_group(self, group, /):
        if not isinstance(group, str):
            raise TypeError("in_group() argument must be a string")
        self.rule.group = group
        return self

    # chaining new declarations

    def _parser(self, method, /):
        if self.parser is None:
            raise RuntimeError(f"{method}() needs a modifier created by a parser")
        return self.parser

    def _template(self, flags, /):
        # only the group is inherited by rules declared from a modifier
        return RuleModifier(Rule(group=self.rule.group, flags=flags), self.parser)

    def add_flag(self, name, /):
        return self._parser("add_flag").add_rule(name, self._template(Flag.FLAG | Flag.EXPECTING_VALUE))

    def add_argument(self, name, /):
        return self._parser("add_argument").add_rule(name, self._template(Flag.ARGUMENT | Flag.EXPECTING_VALUE))

    def add_option(self, name, /):
        return self._parser("add_option").add_rule(name, self._template(Flag.EXPECTING_VALUE))

    def add_config(self, name, /):
        return self._parser("add_config").add_rule(name, self._template(Flag.CONFIG | Flag.EXPECTING_VALUE))

    def add_config_group(self, group, /):
        modifier = RuleModifier(Rule(group=group, flags=Flag.CONFIG_GROUP), self.parser)
        modifier.rule.kind = ValueKind.STRING_MAP
        return self._parser("add_config_group").add_rule("", modifier)

    def add_command(self, name, callback, /):
        return self._parser("add_command").add_command(name, callback)


def _ordering(rule, /):
    return rule.has_flag(Flag.ARGUMENT), rule.order


def sort_rules(rules, /):
    """
    non-positional rules first (declaration order), then positionals by order.
    """
    return sorted(rules, key=_ordering)


def validate_rules(rules, /):
    """
    Check a rule set before matching; the first violation is raised.

    Order of checks
    1. duplicate (group, name)              -> DuplicateRuleError
    2. an alias shared by two rules         -> DuplicateAliasError
    3. illegal characters in names/aliases  -> InvalidRuleNameError (commands exempt)
    4. a positional after a greedy one      -> AmbiguousGreedyError
    5. a default its own cast rejects       -> InvalidDefaultError
    """
    keys = {}
    for rule in rules:
        if (other := keys.setdefault(rule.key, rule)) is not rule:
            raise DuplicateRuleError(
                f"duplicate option with same name as '{rule.key.join('.')}'",
                code=FaultCode.DUPLICATE_RULE,
                title="duplicate rule",
                hint="each (group, name) pair may be declared once",
                rule=rule,
                other=other,
            )

    aliases = {}
    for rule in rules:
        for alias in rule.aliases:
            if (other := aliases.setdefault(alias, rule)) is not rule:
                raise DuplicateAliasError(
                    f"duplicate alias '{alias}' shared by '{other.name}' and '{rule.name}'",
                    code=FaultCode.DUPLICATE_ALIAS,
                    title="duplicate alias",
                    hint=f"remove '{alias}' from one of them",
                    rule=rule,
                    other=other,
                )

    for rule in rules:
        if rule.has_flag(Flag.COMMAND):
            continue
        if not rule.name and not rule.has_flag(Flag.CONFIG_GROUP):
            raise InvalidRuleNameError(
                "rule name cannot be empty",
                code=FaultCode.INVALID_RULE_NAME,
                title="invalid name",
                rule=rule,
            )
        for name in (rule.name, rule.group, *rule.aliases):
            if ILLEGAL.search(name):
                raise InvalidRuleNameError(
                    f"invalid rule name '{name}'",
                    code=FaultCode.INVALID_RULE_NAME,
                    title="invalid name",
                    hint="names cannot contain whitespace, quotes, brackets or shell metacharacters",
                    rule=rule,
                )

    greedy = None
    for rule in sorted((rule for rule in rules if rule.has_flag(Flag.ARGUMENT)), key=_ordering):
        if greedy is not None:
            raise AmbiguousGreedyError(
                f"argument '{rule.name}' is declared after greedy argument '{greedy.name}'",
                code=FaultCode.AMBIGUOUS_GREEDY,
                title="ambiguous greedy argument",
                hint="only the last positional argument may be greedy",
                rule=rule,
                other=greedy,
            )
        if rule.has_flag(Flag.GREEDY):
            greedy = rule

    for rule in rules:
        if rule.default is Unset:
            continue
        try:
            rule.cast(rule.name, rule.default)
        except CastError as error:
            fault = InvalidDefaultError(
                f"invalid default for {rule.label}: {error}",
                code=FaultCode.INVALID_DEFAULT,
                title="invalid default",
                hint=error.options.get("hint"),
                rule=rule,
            )
            raise fault from error


__all__ = (
    "Flag",
    "Rule",
    "RuleModifier",
    "sort_rules",
    "validate_rules",
)
