"""
Argus parser: declare rules, match argv, resolve and publish snapshots.

What this module provides
- Parser: owns a rule set and the most recently published Options snapshot.
  • add_flag / add_argument / add_config / add_config_group / add_command
    declare rules and return a RuleModifier for chaining.
  • parse(argv) validates, sorts and matches, then apply() resolves every rule
    and publishes the result.
  • apply(external) re-resolves the same rules with an external Options tree
    (ini text, a backend snapshot, a watch update) layered below argv and env.
  • from_ini / from_backend / watch feed external values back through apply().
  • generate_help / print_help render the declared surface.

Quick start
    from argus import Parser

    parser = Parser("tool", "does things")
    parser.add_flag("--power-level").alias("-p").is_int().default("10000") \\
        .env("POWER_LEVEL").help("specify our power level")
    parser.add_flag("--verbose").alias("-v").count()
    parser.add_argument("path").required()

    options = parser.parse_or_exit()
    options.int("power-level")

Lifecycle
- declared -> validated -> parsed/applied; apply() may run any number of times
  (from a watch callback thread too). Each call publishes a complete new
  snapshot; get_opts() always hands out the latest one.
"""
import difflib
import logging
import os
import re
import sys
import threading

from rich.console import Console, Group
from rich.table import Table
from rich.text import Text

from .backends import Backend, Watcher
from .faults import (
    BackendError,
    CastError,
    ConfigException,
    ConfigExit,
    FaultCode,
    MissingCommandError,
    NoRulesError,
    NotFoundError,
    RequiredValueError,
    UnknownArgumentError,
    trigger,
)
from .ini import parse_ini
from .options import Options
from .rules import PREFIXED, Flag, Rule, RuleModifier, sort_rules, validate_rules
from .utils import Unset, dedent_trim, word_wrap
from .values import Source, Value, ValueKind

LOG = logging.getLogger(__name__)

TERMINATOR = "--"

# a non-word prefix followed by a letter: "--name", "-v", "+x" (but not "-5")
OPTION_LIKE = re.compile(r"^\W+[^\W\d_]")


class Parser:
    """
    Rule set plus published snapshot.

    Parameters
    - name / description: used by help generation.
    - env_prefix: prepended to every environment variable a rule declares.
    - prefix_chars: prefixes given to flags declared with a bare name
      (add_flag("verbose") matches "--verbose" and "-verbose" by default).
    - wrap: help text width.
    - add_help: declare --help/-h before parsing unless a "help" rule exists.
    - strict: unmatched tokens raise UnknownArgumentError instead of being
      recorded in `unmatched`.
    - logger: logging.Logger shared with every snapshot and watcher.
    """

    def __init__(self, name="", description="", *, env_prefix="", prefix_chars=("--", "-"), wrap=200,
                 add_help=True, strict=False, logger=None):
        if not isinstance(name, str):
            raise TypeError("Parser() 'name' must be a string")
        if not isinstance(description, str):
            raise TypeError("Parser() 'description' must be a string")
        if not isinstance(env_prefix, str):
            raise TypeError("Parser() 'env_prefix' must be a string")
        if isinstance(prefix_chars, str):
            prefix_chars = (prefix_chars,)
        prefix_chars = tuple(prefix_chars)
        if not prefix_chars or not all(isinstance(prefix, str) and re.fullmatch(r"\W+", prefix) for prefix in prefix_chars):
            raise ValueError("Parser() 'prefix_chars' must be non-word prefixes such as '--' or '-'")
        if not isinstance(wrap, int) or isinstance(wrap, bool) or wrap <= 0:
            raise ValueError("Parser() 'wrap' must be a positive integer")
        if logger is not None and not isinstance(logger, logging.Logger | logging.LoggerAdapter):
            raise TypeError("Parser() 'logger' must be a logging.Logger")

        self.name = name
        self.description = description
        self.env_prefix = env_prefix
        self.prefix_chars = prefix_chars
        self.wrap = wrap
        self.add_help = bool(add_help)
        self.strict = bool(strict)
        self.log = logger or LOG

        self._rules = []
        self._positionals = 0
        self._lock = threading.Lock()
        self._options = Options(logger=self.log)
        self._pending = Unset

        self.args = []
        self.remaining = []
        self.unmatched = []
        self.command = None

    # declaration

    def add_rule(self, name, modifier, /):
        """
        Register the rule behind modifier under name.

        - a prefixed name ("--power-level", "-p", "++x") makes a flag named
          without its prefix, the full name being its first alias.
        - config, config group and command rules keep name as is.
        - a bare name on a flag gets one alias per prefix_chars entry.
        - anything else becomes the next positional argument.
        """
        if not isinstance(name, str):
            raise TypeError("add_rule() name must be a string")
        if not isinstance(modifier, RuleModifier):
            raise TypeError("add_rule() modifier must be a RuleModifier")

        rule = modifier.get_rule()
        modifier.parser = self
        rule.env_prefix = self.env_prefix

        if rule.has_flag(Flag.CONFIG | Flag.CONFIG_GROUP | Flag.COMMAND):
            rule.name = name
        elif match := PREFIXED.match(name):
            rule.name = match.group(2)
            if name not in rule.aliases:
                rule.aliases.insert(0, name)
            rule.clear_flag(Flag.ARGUMENT)
            rule.set_flag(Flag.FLAG)
        elif rule.has_flag(Flag.FLAG):
            rule.name = name
            for prefix in self.prefix_chars:
                if (alias := prefix + name) not in rule.aliases:
                    rule.aliases.append(alias)
        else:
            rule.name = name
            rule.set_flag(Flag.ARGUMENT)
            self._positionals += 1
            rule.order = self._positionals

        self._rules.append(rule)
        return modifier

    def in_group(self, group, /):
        """
        a modifier whose add_*() calls declare rules in group.
        """
        return RuleModifier(Rule(flags=Flag.NONE), self).in_group(group)

    def add_flag(self, name, /):
        return RuleModifier(None, self).add_flag(name)

    def add_option(self, name, /):
        return RuleModifier(None, self).add_option(name)

    def add_argument(self, name, /):
        return RuleModifier(None, self).add_argument(name)

    def add_config(self, name, /):
        return RuleModifier(None, self).add_config(name)

    def add_config_group(self, group, /):
        return RuleModifier(None, self).add_config_group(group)

    def add_command(self, name, callback, /):
        """
        Declare a command token.

        callback(sub_parser, data) -> int runs through run_command() when the
        token was matched; the tokens after it are left to the sub-parser.
        """
        if not isinstance(name, str) or not name:
            raise TypeError("add_command() name must be a non-empty string")
        if not callable(callback):
            raise TypeError("add_command() callback must be callable")
        rule = Rule(flags=Flag.COMMAND)
        rule.kind = ValueKind.BOOL
        rule.command = callback
        rule.aliases.append(name)
        return self.add_rule(name, RuleModifier(rule, self))

    def rules(self):
        return list(self._rules)

    def _help_rule(self):
        for rule in self._rules:
            if rule.group == "" and rule.name == "help":
                return rule
        return None

    def _declare_help(self):
        if not self.add_help or self._help_rule() is not None:
            return
        modifier = self.add_flag("--help")
        if not any("-h" in rule.aliases for rule in self._rules):
            modifier.alias("-h")
        modifier.is_true().help("display this help message and exit")

    # parsing

    def parse(self, argv=None, /):
        """
        Match argv against the rules, then apply() and return the snapshot.

        - argv None reads sys.argv[1:] (a sub-parser reads what its parent
          left after the command token).
        - matching stops at "--" or after a command token; what follows is
          kept in `remaining`.
        """
        if argv is None:
            argv = sys.argv[1:] if self._pending is Unset else self._pending
        if isinstance(argv, str) or not all(isinstance(token, str) for token in argv):
            raise TypeError("parse() argument must be a list of strings")

        if not self._rules:
            raise NoRulesError(
                "must declare some rules with add_flag(), add_argument() or add_config() before calling parse()",
                code=FaultCode.NO_RULES,
                title="no rules",
                prog=self.name or None,
            )

        self._declare_help()
        validate_rules(self._rules)
        self._rules = sort_rules(self._rules)
        for rule in self._rules:
            rule.reset()

        self.args = list(argv)
        self.remaining = []
        self.unmatched = []
        self.command = None

        index = 0
        while index < len(self.args):
            if self.args[index] == TERMINATOR:
                self.remaining = self.args[index + 1:]
                break
            index, rule = self._match(index)
            if rule is not None and rule.has_flag(Flag.COMMAND):
                self.command = rule
                self.remaining = self.args[index:]
                break

        self.log.debug("matched %d of %d arguments", len(self.args) - len(self.remaining) - len(self.unmatched), len(self.args))
        return self.apply()

    parse_args = parse

    def _match(self, index):
        token = self.args[index]
        for rule in self._rules:
            # positionals come last; an option-shaped token is never a positional value
            if rule.has_flag(Flag.ARGUMENT) and OPTION_LIKE.match(token):
                break
            matched, following = rule.match(self.args, index)
            if matched:
                return following, rule
        self._unmatched(token, index)
        return index + 1, None

    def _unmatched(self, token, index):
        if not self.strict:
            self.log.debug("ignoring unmatched argument '%s' at position %d", token, index)
            self.unmatched.append(token)
            return

        aliases = [alias for rule in self._rules for alias in rule.aliases]
        suggestions = difflib.get_close_matches(token.partition("=")[0], aliases, 5)
        help = f"'{self.name} --help'" if self.name else "'--help'"
        if suggestions:
            hint = f"did you mean '{suggestions[0]}'? you can also run {help} to see all options"
        else:
            hint = f"try {help} to see all available options"
        raise UnknownArgumentError(
            f"unknown argument '{token}'",
            code=FaultCode.UNKNOWN_ARGUMENT,
            title="unknown argument",
            hint=hint,
            token=token,
            suggestions=suggestions,
            prog=self.name or None,
        )

    # resolution

    def apply(self, external=None, /):
        """
        Resolve every rule, run store bindings and publish a new snapshot.

        - external: Options layered below argv and the environment.
        - the snapshot is published even when rules fail; the failures are
          raised afterwards (one fault as is, several as ConfigExit), each
          carrying the published snapshot in options["snapshot"].
        - an environment variable that does not cast raises at once and
          publishes nothing.
        """
        if external is not None and not isinstance(external, Options):
            raise TypeError("apply() argument must be an Options instance or None")

        results = Options(logger=self.log)
        faults = []
        for rule in self._rules:
            try:
                value = rule.computed_value(external)
            except CastError as fault:
                if fault.options.get("source") == Source.ENV:
                    raise
                faults.append(fault)
                value = Value.zero(rule.kind, rule=rule)
            except RequiredValueError as fault:
                faults.append(fault)
                value = Value.zero(rule.kind, rule=rule)
            else:
                if rule.store is not None:
                    rule.store(value.payload)

            group = results.group(rule.group)
            if rule.has_flag(Flag.CONFIG_GROUP):
                for key, payload in value.payload.items():
                    group.set(key, payload, source=value.source)
            else:
                group.set(rule.name, value)

        if self.command is not None:
            results.set_sub_commands([self.command.name])

        self.set_opts(results)

        if faults:
            faults = [fault.__replace__(snapshot=results, prog=self.name or None) for fault in faults]
            if len(faults) == 1:
                raise faults[0]
            raise ConfigExit(faults, snapshot=results)
        return results

    def get_opts(self):
        with self._lock:
            return self._options

    def set_opts(self, options, /):
        if not isinstance(options, Options):
            raise TypeError("set_opts() argument must be an Options instance")
        with self._lock:
            self._options = options

    # external sources

    def parse_ini(self, text, /):
        """
        ini text as an Options tree, without applying it.
        """
        options = Options(logger=self.log)
        for group, values in parse_ini(text).items():
            node = options.group(group)
            for key, value in values.items():
                node.set(key, value, source=Source.MAP)
        return options

    def from_ini(self, text, /):
        return self.apply(self.parse_ini(text))

    def parse_backend(self, backend, /, timeout=5):
        """
        Fetch every declared key from backend into an Options tree.

        - config groups list their whole group; a failing list is logged.
        - other rules get their own key; missing or failing keys are skipped.
        """
        if not isinstance(backend, Backend):
            raise TypeError("parse_backend() argument must be a Backend")

        values = Options(logger=self.log)
        for rule in self._rules:
            if rule.has_flag(Flag.COMMAND):
                continue
            key = rule.backend_key()
            if rule.has_flag(Flag.CONFIG_GROUP):
                try:
                    pairs = backend.list(key, timeout=timeout)
                except (BackendError, OSError) as error:
                    self.log.warning("unable to list config group '%s': %s", key.group, error)
                    continue
                group = values.group(rule.group)
                for pair in pairs:
                    group.set(pair.key.name, pair.value, source=Source.MAP)
                continue

            try:
                pair = backend.get(key, timeout=timeout)
            except NotFoundError:
                continue
            except (BackendError, OSError) as error:
                self.log.debug("skipping '%s': %s", key.join("."), error)
                continue
            values.group(rule.group).set(rule.name, pair.value, source=Source.MAP)
        return values

    def from_backend(self, backend, /, timeout=5):
        return self.apply(self.parse_backend(backend, timeout=timeout))

    def watch(self, backend, callback, /, **options):
        """
        Start watching backend; returns the running Watcher (call it to cancel).

        callback(event, error) runs on the watch thread, one event at a time;
        event.rule is the matching declared rule or None.
        """
        return Watcher(backend, callback, self.find_rule, logger=self.log, **options).start()

    def find_rule(self, key, /):
        """
        the rule managing key: config groups match on the group alone.
        """
        for rule in self._rules:
            if rule.has_flag(Flag.COMMAND):
                continue
            if rule.group != key.group:
                continue
            if rule.has_flag(Flag.CONFIG_GROUP):
                return rule
            if key.name in (rule.name, rule.backend_name):
                return rule
        return None

    # help

    def usage(self):
        name = self.name or os.path.basename(sys.argv[0]) or "program"
        parts = [name]
        if self.add_help or any(not rule.has_flag(Flag.ARGUMENT | Flag.COMMAND | Flag.CONFIG | Flag.CONFIG_GROUP) for rule in self._rules):
            parts.append("[OPTIONS]")
        if any(rule.has_flag(Flag.COMMAND) for rule in self._rules):
            parts.append("<command>")
        for rule in sort_rules(rule for rule in self._rules if rule.has_flag(Flag.ARGUMENT)):
            metavar = rule.metavar if rule.metavar is not Unset else rule.name
            if rule.has_flag(Flag.GREEDY):
                metavar = f"{metavar}..."
            parts.append(metavar if rule.has_flag(Flag.REQUIRED) else f"[{metavar}]")
        return " ".join(parts)

    def _sections(self, *titles):
        sections = {"Commands": [], "Arguments": [], "Options": []}
        for rule in self._rules:
            if rule.has_flag(Flag.CONFIG | Flag.CONFIG_GROUP):
                continue
            if rule.has_flag(Flag.COMMAND):
                sections["Commands"].append(rule.help_text())
            elif rule.has_flag(Flag.ARGUMENT):
                sections["Arguments"].append(rule.help_text())
            else:
                sections["Options"].append(rule.help_text())
        if self.add_help and self._help_rule() is None:
            # declared by parse(); listed ahead of time
            taken = any("-h" in rule.aliases for rule in self._rules)
            sections["Options"].append(("--help" if taken else "--help, -h", "display this help message and exit"))
        return [(title, rows) for title, rows in sections.items() if rows and (not titles or title in titles)]

    def _format(self, rows):
        indent = max(len(left) for left, _ in rows) + 5
        lines = []
        for left, description in rows:
            lines.append((f"  {left}".ljust(indent) + word_wrap(description, indent, self.wrap)).rstrip())
        return "\n".join(lines)

    def generate_opt_help(self):
        """the options section alone, one aligned line per option."""
        if not (sections := self._sections("Options")):
            return ""
        return self._format(sections[0][1]) + "\n"

    def generate_help(self):
        """
        plain text help: usage line, description, then commands, arguments and
        options with wrapped descriptions, defaults and environment variables.
        """
        blocks = [f"Usage: {self.usage()}"]
        if self.description:
            blocks.append(word_wrap(dedent_trim(self.description), 0, self.wrap))
        for title, rows in self._sections():
            blocks.append(f"{title}:\n{self._format(rows)}")
        return "\n\n".join(blocks) + "\n"

    def print_help(self, console=None, /):
        """
        render the help with rich (to stdout unless a Console is given).
        """
        console = console or Console()
        renders = [Text.assemble(("Usage: ", "bold"), (self.usage(), "bold cyan"))]
        if self.description:
            renders.append(Text(f"\n{dedent_trim(self.description)}"))
        for title, rows in self._sections():
            table = Table.grid(padding=(0, 3, 0, 2))
            table.add_column(style="cyan", no_wrap=True)
            table.add_column(overflow="fold")
            for left, description in rows:
                table.add_row(left, description)
            renders.append(Text(f"\n{title}:", style="bold"))
            renders.append(table)
        console.print(Group(*renders), width=min(console.width, self.wrap))

    def parse_or_exit(self, argv=None, /, **options):
        """
        parse() for entry points.

        - "--help" prints the help and exits with status 1.
        - faults are printed to stderr and exit with status 1 (see trigger()).
        """
        try:
            result = self.parse(argv)
        except (ConfigException, ConfigExit) as fault:
            if self._help_requested():
                self.print_help()
                sys.exit(1)
            trigger(fault, **{"shell": True, **options})
            raise
        if self._help_requested():
            self.print_help()
            sys.exit(1)
        return result

    def _help_requested(self):
        return (rule := self._help_rule()) is not None and rule.seen

    # commands

    def sub_parser(self):
        """
        A parser for the tokens after the matched command.

        Copies name, description, env prefix, prefix chars, wrap width,
        strictness, logger and every rule except commands; the copies have
        their own match state.
        """
        parser = Parser(
            self.name,
            self.description,
            env_prefix=self.env_prefix,
            prefix_chars=self.prefix_chars,
            wrap=self.wrap,
            add_help=self.add_help,
            strict=self.strict,
            logger=self.log,
        )
        for rule in self._rules:
            if rule.has_flag(Flag.COMMAND):
                continue
            parser._rules.append(rule.copy())
            if rule.has_flag(Flag.ARGUMENT):
                parser._positionals = max(parser._positionals, rule.order)
        parser._pending = list(self.remaining)
        return parser

    def run_command(self, data=None, /):
        """
        call the matched command's callback with a sub-parser and data; returns
        its exit code.
        """
        if self.command is None:
            commands = [rule.name for rule in self._rules if rule.has_flag(Flag.COMMAND)]
            raise MissingCommandError(
                "no command was given",
                code=FaultCode.MISSING_COMMAND,
                title="missing command",
                hint=f"choose one of {', '.join(commands)}" if commands else "declare commands with add_command()",
                prog=self.name or None,
            )
        return self.command.command(self.sub_parser(), data)

    def __repr__(self):
        return f"Parser(name={self.name!r}, rules={len(self._rules)})"


__all__ = (
    "TERMINATOR",
    "Parser",
)
