# python
"""
Parser behavioral tests (declaration, matching, resolution, publishing, help).

Scope
- Validate precedence argv > env > backend/ini > default > zero through parse/apply.
- Validate counters, stores, positionals, groups, config groups and terminators.
- Validate strict and lenient handling of unmatched tokens.
- Validate best-effort publication when rules fail, and env cast failures.
- Validate help text, parse_or_exit, commands and sub-parsers.
- Validate from_backend and watch integration with MemoryBackend.

Conventions
- Test method names follow CamelCase per project convention.
- Every parse passes an explicit argv; sys.argv is never consulted.
"""

from __future__ import annotations

import contextlib
import io
import os
import threading
import unittest
from unittest import TestCase, mock

from argus import (
    BackendError,
    CastError,
    ChangeEvent,
    ConfigExit,
    DuplicateRuleError,
    Flag,
    Key,
    MemoryBackend,
    MissingCommandError,
    MissingValueError,
    NoRulesError,
    Options,
    Parser,
    RequiredValueError,
    UnknownArgumentError,
)


class TestPrecedence(TestCase):
    """argv > env > external > default > zero."""

    def testPowerLevelPrecedence(self):
        parser = Parser()
        parser.add_flag("--power-level").is_int().env("POWER_LEVEL")
        backend = MemoryBackend({Key("", "power-level"): "9"})

        with mock.patch.dict(os.environ, {"POWER_LEVEL": "7"}):
            parser.parse(["--power-level", "5"])
            self.assertEqual(parser.from_backend(backend).int("power-level"), 5)
            parser.parse([])
            self.assertEqual(parser.from_backend(backend).int("power-level"), 7)
        self.assertEqual(parser.from_backend(backend).int("power-level"), 9)

    def testDefault(self):
        parser = Parser()
        parser.add_flag("--power-level").is_int().default("10000")
        options = parser.parse([])
        self.assertEqual(options.int("power-level"), 10000)
        self.assertTrue(options.is_default("power-level"))

    def testUnsetValueIsZeroAndNotSet(self):
        parser = Parser()
        parser.add_flag("--name")
        options = parser.parse([])
        self.assertEqual(options.string("name"), "")
        self.assertFalse(options.is_set("name"))

    def testEnvPrefix(self):
        parser = Parser(env_prefix="APP_")
        parser.add_flag("--port").is_int().env("PORT")
        with mock.patch.dict(os.environ, {"APP_PORT": "8080"}):
            options = parser.parse([])
        self.assertEqual(options.int("port"), 8080)
        self.assertTrue(options.is_env("port"))

    def testFirstNonEmptyEnvironmentVariableWins(self):
        parser = Parser()
        parser.add_flag("--host").env("PRIMARY_HOST").env("FALLBACK_HOST")
        with mock.patch.dict(os.environ, {"PRIMARY_HOST": "", "FALLBACK_HOST": "fallback"}):
            self.assertEqual(parser.parse([]).string("host"), "fallback")


class TestMatching(TestCase):
    """argv matching through the parser."""

    def testCount(self):
        parser = Parser()
        parser.add_flag("--verbose").alias("-v").count()
        self.assertEqual(parser.parse(["--verbose", "--verbose", "--verbose"]).int("verbose"), 3)
        self.assertEqual(parser.parse(["-v", "--verbose"]).int("verbose"), 2)
        self.assertEqual(parser.parse([]).int("verbose"), 0)

    def testIsTrue(self):
        parser = Parser()
        parser.add_flag("--debug").is_true()
        self.assertIs(parser.parse(["--debug"]).bool("debug"), True)
        self.assertIs(parser.parse([]).bool("debug"), False)

    def testStoreStringSliceReplaces(self):
        destination = []
        parser = Parser()
        parser.add_flag("--list").store_string_slice(destination)
        parser.parse(["--list", "one,two,three"])
        self.assertEqual(destination, ["one", "two", "three"])

        parser.parse([])
        parser.from_ini("list=six,five,four\n")
        self.assertEqual(destination, ["six", "five", "four"])

    def testStoreIntoAttribute(self):
        class Settings:
            name = ""

        parser = Parser()
        parser.add_flag("--name").store_str(Settings, "name")
        parser.parse(["--name", "bob"])
        self.assertEqual(Settings.name, "bob")

    def testInlineValue(self):
        parser = Parser()
        parser.add_flag("--name")
        self.assertEqual(parser.parse(["--name=bob"]).string("name"), "bob")

    def testMissingValue(self):
        parser = Parser()
        parser.add_flag("--name")
        with self.assertRaises(MissingValueError):
            parser.parse(["--name"])

    def testPositionalsInOrder(self):
        parser = Parser()
        parser.add_argument("source")
        parser.add_argument("dest")
        options = parser.parse(["a", "b"])
        self.assertEqual((options.string("source"), options.string("dest")), ("a", "b"))

    def testPositionalsAfterFlags(self):
        parser = Parser()
        parser.add_flag("--name")
        parser.add_argument("source")
        options = parser.parse(["src", "--name", "bob"])
        self.assertEqual((options.string("source"), options.string("name")), ("src", "bob"))

    def testGreedyPositional(self):
        parser = Parser()
        parser.add_argument("command")
        parser.add_argument("files").greedy()
        options = parser.parse(["copy", "a", "b", "c"])
        self.assertEqual(options.string("command"), "copy")
        self.assertEqual(options.string_slice("files"), ["a", "b", "c"])

    def testBareFlagNameGetsPrefixAliases(self):
        parser = Parser(prefix_chars=("--",))
        parser.add_flag("verbose").is_true()
        self.assertIs(parser.parse(["--verbose"]).bool("verbose"), True)

    def testArbitraryPrefix(self):
        parser = Parser()
        parser.add_flag("++config")
        options = parser.parse(["++config", "file.ini"])
        self.assertEqual(options.string("config"), "file.ini")

    def testTerminatorStopsMatching(self):
        parser = Parser()
        parser.add_flag("--name")
        options = parser.parse(["--name", "bob", "--", "--name", "alice"])
        self.assertEqual(options.string("name"), "bob")
        self.assertEqual(parser.remaining, ["--name", "alice"])

    def testGroups(self):
        parser = Parser()
        parser.in_group("database").add_flag("--host").default("localhost").add_flag("--port").is_int()
        options = parser.parse(["--port", "5432"])
        self.assertEqual(options.group("database").string("host"), "localhost")
        self.assertEqual(options.group("database").int("port"), 5432)

    def testDuplicateRuleRejectedBeforeMatching(self):
        parser = Parser()
        parser.add_flag("--name")
        parser.add_flag("--name")
        with self.assertRaises(DuplicateRuleError):
            parser.parse(["--name", "bob"])

    def testNoRules(self):
        with self.assertRaises(NoRulesError):
            Parser().parse([])


class TestUnmatched(TestCase):
    """Strict and lenient unmatched tokens."""

    def testLenientRecordsUnmatched(self):
        parser = Parser()
        parser.add_flag("--name")
        options = parser.parse(["--nmae", "bob"])
        self.assertEqual(parser.unmatched, ["--nmae", "bob"])
        self.assertEqual(options.string("name"), "")

    def testOptionShapedTokenIsNotPositional(self):
        parser = Parser()
        parser.add_argument("source")
        options = parser.parse(["-x", "src"])
        self.assertEqual(options.string("source"), "src")
        self.assertEqual(parser.unmatched, ["-x"])

    def testNegativeNumberIsPositional(self):
        parser = Parser()
        parser.add_argument("offset").is_int()
        self.assertEqual(parser.parse(["-5"]).int("offset"), -5)

    def testStrictRaisesWithSuggestion(self):
        parser = Parser(strict=True)
        parser.add_flag("--name")
        with self.assertRaises(UnknownArgumentError) as context:
            parser.parse(["--nmae", "bob"])
        self.assertIn("--nmae", str(context.exception))
        self.assertIn("--name", context.exception.options["hint"])


class TestApply(TestCase):
    """Best-effort publication."""

    def testRequiredErrorStillPublishes(self):
        parser = Parser()
        parser.add_flag("--name").required()
        parser.add_flag("--power-level").is_int().default("10000")
        with self.assertRaises(RequiredValueError) as context:
            parser.parse([])
        self.assertIn("name", str(context.exception))
        snapshot = context.exception.options["snapshot"]
        self.assertIs(parser.get_opts(), snapshot)
        self.assertEqual(snapshot.int("power-level"), 10000)
        self.assertTrue(snapshot.has_key("name"))

    def testSeveralErrorsRaisedTogether(self):
        parser = Parser()
        parser.add_flag("--name").required()
        parser.add_flag("--host").required()
        with self.assertRaises(ConfigExit) as context:
            parser.parse([])
        self.assertEqual(len(context.exception.exceptions), 2)
        self.assertIs(context.exception.options["snapshot"], parser.get_opts())

    def testRequiredSatisfiedByIni(self):
        parser = Parser()
        parser.add_flag("--name").required()
        with self.assertRaises(RequiredValueError):
            parser.parse([])
        self.assertEqual(parser.from_ini("name=bob\n").string("name"), "bob")

    def testReappliedSnapshotKeepsRequiredAndDefaults(self):
        parser = Parser()
        parser.add_config("name").required()
        parser.add_config("port").is_int().default("8080")
        parser.add_config("host")
        with self.assertRaises(RequiredValueError):
            parser.parse([])

        event = ChangeEvent(Key("", "host"), "remote")
        with self.assertRaises(RequiredValueError) as context:
            parser.apply(parser.get_opts().from_change_event(event))
        snapshot = context.exception.options["snapshot"]
        self.assertFalse(snapshot.is_set("name"))
        self.assertTrue(snapshot.is_default("port"))
        self.assertEqual(snapshot.int("port"), 8080)
        self.assertEqual(snapshot.string("host"), "remote")

    def testReappliedSnapshotDoesNotFreezeEnvironment(self):
        parser = Parser()
        parser.add_flag("--host").env("APP_HOST")
        with mock.patch.dict(os.environ, {"APP_HOST": "from-env"}):
            self.assertTrue(parser.parse([]).is_env("host"))
        with mock.patch.dict(os.environ, {"APP_HOST": ""}):
            options = parser.apply(parser.get_opts())
        self.assertEqual(options.string("host"), "")
        self.assertFalse(options.is_set("host"))

    def testBadExternalValueDoesNotBlockOthers(self):
        parser = Parser()
        parser.add_config("port").is_int()
        parser.add_config("host")
        with self.assertRaises(CastError) as context:
            parser.from_ini("port=eighty\nhost=localhost\n")
        self.assertEqual(context.exception.options["snapshot"].string("host"), "localhost")

    def testEnvironmentCastErrorAbortsPublication(self):
        parser = Parser()
        parser.add_flag("--port").is_int().env("PORT")
        before = parser.get_opts()
        with mock.patch.dict(os.environ, {"PORT": "eighty"}):
            with self.assertRaises(CastError):
                parser.parse([])
        self.assertIs(parser.get_opts(), before)

    def testSnapshotRepresentsEveryRule(self):
        parser = Parser()
        parser.add_flag("--name")
        parser.add_flag("--count").is_int()
        parser.add_config("host")
        options = parser.parse([])
        self.assertEqual(sorted(options.keys()), ["count", "help", "host", "name"])

    def testSetOptsSwapsSnapshot(self):
        parser = Parser()
        options = Options().set("a", "1")
        parser.set_opts(options)
        self.assertIs(parser.get_opts(), options)
        with self.assertRaises(TypeError):
            parser.set_opts({"a": "1"})


class TestExternalSources(TestCase):
    """ini text and backends."""

    def testIni(self):
        parser = Parser()
        parser.add_config("one")
        parser.add_config("two")
        options = parser.from_ini("one=this is one value\ntwo=this is two value\n")
        self.assertEqual(options.string("one"), "this is one value")
        self.assertEqual(options.string("two"), "this is two value")

    def testIniSections(self):
        parser = Parser()
        parser.in_group("db").add_config("host")
        parser.add_config_group("endpoints")
        options = parser.from_ini("[db]\nhost=localhost\n[endpoints]\nhttp=foo.com\nsmtp=bar.com\n")
        self.assertEqual(options.group("db").string("host"), "localhost")
        self.assertEqual(options.string_map("endpoints"), {"http": "foo.com", "smtp": "bar.com"})

    def testBackendConfigGroupAndKeyName(self):
        parser = Parser()
        parser.add_config_group("endpoints")
        parser.in_group("db").add_config("host").key("hostname")
        backend = MemoryBackend({"endpoints/http": "foo.com", "db/hostname": "localhost"})
        options = parser.from_backend(backend)
        self.assertEqual(options.group("endpoints").to_map(), {"http": "foo.com"})
        self.assertEqual(options.group("db").string("host"), "localhost")

    def testBackendFailuresAreSkipped(self):
        class Broken(MemoryBackend):
            def list(self, key, /, timeout=None):
                raise BackendError("cluster unavailable")

            def get(self, key, /, timeout=None):
                raise ConnectionError("connection refused")

        parser = Parser()
        parser.add_config_group("endpoints")
        parser.add_config("host").default("localhost")
        with self.assertLogs("argus.parser", "WARNING"):
            options = parser.from_backend(Broken())
        self.assertEqual(options.string("host"), "localhost")
        self.assertEqual(options.group("endpoints").to_map(), {})

    def testFindRule(self):
        parser = Parser()
        parser.add_config_group("endpoints")
        parser.in_group("db").add_config("host")
        self.assertTrue(parser.find_rule(Key("endpoints", "anything")).has_flag(Flag.CONFIG_GROUP))
        self.assertEqual(parser.find_rule(Key("db", "host")).name, "host")
        self.assertIsNone(parser.find_rule(Key("db", "port")))
        self.assertIsNone(parser.find_rule(Key("", "host")))

    def testWatchReconcilesSnapshot(self):
        parser = Parser()
        parser.in_group("db").add_config("host").default("localhost")
        parser.parse([])
        backend = MemoryBackend()
        applied = threading.Event()

        def reconcile(event, error):
            if error is None:
                parser.apply(parser.get_opts().from_change_event(event))
                applied.set()

        watcher = parser.watch(backend, reconcile)
        try:
            backend.set(Key("db", "host"), "remote")
            self.assertTrue(applied.wait(5))
            self.assertEqual(parser.get_opts().group("db").string("host"), "remote")
        finally:
            watcher()


class TestHelp(TestCase):
    """Help generation and parse_or_exit."""

    def setUp(self):
        self.parser = Parser("tool", "Does things with power.")
        self.parser.add_flag("--power-level").alias("-p").is_int().default("10000") \
            .env("POWER_LEVEL").help("specify our power level")
        self.parser.add_argument("path").required().help("where to go")

    def testGenerateHelp(self):
        text = self.parser.generate_help()
        self.assertIn("Usage: tool [OPTIONS] path", text)
        self.assertIn("Does things with power.", text)
        self.assertIn("-p, --power-level", text)
        self.assertIn("specify our power level (Default=10000 Env=POWER_LEVEL)", text)
        self.assertIn("--help, -h", text)
        self.assertIn("Arguments:", text)

    def testGenerateOptHelpAligns(self):
        lines = self.parser.generate_opt_help().splitlines()
        self.assertEqual(len(lines), 2)
        self.assertEqual(lines[0].index("specify"), lines[1].index("display"))

    def testPrintHelp(self):
        output = io.StringIO()
        with contextlib.redirect_stdout(output):
            self.parser.print_help()
        self.assertIn("--power-level", output.getvalue())

    def testParseOrExitPrintsHelp(self):
        output = io.StringIO()
        with contextlib.redirect_stdout(output), self.assertRaises(SystemExit) as context:
            self.parser.parse_or_exit(["--help"])
        self.assertEqual(context.exception.code, 1)
        self.assertIn("Usage:", output.getvalue())

    def testParseOrExitRendersFaults(self):
        errors = io.StringIO()
        with contextlib.redirect_stderr(errors), self.assertRaises(SystemExit) as context:
            self.parser.parse_or_exit([])
        self.assertEqual(context.exception.code, 1)
        self.assertIn("required", errors.getvalue())

    def testParseOrExitReturnsOptions(self):
        self.assertEqual(self.parser.parse_or_exit(["here"]).string("path"), "here")

    def testHelpNotAddedWhenDisabled(self):
        parser = Parser(add_help=False)
        parser.add_flag("--name")
        self.assertNotIn("help", parser.parse([]).keys())


class TestCommands(TestCase):
    """Commands and sub-parsers."""

    def setUp(self):
        self.calls = []
        self.parser = Parser("tool", strict=True, wrap=120, env_prefix="TOOL_")
        self.parser.add_flag("--verbose").alias("-v").count()
        self.parser.add_command("create", self.create)

    def create(self, sub, data):
        sub.add_argument("message")
        options = sub.parse()
        self.calls.append((options.string("message"), options.int("verbose"), data))
        return 0

    def testCommandStopsMatching(self):
        options = self.parser.parse(["-v", "create", "hello", "-v"])
        self.assertEqual(options.int("verbose"), 1)
        self.assertEqual(options.sub_commands(), ["create"])
        self.assertEqual(self.parser.remaining, ["hello", "-v"])

    def testRunCommand(self):
        self.parser.parse(["create", "hello", "-v"])
        self.assertEqual(self.parser.run_command("data"), 0)
        self.assertEqual(self.calls, [("hello", 1, "data")])

    def testRunCommandWithoutCommand(self):
        self.parser.parse([])
        with self.assertRaises(MissingCommandError):
            self.parser.run_command()

    def testSubParserCopiesSettings(self):
        self.parser.parse(["create", "x"])
        sub = self.parser.sub_parser()
        self.assertEqual((sub.name, sub.wrap, sub.env_prefix, sub.strict), ("tool", 120, "TOOL_", True))
        self.assertIs(sub.log, self.parser.log)
        self.assertFalse(any(rule.has_flag(Flag.COMMAND) for rule in sub.rules()))
        self.assertEqual(sorted(rule.name for rule in sub.rules()), ["help", "verbose"])
        self.assertIsNot(sub.rules()[0], self.parser.rules()[0])


if __name__ == "__main__":
    unittest.main()
