# python
"""
Options container behavioral tests (groups, typed accessors, change events).

Scope
- Validate group() never fails (missing, nested, bound to a scalar).
- Validate typed accessors return zero values instead of raising.
- Validate source introspection, required(), to_map() and from_change_event().

Conventions
- Test method names follow CamelCase per project convention.
"""

from __future__ import annotations

import os
import unittest
from unittest import TestCase

from argus import ChangeEvent, Key, Options, RequiredValueError, Source, Value, ValueKind


class TestGroups(TestCase):
    """Options.group() behavior."""

    def testMissingGroupIsEmpty(self):
        self.assertEqual(Options().group("missing").to_map(), {})

    def testMissingGroupIsCreated(self):
        options = Options()
        options.group("db").set("host", "localhost")
        self.assertEqual(options.to_map(), {"db": {"host": "localhost"}})

    def testEmptyNameIsSelf(self):
        options = Options()
        self.assertIs(options.group(""), options)

    def testScalarGroupLogsAndDetaches(self):
        options = Options().set("host", "localhost")
        with self.assertLogs("argus.options", "WARNING"):
            group = options.group("host")
        group.set("port", "80")
        self.assertEqual(options.to_map(), {"host": "localhost"})

    def testStringMapBecomesGroup(self):
        options = Options({"db": {"host": "x"}})
        self.assertEqual(options.group("db").string("host"), "x")
        options.group("db").set("port", "5432")
        self.assertEqual(options.to_map(), {"db": {"host": "x", "port": "5432"}})

    def testFromMapNestsGroups(self):
        options = Options.from_map({"name": "bob", "db": {"host": "localhost"}})
        self.assertEqual(options.group("db").string("host"), "localhost")
        self.assertEqual(options.string("name"), "bob")


class TestAccessors(TestCase):
    """Typed accessors never raise."""

    def testMissingKeyYieldsZero(self):
        options = Options()
        self.assertEqual(options.int("missing"), 0)
        self.assertEqual(options.string("missing"), "")
        self.assertIs(options.bool("missing"), False)
        self.assertEqual(options.string_slice("missing"), [])
        self.assertEqual(options.string_map("missing"), {})

    def testUncastableValueLogsAndYieldsZero(self):
        options = Options().set("power-level", "over9000")
        with self.assertLogs("argus.options", "WARNING") as logs:
            self.assertEqual(options.int("power-level"), 0)
        self.assertIn("power-level", logs.output[0])

    def testMismatchedPayloadLogsAndYieldsZero(self):
        options = Options().set("files", Value(ValueKind.STRING, ["a", "b"], Source.ARGV))
        with self.assertLogs("argus.options", "WARNING"):
            self.assertEqual(options.string("files"), "")

    def testGroupKeyLogsAndYieldsZero(self):
        options = Options()
        options.group("db")
        with self.assertLogs("argus.options", "WARNING"):
            self.assertEqual(options.string("db"), "")

    def testStringValuesCast(self):
        options = Options().set("port", "80").set("debug", "true").set("hosts", "a,b")
        self.assertEqual(options.int("port"), 80)
        self.assertIs(options.bool("debug"), True)
        self.assertEqual(options.string_slice("hosts"), ["a", "b"])

    def testStringMapOfGroup(self):
        options = Options()
        options.group("endpoints").set("http", "foo.com").set("port", 80)
        self.assertEqual(options.string_map("endpoints"), {"http": "foo.com", "port": "80"})

    def testFilePathExpandsHome(self):
        options = Options().set("path", "~/config.ini")
        self.assertEqual(options.file_path("path"), os.path.expanduser("~/config.ini"))
        self.assertEqual(options.file_path("missing"), "")

    def testKeySlice(self):
        options = Options()
        options.group("db").set("host", "h").set("port", "1")
        self.assertEqual(options.key_slice("db"), ["host", "port"])


class TestIntrospection(TestCase):
    """Source flags, seen() and required()."""

    def setUp(self):
        self.options = Options()
        self.options.set("arg", Value(ValueKind.STRING, "a", Source.ARGV))
        self.options.set("env", Value(ValueKind.STRING, "e", Source.ENV))
        self.options.set("default", Value(ValueKind.STRING, "d", Source.DEFAULT))
        self.options.set("zero", Value.zero(ValueKind.STRING))

    def testSourceFlags(self):
        self.assertTrue(self.options.is_arg("arg"))
        self.assertTrue(self.options.was_seen("arg"))
        self.assertTrue(self.options.is_env("env"))
        self.assertFalse(self.options.is_arg("env"))
        self.assertTrue(self.options.is_default("default"))

    def testZeroIsNotSet(self):
        self.assertTrue(self.options.is_set("default"))
        self.assertFalse(self.options.is_set("zero"))
        self.assertFalse(self.options.is_set("missing"))

    def testSeen(self):
        self.assertTrue(self.options.seen())
        self.assertFalse(Options().set("x", "1").seen())
        self.assertTrue(Options().set("x", "1").no_args())

    def testRequiredNamesEveryMissingKey(self):
        with self.assertRaises(RequiredValueError) as context:
            self.options.required(["arg", "zero", "missing"])
        self.assertIn("'zero'", str(context.exception))
        self.assertIn("'missing'", str(context.exception))
        self.assertNotIn("'arg'", str(context.exception))

    def testInspect(self):
        self.assertEqual(self.options.inspect("env"), Value(ValueKind.STRING, "e", Source.ENV))
        self.assertIsNone(self.options.inspect("missing"))


class TestConversion(TestCase):
    """to_map, to_string and change events."""

    def testToMapNested(self):
        options = Options().set("name", "bob").set("count", 3)
        options.group("db").set("hosts", ["a", "b"])
        self.assertEqual(options.to_map(), {"name": "bob", "count": 3, "db": {"hosts": ["a", "b"]}})

    def testToStringSorted(self):
        options = Options().set("b", "2").set("a", "1")
        self.assertEqual(options.to_string(), "{\n  a: 1\n  b: 2\n}")

    def testChangeEventSetsCopy(self):
        options = Options().set("host", "old")
        updated = options.from_change_event(ChangeEvent(Key("", "host"), "new"))
        self.assertEqual(updated.string("host"), "new")
        self.assertEqual(options.string("host"), "old")

    def testChangeEventInGroup(self):
        updated = Options().from_change_event(ChangeEvent(Key("db", "host"), "localhost"))
        self.assertEqual(updated.group("db").string("host"), "localhost")

    def testDeletedChangeEventRemovesKey(self):
        options = Options()
        options.group("db").set("host", "localhost").set("port", "5432")
        updated = options.from_change_event(ChangeEvent(Key("db", "host"), "localhost", deleted=True))
        self.assertEqual(updated.to_map(), {"db": {"port": "5432"}})
        self.assertEqual(options.group("db").keys(), ["host", "port"])

    def testEquality(self):
        self.assertEqual(Options().set("a", "1"), Options.from_map({"a": "1"}))


if __name__ == "__main__":
    unittest.main()
