"""Tests for the external type checker step."""

import sys

from codesplit_cli.models import TypeCheckResult, TypeDiagnostic
from codesplit_cli.type_checker import TypeChecker, parse_diagnostics


def _reporting(lines, status=1):
    """A fake checker printing *lines* for the checked path, then exiting with *status*."""
    script = (
        "import sys\n"
        f"for line in {lines!r}:\n"
        "    print(line.format(path=sys.argv[1]))\n"
        f"sys.exit({status})\n"
    )
    return [sys.executable, "-c", script, "{path}"]


class TestParseDiagnostics:
    def test_mypy_and_pyright_lines(self):
        output = (
            "pkg/mod.py:12: error: Incompatible return value type  [return-value]\n"
            "pkg/mod.py:14: note: Revealed type is 'int'\n"
            "  /abs/mod.py:3:5 - error: Expression of type \"int\" is incompatible\n"
            "pkg/mod.py:20:7: error: Name \"x\" is not defined  [name-defined]\n"
            "Found 3 errors in 1 file\n"
        )

        assert parse_diagnostics(output) == [
            TypeDiagnostic("pkg/mod.py", 12, "Incompatible return value type  [return-value]"),
            TypeDiagnostic("/abs/mod.py", 3, 'Expression of type "int" is incompatible'),
            TypeDiagnostic("pkg/mod.py", 20, 'Name "x" is not defined  [name-defined]'),
        ]

    def test_clean_output(self):
        assert parse_diagnostics("Success: no issues found in 1 source file\n") == []


class TestTypeChecker:
    def test_missing_tool_is_reported(self, write_module):
        path = write_module("mod.py", "x = 1\n")

        result = TypeChecker(["codesplit-missing-checker", "{path}"]).check_file(path)

        assert not result.success
        assert result.message == "codesplit-missing-checker is not installed"

    def test_errors_are_collected(self, write_module):
        path = write_module("mod.py", "def f() -> int:\n    return 'x'\n")
        command = _reporting(["{path}:2: error: Incompatible return value type  [return-value]"])

        result = TypeChecker(command).check_file(path)

        assert result.success
        assert not result.is_clean
        assert result.diagnostics == [
            TypeDiagnostic(str(path), 2, "Incompatible return value type  [return-value]")
        ]

    def test_clean_file(self, write_module):
        path = write_module("mod.py", "x = 1\n")

        result = TypeChecker(_reporting(["Success: no issues found"], status=0)).check_file(path)

        assert result.is_clean

    def test_crash_without_diagnostics_is_a_failure(self, write_module):
        path = write_module("mod.py", "x = 1\n")
        command = [sys.executable, "-c", "import sys; sys.exit(2)", "{path}"]

        result = TypeChecker(command).check_file(path)

        assert not result.success
        assert result.message.endswith("exit status 2")

    def test_each_file_gets_a_result(self, write_module):
        paths = [write_module("a.py", "a = 1\n"), write_module("b.py", "b = 1\n")]

        results = TypeChecker(["codesplit-missing-checker", "{path}"]).check_paths(paths)

        assert [r.path for r in results] == [str(p) for p in paths]
        assert not any(r.success for r in results)


class TestPreview:
    def test_first_five_then_count(self):
        diagnostics = [TypeDiagnostic("m.py", n, f"error {n}") for n in range(1, 8)]
        result = TypeCheckResult(path="m.py", success=True, diagnostics=diagnostics)

        assert result.preview() == [
            "Line 1: error 1",
            "Line 2: error 2",
            "Line 3: error 3",
            "Line 4: error 4",
            "Line 5: error 5",
            "... and 2 more",
        ]

    def test_short_list_has_no_count(self):
        result = TypeCheckResult(path="m.py", success=True, diagnostics=[TypeDiagnostic("m.py", 4, "bad")])

        assert result.preview() == ["Line 4: bad"]
