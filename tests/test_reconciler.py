"""Tests for writing inferred annotations back into modules."""

import pytest

from codesplit_cli.models import AnnotationGap
from codesplit_cli.reconciler import TypeReconciler
from codesplit_cli.type_oracle import TypeOracle
from codesplit_cli.workspace import Workspace


class FakeOracle(TypeOracle):
    """Answers from fixed tables; raises for names listed in ``broken``."""

    def __init__(self, returns=None, parameters=None, bindings=None, broken=()):
        self.returns = returns or {}
        self.parameters = parameters or {}
        self.bindings = bindings or {}
        self.broken = set(broken)

    def return_type(self, module, name):
        if name in self.broken:
            raise ValueError(f"cannot analyse {name}")
        return self.returns.get(name)

    def parameter_type(self, module, function_name, parameter):
        return self.parameters.get(f"{function_name}.{parameter}")

    def binding_type(self, module, name):
        return self.bindings.get(name)


@pytest.fixture
def workspace():
    return Workspace(dry_run=True)


class TestFindGaps:
    def test_gap_kinds(self, make_module, workspace):
        module = make_module(
            "from typing import Any, Final, TypedDict\n"
            "class User(TypedDict):\n    name: str\n"
            "def f(a, b: int):\n    return a\n"
            "g = lambda x: x\n"
            "CACHE: Any = {}\n"
            "TITLE: Final[str] = 'Hi'\n"
        )
        gaps = TypeReconciler(workspace, FakeOracle()).find_gaps(module, is_types_module=True)

        assert gaps == [
            AnnotationGap("User", "export"),
            AnnotationGap("f", "return"),
            AnnotationGap("g", "binding"),
            AnnotationGap("f", "parameter", parameter="a"),
            AnnotationGap("CACHE", "broad"),
            AnnotationGap("TITLE", "literal"),
        ]

    def test_export_gaps_only_for_types_module(self, make_module, workspace):
        module = make_module("from typing import TypedDict\nclass User(TypedDict):\n    name: str\n")

        assert TypeReconciler(workspace, FakeOracle()).find_gaps(module) == []


class TestReconcile:
    """Tests for TypeReconciler.reconcile."""

    def test_length_limit_is_exclusive(self, make_module, workspace):
        module = make_module("def f():\n    pass\n\n\ndef g():\n    pass\n")
        oracle = FakeOracle(returns={"f": "list[int]", "g": "tuple[int]"})

        report = TypeReconciler(workspace, oracle, type_text_limit=10).reconcile(module)

        assert "def f() -> list[int]:" in module.code
        assert "def g():" in module.code
        (skipped,) = report.skipped
        assert skipped.name == "g"
        assert "limit 10" in skipped.reason

    @pytest.mark.parametrize("answer, reason", [
        ("Any", "inferred type is Any"),
        (None, "type checker gave no answer"),
    ])
    def test_rejected_answers(self, make_module, workspace, answer, reason):
        module = make_module("def f():\n    pass\n")

        report = TypeReconciler(workspace, FakeOracle(returns={"f": answer})).reconcile(module)

        assert module.code == "def f():\n    pass\n"
        assert report.skipped[0].reason == reason
        assert not report.saved

    def test_parameter_with_default(self, make_module, workspace):
        module = make_module("def f(x=0):\n    return x\n")
        oracle = FakeOracle(returns={"f": "int"}, parameters={"f.x": "int"})

        report = TypeReconciler(workspace, oracle).reconcile(module)

        assert module.code == "def f(x: int = 0) -> int:\n    return x\n"
        assert report.written == 2
        assert report.saved

    def test_lambda_binding_becomes_callable(self, make_module, workspace):
        module = make_module("add = lambda a, b: a + b\n")
        oracle = FakeOracle(returns={"add": "int"}, parameters={"add.a": "int", "add.b": "int"})

        TypeReconciler(workspace, oracle).reconcile(module)

        assert module.code == "from typing import Callable\nadd: Callable[[int, int], int] = lambda a, b: a + b\n"

    def test_lambda_with_unknown_parameter(self, make_module, workspace):
        module = make_module("from typing import Callable\nadd = lambda a: a\n")
        oracle = FakeOracle(returns={"add": "str"}, parameters={"add.a": "Any"})

        TypeReconciler(workspace, oracle).reconcile(module)

        assert module.code == "from typing import Callable\nadd: Callable[..., str] = lambda a: a\n"

    def test_broad_annotation_narrowed(self, make_module, workspace):
        module = make_module("from typing import Any\n\nLIMITS: Any = [1, 2]\n")

        TypeReconciler(workspace, FakeOracle(bindings={"LIMITS": "list[int]"})).reconcile(module)

        assert "LIMITS: list[int] = [1, 2]" in module.code

    def test_final_string_sharpened(self, make_module, workspace):
        module = make_module('from typing import Final\n\nTITLE: Final[str] = "Hi"\n')

        report = TypeReconciler(workspace, FakeOracle()).reconcile(module)

        assert module.code == 'from typing import Final, Literal\n\nTITLE: Final[Literal["Hi"]] = "Hi"\n'
        assert report.written == 1

    def test_qualified_final_uses_qualified_literal(self, make_module, workspace):
        module = make_module("import typing\n\nMODE: typing.Final[str] = 'fast'\n")

        TypeReconciler(workspace, FakeOracle()).reconcile(module)

        assert module.code == "import typing\n\nMODE: typing.Final[typing.Literal['fast']] = 'fast'\n"

    def test_long_literal_not_sharpened(self, make_module, workspace):
        source = f'from typing import Final\n\nTEXT: Final[str] = "{"x" * 120}"\n'
        module = make_module(source)

        report = TypeReconciler(workspace, FakeOracle()).reconcile(module)

        assert module.code == source
        assert not report.saved

    def test_forward_reference_skipped_without_future_import(self, make_module, workspace):
        source = "def make():\n    return Later()\n\n\nclass Later:\n    pass\n"
        module = make_module(source)

        report = TypeReconciler(workspace, FakeOracle(returns={"make": "Later"})).reconcile(module)

        assert module.code == source
        assert report.skipped[0].reason == "Later is defined later in the module"

    def test_forward_reference_allowed_with_future_import(self, make_module, workspace):
        module = make_module(
            "from __future__ import annotations\n\n\ndef make():\n    return Later()\n\n\nclass Later:\n    pass\n"
        )

        TypeReconciler(workspace, FakeOracle(returns={"make": "Later"})).reconcile(module)

        assert "def make() -> Later:" in module.code

    def test_one_failure_does_not_stop_the_rest(self, make_module, workspace):
        module = make_module("def bad():\n    pass\n\n\ndef good():\n    pass\n")
        oracle = FakeOracle(returns={"good": "str"}, broken=["bad"])

        report = TypeReconciler(workspace, oracle).reconcile(module)

        assert "def good() -> str:" in module.code
        assert report.written == 1
        assert report.skipped[0].name == "bad"
        assert report.skipped[0].reason.startswith("ValueError")

    def test_unparsable_answer_is_skipped(self, make_module, workspace):
        module = make_module("def f():\n    pass\n")

        report = TypeReconciler(workspace, FakeOracle(returns={"f": "list[int"})).reconcile(module)

        assert module.code == "def f():\n    pass\n"
        assert report.written == 0

    def test_nothing_written_means_nothing_saved(self, write_module):
        path = write_module("mod.py", "def f():\n    pass\n")
        workspace = Workspace()
        module = workspace.load(path)

        report = TypeReconciler(workspace, FakeOracle(returns={"f": "Any"})).reconcile(module)

        assert not report.saved
        assert workspace.touched == []
        assert path.read_text(encoding="utf-8") == "def f():\n    pass\n"

    def test_types_module_exports_missing_types(self, make_module, workspace):
        module = make_module(
            '__all__ = ["User"]\n'
            "from typing import TypedDict\n"
            "class User(TypedDict):\n    name: str\n"
            "class Team(TypedDict):\n    name: str\n"
        )

        TypeReconciler(workspace, FakeOracle()).reconcile(module, is_types_module=True)

        assert '"User",\n    "Team",' in module.code

    def test_real_oracle_on_helpers(self, make_module, workspace):
        module = make_module(
            "def get_color(role: str):\n"
            "    if role == 'admin':\n"
            "        return 'red'\n"
            "    return 'gray'\n"
        )

        TypeReconciler(workspace).reconcile(module)

        assert "def get_color(role: str) -> str:" in module.code

    def test_default_limit_boundary(self, make_module, workspace):
        accepted = "list[" + "A" * 93 + "]"
        rejected = "list[" + "A" * 94 + "]"
        assert (len(accepted), len(rejected)) == (99, 100)
        module = make_module("def f():\n    pass\n\n\ndef g():\n    pass\n")

        report = TypeReconciler(workspace, FakeOracle(returns={"f": accepted, "g": rejected})).reconcile(module)

        assert f"def f() -> {accepted}:" in module.code
        assert "def g():" in module.code
        assert [r.name for r in report.skipped] == ["g"]

    def test_final_constant_does_not_leak_qualifier(self, make_module, workspace):
        module = make_module(
            "from typing import Final\n"
            "\n"
            'TITLE: Final[str] = "x"\n'
            "\n"
            "\n"
            "def get_title():\n"
            "    return TITLE\n"
            "\n"
            "\n"
            "def show(value):\n"
            "    print(value)\n"
            "\n"
            "\n"
            "show(TITLE)\n"
        )

        TypeReconciler(workspace).reconcile(module)

        code = module.code
        assert "def get_title() -> str:" in code
        assert "def show(value: str) -> None:" in code
        assert 'TITLE: Final[Literal["x"]] = "x"' in code
        assert "-> Final" not in code
        assert "value: Final" not in code
