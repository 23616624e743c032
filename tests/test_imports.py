"""Tests for the reference rewriter and name-usage analysis."""

from pathlib import Path

import pytest

from codesplit_cli.imports import (
    ImportRewriter,
    collect_imports,
    import_bindings,
    name_usage,
    resolve_relative,
    to_module_specifier,
)


class TestModuleSpecifier:
    """Tests for relative and absolute specifier computation."""

    @pytest.mark.parametrize("from_file, to_file, expected", [
        ("pkg/dashboard.py", "pkg/dashboard_types.py", ".dashboard_types"),
        ("pkg/ui/dashboard.py", "pkg/models/types.py", "..models.types"),
        ("pkg/dashboard.py", "pkg/sub/helpers.py", ".sub.helpers"),
        ("pkg/dashboard.py", "pkg/sub/__init__.py", ".sub"),
        ("pkg/sub/dashboard.py", "pkg/types.pyi", "..types"),
    ])
    def test_relative(self, temp_dir, package_layout, from_file, to_file, expected):
        package_layout(from_file, to_file)

        assert to_module_specifier(temp_dir / from_file, temp_dir / to_file) == expected

    def test_script_outside_package_uses_module_name(self, temp_dir):
        assert to_module_specifier(temp_dir / "script.py", temp_dir / "script_types.py") == "script_types"

    def test_script_reaches_subdirectory_by_dotted_path(self, temp_dir):
        (temp_dir / "models").mkdir()

        assert to_module_specifier(temp_dir / "script.py", temp_dir / "models" / "shapes.py") == "models.shapes"

    def test_target_above_package_uses_dotted_path(self, temp_dir, package_layout):
        package_layout("pkg/app.py")

        assert to_module_specifier(temp_dir / "pkg" / "app.py", temp_dir / "shared.py") == "shared"

    def test_absolute_walks_up_packages(self, temp_dir):
        pkg = temp_dir / "app" / "ui"
        pkg.mkdir(parents=True)
        (temp_dir / "app" / "__init__.py").write_text("")
        (pkg / "__init__.py").write_text("")

        specifier = to_module_specifier(pkg / "dashboard.py", pkg / "dashboard_types.py", style="absolute")

        assert specifier == "app.ui.dashboard_types"

    def test_resolve_relative(self):
        assert resolve_relative(Path("pkg/ui/a.py"), "..models.t") == Path("pkg/models/t")
        assert resolve_relative(Path("pkg/a.py"), ".") == Path("pkg")

    def test_unknown_style_rejected(self):
        with pytest.raises(ValueError):
            ImportRewriter("sideways")


class TestEnsureFromImport:
    """Tests for merging names into a single binding."""

    def test_inserts_after_leading_imports(self, make_module):
        module = make_module('"""Doc."""\n\nimport os\n\n\ndef f():\n    return os.sep\n')
        ImportRewriter().ensure_from_import(module, ".helpers", ["a"])

        assert module.code == (
            '"""Doc."""\n\nimport os\nfrom .helpers import a\n\n\ndef f():\n    return os.sep\n'
        )

    def test_inserts_after_docstring(self, make_module):
        module = make_module('"""Doc."""\nVALUE = 1\n')
        ImportRewriter().ensure_from_import(module, ".helpers", ["a"])

        assert module.code == '"""Doc."""\n\nfrom .helpers import a\nVALUE = 1\n'

    @pytest.mark.parametrize("batches", [
        [["A", "B"], ["B", "C"], ["A"]],
        [["C"], ["A", "C"], ["B", "B"]],
        [["A"], ["A"], ["A"], ["B", "C"]],
    ])
    def test_merge_is_union_without_duplicates(self, make_module, batches):
        module = make_module("x = 1\n")
        rewriter = ImportRewriter()
        for names in batches:
            rewriter.ensure_from_import(module, ".target", names)

        bindings = [b for b in import_bindings(module) if b.module == ".target"]
        assert len(bindings) == 1
        assert sorted(bindings[0].names) == ["A", "B", "C"]
        assert len(bindings[0].names) == len(set(bindings[0].names))

    def test_merge_keeps_first_seen_order(self, make_module):
        module = make_module("x = 1\n")
        rewriter = ImportRewriter()
        rewriter.ensure_from_import(module, ".target", ["B", "A"])
        rewriter.ensure_from_import(module, ".target", ["C", "A"])

        assert "from .target import B, A, C\n" in module.code

    def test_repeated_merge_is_idempotent(self, make_module):
        module = make_module("from .target import A\n\nx = A\n")
        rewriter = ImportRewriter()
        rewriter.ensure_from_import(module, ".target", ["A"])

        assert module.code == "from .target import A\n\nx = A\n"

    def test_duplicate_bindings_collapse(self, make_module):
        module = make_module("from .t import A\nfrom .t import B\n\nx = 1\n")
        ImportRewriter().ensure_from_import(module, ".t", ["C"])

        assert module.code == "from .t import A, B, C\n\nx = 1\n"

    def test_aliases_survive_merge(self, make_module):
        module = make_module("from .t import A as Alpha\n")
        ImportRewriter().ensure_from_import(module, ".t", ["B"])

        assert module.code == "from .t import A as Alpha, B\n"

    def test_long_import_wraps(self, make_module):
        module = make_module("x = 1\n")
        names = [f"very_long_helper_name_{i}" for i in range(6)]
        ImportRewriter().ensure_from_import(module, ".helpers", names)

        assert "from .helpers import (\n    very_long_helper_name_0,\n" in module.code
        assert import_bindings(module)[0].names == tuple(names)

    def test_type_only_creates_guard(self, make_module):
        module = make_module("from __future__ import annotations\n\n\ndef f(x: A) -> A:\n    return x\n")
        ImportRewriter().ensure_from_import(module, ".t", ["A"], type_only=True)

        assert module.code == (
            "from __future__ import annotations\n"
            "from typing import TYPE_CHECKING\n"
            "\n"
            "if TYPE_CHECKING:\n"
            "    from .t import A\n"
            "\n"
            "\n"
            "def f(x: A) -> A:\n"
            "    return x\n"
        )
        (binding,) = [b for b in import_bindings(module) if b.module == ".t"]
        assert binding.type_only

    def test_type_only_reuses_guard_and_typing_import(self, make_module):
        source = (
            "from typing import TYPE_CHECKING, Any\n"
            "if TYPE_CHECKING:\n"
            "    from .a import A\n"
        )
        module = make_module(source)
        ImportRewriter().ensure_from_import(module, ".b", ["B"], type_only=True)

        assert module.code == source + "    from .b import B\n"

    def test_runtime_need_promotes_type_only_binding(self, make_module):
        module = make_module(
            "from typing import TYPE_CHECKING\n"
            "if TYPE_CHECKING:\n"
            "    from .t import A\n"
            "\n"
            "x = 1\n"
        )
        binding = ImportRewriter().ensure_from_import(module, ".t", ["B"])

        assert binding.names == ("A", "B")
        assert not binding.type_only
        assert "if TYPE_CHECKING" not in module.code
        assert [b for b in import_bindings(module) if b.module == ".t"] == [binding]

    def test_type_only_request_joins_runtime_binding(self, make_module):
        module = make_module("from .t import A\n")
        binding = ImportRewriter().ensure_from_import(module, ".t", ["B"], type_only=True)

        assert not binding.type_only
        assert module.code == "from .t import A, B\n"

    def test_star_import_left_alone(self, make_module):
        module = make_module("from .t import *\n")
        ImportRewriter().ensure_from_import(module, ".t", ["A"])

        assert module.code == "from .t import *\n"


class TestRewriteReferences:
    """Tests for rewrite_references on real paths."""

    def test_specifier_from_paths(self, temp_dir, make_module):
        origin = make_module("x = 1\n", "pkg/dashboard.py")
        binding = ImportRewriter().rewrite_references(origin, temp_dir / "pkg" / "dashboard_utils.py", ["helper"])

        assert binding.module == ".dashboard_utils"
        assert "from .dashboard_utils import helper\n" in origin.code


class TestEnsureModuleImport:
    def test_adds_once(self, make_module):
        module = make_module("x = 1\n")
        rewriter = ImportRewriter()
        rewriter.ensure_module_import(module, "os.path")
        rewriter.ensure_module_import(module, "os.path")
        rewriter.ensure_module_import(module, "numpy", "np")

        assert module.code == "import os.path\nimport numpy as np\nx = 1\n"


class TestCarryImports:
    """Tests for copying origin imports into a target module."""

    def test_carries_only_referenced(self, make_module):
        origin = make_module(
            "import os\nfrom datetime import datetime, date\nfrom typing import Any\n",
            "pkg/origin.py",
        )
        target = make_module('"""Target."""\n', "pkg/target.py")

        carried = ImportRewriter().carry_imports(origin, target, ["datetime", "os", "missing"])

        assert carried == ["datetime", "os"]
        assert "from datetime import datetime\n" in target.code
        assert "import os\n" in target.code
        assert "Any" not in target.code

    def test_relative_import_retargeted(self, make_module):
        origin = make_module("from .models import User\n", "pkg/ui/origin.py")
        target = make_module("x = 1\n", "pkg/shared/target.py")

        ImportRewriter().carry_imports(origin, target, ["User"])

        assert "from ..ui.models import User\n" in target.code

    def test_self_import_skipped(self, make_module):
        origin = make_module("from .target import helper\n", "pkg/origin.py")
        target = make_module("def helper():\n    pass\n", "pkg/target.py")

        assert ImportRewriter().carry_imports(origin, target, ["helper"]) == []

    def test_script_self_import_skipped(self, make_module):
        origin = make_module("from script_utils import helper\n", "script.py")
        target = make_module("def helper():\n    pass\n", "script_utils.py")

        assert ImportRewriter().carry_imports(origin, target, ["helper"]) == []

    def test_type_checking_placement_preserved(self, make_module):
        origin = make_module(
            "from typing import TYPE_CHECKING\nif TYPE_CHECKING:\n    from .t import A\n",
            "pkg/origin.py",
        )
        target = make_module("from __future__ import annotations\n", "pkg/target.py")

        ImportRewriter().carry_imports(origin, target, ["A"])

        (binding,) = [b for b in import_bindings(target) if b.module == ".t"]
        assert binding.type_only

    def test_collect_imports_marks_guarded(self, make_module):
        module = make_module(
            "import os.path\nfrom x import y as z\nif TYPE_CHECKING:\n    from .t import A\n"
        )
        found = collect_imports(module)

        assert found["os"].module == "os.path"
        assert found["z"].entry == "y as z"
        assert found["A"].type_only


class TestNameUsage:
    """Tests for runtime vs annotation name analysis."""

    def test_annotations_vs_runtime(self):
        usage = name_usage("def f(a: User, b=DEFAULT) -> Result:\n    return helper(a)\n")

        assert set(usage.annotation) == {"User", "Result"}
        assert {"DEFAULT", "helper"} <= set(usage.runtime)
        assert "a" in usage.bound

    def test_free_excludes_locals_and_builtins(self):
        usage = name_usage("def f(items):\n    total = len(items)\n    return total + OFFSET\n")

        assert usage.free == ["OFFSET"]

    def test_string_annotations(self):
        usage = name_usage("def f(a: 'Optional[User]') -> None:\n    pass\n")

        assert {"Optional", "User"} <= set(usage.annotation)

    def test_class_body_annotations_are_runtime(self):
        usage = name_usage("class A(TypedDict):\n    role: Role\n")

        assert "Role" in usage.runtime
        assert "TypedDict" in usage.runtime

    def test_runtime_free(self):
        usage = name_usage("def f(x: User) -> None:\n    FormData(x)\n")

        assert usage.runtime_free == ["FormData"]
