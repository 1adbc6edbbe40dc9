"""
Import-boundary enforcement for the billing layers.

1. Engine purity      -- billing_engines/** may not import the ORM, the
                         store, services or modules.
2. Engine no-impure   -- billing_engines/** may not read the wall clock or
                         the environment.
3. Kernel boundary    -- billing_kernel/** may not import outer layers at
                         module level.
4. Module boundary    -- billing_modules/** may not import billing_services.

All scanning is done via AST; these tests are read-only.
"""

import ast
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _python_files(package: str) -> list[Path]:
    return sorted((ROOT / package).rglob("*.py"))


def _parse(path: Path) -> ast.Module:
    return ast.parse(path.read_text(), filename=str(path))


def _imports(nodes) -> list[tuple[int, str]]:
    results: list[tuple[int, str]] = []
    for node in nodes:
        if isinstance(node, ast.Import):
            results.extend((node.lineno, alias.name) for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and node.module:
            results.append((node.lineno, node.module))
    return results


def _matches_any(module: str, prefixes: tuple[str, ...]) -> bool:
    return any(module == p or module.startswith(f"{p}.") for p in prefixes)


def _violations(package: str, prefixes: tuple[str, ...], top_level_only: bool = False) -> list[str]:
    found: list[str] = []
    for path in _python_files(package):
        tree = _parse(path)
        nodes = tree.body if top_level_only else ast.walk(tree)
        for lineno, module in _imports(nodes):
            if _matches_any(module, prefixes):
                found.append(f"  {path.relative_to(ROOT)}:{lineno} imports '{module}'")
    return found


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestEnginePurity:

    FORBIDDEN_PREFIXES = (
        "sqlalchemy",
        "psycopg2",
        "sqlite3",
        "billing_kernel.models",
        "billing_kernel.services",
        "billing_kernel.db.engine",
        "billing_kernel.db.base",
        "billing_modules",
        "billing_services",
    )

    def test_engine_files_have_no_forbidden_imports(self):
        violations = _violations("billing_engines", self.FORBIDDEN_PREFIXES)
        assert not violations, (
            "billing_engines/** must stay pure:\n" + "\n".join(violations)
        )


class TestEngineNoImpureFunctions:

    FORBIDDEN_CALLS = frozenset({
        "datetime.now",
        "datetime.utcnow",
        "date.today",
        "time.time",
        "os.environ",
        "os.getenv",
    })

    def test_engines_do_not_read_clock_or_environment(self):
        violations: list[str] = []
        for path in _python_files("billing_engines"):
            for node in ast.walk(_parse(path)):
                if isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name):
                    ref = f"{node.value.id}.{node.attr}"
                    if ref in self.FORBIDDEN_CALLS:
                        violations.append(f"  {path.relative_to(ROOT)}:{node.lineno} uses {ref}")
        assert not violations, "\n".join(violations)


class TestKernelBoundary:

    def test_kernel_does_not_import_outer_layers(self):
        violations = _violations(
            "billing_kernel",
            ("billing_engines", "billing_modules", "billing_services"),
            top_level_only=True,
        )
        assert not violations, (
            "billing_kernel/** must not import outer layers at module level:\n"
            + "\n".join(violations)
        )


class TestModuleBoundary:

    def test_modules_do_not_import_services(self):
        violations = _violations("billing_modules", ("billing_services",))
        assert not violations, "\n".join(violations)
