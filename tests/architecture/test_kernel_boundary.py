"""
Kernel Boundary & Invariants Contract.

Tests that enforce the kernel's architectural boundaries:

1. crm_kernel/** may NOT import crm_services or crm_config.  The kernel
   never depends upward; configuration reaches it as constructor arguments.

2. crm_kernel/domain/** is pure: no database, HTTP or crypto libraries and
   no imports of kernel services or selectors.

3. Only crm_kernel and crm_services perform HTTP or write the ledger
   tables; crm_config stays free of both.

4. The kernel invariants declaration is complete and non-empty.

These tests read source code via AST; they cannot break anything.
"""

import ast
from pathlib import Path

from crm_kernel.invariants import (
    ALL_KERNEL_INVARIANTS,
    FORBIDDEN_KERNEL_IMPORTS,
    KernelInvariant,
)

REPO_ROOT = Path(__file__).resolve().parents[2]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _python_files(package: str) -> list[Path]:
    return sorted((REPO_ROOT / package).rglob("*.py"))


def _extract_imports(filepath: Path) -> list[tuple[int, str]]:
    """Extract (line_number, module_string) for all imports in a file."""
    tree = ast.parse(filepath.read_text(), filename=str(filepath))

    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom):
            if node.module:
                results.append((node.lineno, node.module))
    return results


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    found: list[str] = []
    for filepath in _python_files(package):
        for lineno, module in _extract_imports(filepath):
            for prefix in forbidden:
                if module == prefix or module.startswith(f"{prefix}."):
                    found.append(f"  {filepath.relative_to(REPO_ROOT)}:{lineno} imports '{module}'")
    return found


# ---------------------------------------------------------------------------
# Test: Kernel has no upward dependencies
# ---------------------------------------------------------------------------

class TestKernelNoUpwardDependencies:

    def test_kernel_does_not_import_forbidden_packages(self):
        violations = _violations("crm_kernel", FORBIDDEN_KERNEL_IMPORTS)

        assert not violations, (
            "Kernel boundary violation: crm_kernel/** must not import "
            "upward packages:\n" + "\n".join(violations)
        )

    def test_forbidden_list_covers_upper_layers(self):
        assert set(FORBIDDEN_KERNEL_IMPORTS) == {"crm_services", "crm_config"}


# ---------------------------------------------------------------------------
# Test: Domain purity
# ---------------------------------------------------------------------------

class TestDomainPurity:

    FORBIDDEN = (
        "sqlalchemy",
        "requests",
        "cryptography",
        "crm_kernel.services",
        "crm_kernel.selectors",
        "crm_kernel.db.engine",
        "crm_kernel.db.immutability",
        "crm_kernel.db.triggers",
    )

    def test_domain_has_no_io_imports(self):
        violations = _violations("crm_kernel/domain", self.FORBIDDEN)

        assert not violations, (
            "Domain purity violation: crm_kernel/domain/** must stay free "
            "of I/O:\n" + "\n".join(violations)
        )


# ---------------------------------------------------------------------------
# Test: Configuration layer stays passive
# ---------------------------------------------------------------------------

class TestConfigBoundary:

    def test_config_does_not_reach_services_or_io(self):
        violations = _violations(
            "crm_config", ("crm_services", "requests", "sqlalchemy", "crm_kernel.services")
        )

        assert not violations, (
            "crm_config must only load and parse configuration:\n" + "\n".join(violations)
        )

    def test_http_only_in_dispatcher(self):
        importers = {
            str(path.relative_to(REPO_ROOT))
            for package in ("crm_kernel", "crm_services", "crm_config")
            for path in _python_files(package)
            if any(
                module == "requests" or module.startswith("requests.")
                for _, module in _extract_imports(path)
            )
        }

        assert importers == {"crm_services/webhook_dispatcher.py"}


# ---------------------------------------------------------------------------
# Test: Invariants declaration
# ---------------------------------------------------------------------------

class TestKernelInvariantsDeclaration:

    REQUIRED = {
        "NO_OVERSELL",
        "MOVEMENT_CONSISTENCY",
        "LEDGER_ATOMICITY",
        "APPEND_ONLY",
        "PRICE_FREEZE",
        "CONTAINED_DELIVERY",
    }

    def test_invariants_declared(self):
        assert {inv.name for inv in KernelInvariant} == self.REQUIRED

    def test_all_invariants_frozenset_complete(self):
        assert ALL_KERNEL_INVARIANTS == frozenset(KernelInvariant)
        assert len(ALL_KERNEL_INVARIANTS) == len(self.REQUIRED)

    def test_values_are_snake_case(self):
        for inv in KernelInvariant:
            assert inv.value == inv.name.lower()
