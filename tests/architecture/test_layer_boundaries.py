"""
Layer boundary contract.

1. booking_kernel/** may NOT import booking_engines, booking_config or
   booking_services. The kernel never depends upward.

2. booking_engines/** is pure: it may import only the kernel domain,
   exceptions and logging, never stores, models, db or services.

3. booking_kernel/domain/** has no I/O dependencies (no SQLAlchemy, no
   YAML, no kernel services).

4. booking_config/** never imports booking_services.

These tests read source code via AST; they cannot break anything.
"""

import ast
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]


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
        elif isinstance(node, ast.ImportFrom) and node.module:
            results.append((node.lineno, node.module))
    return results


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    found = []
    for filepath in _python_files(package):
        for lineno, module in _extract_imports(filepath):
            for prefix in forbidden:
                if module == prefix or module.startswith(f"{prefix}."):
                    found.append(f"  {filepath.relative_to(REPO_ROOT)}:{lineno} imports '{module}'")
    return found


class TestKernelNoUpwardDependencies:

    def test_kernel_does_not_import_outer_layers(self):
        violations = _violations(
            "booking_kernel", ("booking_engines", "booking_config", "booking_services"),
        )
        assert not violations, (
            "booking_kernel/** must not import upward packages:\n" + "\n".join(violations)
        )


class TestEnginePurity:

    FORBIDDEN = (
        "booking_kernel.services",
        "booking_kernel.models",
        "booking_kernel.db",
        "booking_config",
        "booking_services",
        "sqlalchemy",
        "yaml",
    )

    def test_engines_import_only_domain(self):
        violations = _violations("booking_engines", self.FORBIDDEN)
        assert not violations, (
            "booking_engines/** must stay pure:\n" + "\n".join(violations)
        )


class TestDomainPurity:

    FORBIDDEN = (
        "booking_kernel.services",
        "booking_kernel.models",
        "booking_kernel.db",
        "sqlalchemy",
        "yaml",
    )

    def test_domain_has_no_io_imports(self):
        violations = _violations("booking_kernel/domain", self.FORBIDDEN)
        assert not violations, (
            "booking_kernel/domain/** must not import I/O:\n" + "\n".join(violations)
        )


class TestConfigBoundary:

    def test_config_does_not_import_services(self):
        violations = _violations("booking_config", ("booking_services",))
        assert not violations, "\n".join(violations)


class TestSingleWiringPoint:

    def test_coordinator_constructed_only_in_wiring(self):
        """SchedulingCoordinator( appears only in its own module and wiring."""
        allowed = {"scheduling_coordinator.py", "wiring.py"}
        offenders = [
            str(p.relative_to(REPO_ROOT))
            for p in _python_files("booking_services")
            if p.name not in allowed and "SchedulingCoordinator(" in p.read_text()
        ]
        assert not offenders
