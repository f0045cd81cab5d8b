from __future__ import annotations

import ast
import sys
from graphlib import CycleError, TopologicalSorter
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

ROOT = Path(__file__).resolve().parents[2]
PACKAGE = ROOT / "src" / "lifesim"

# Which lifesim layers each layer may import. ``bootstrap`` wires everything
# and is importable only from the presentation layer and the entry point.
ALLOWED_LAYERS = {
    "domain": {"domain"},
    "application": {"domain", "application"},
    "infrastructure": {"domain", "application", "infrastructure"},
    "presentation": {"domain", "application", "presentation", "bootstrap"},
}

# Third-party libraries and the only places allowed to import them.
LIBRARY_HOMES = {
    "sqlalchemy": ("infrastructure/db/",),
    "httpx": ("infrastructure/http/", "infrastructure/resilient_http.py"),
    "rich": ("presentation/",),
    "dotenv": ("__main__.py",),
}


def _module_name(path: Path) -> str:
    return ".".join(path.relative_to(ROOT / "src").with_suffix("").parts)


def _layer(module: str) -> str:
    parts = module.split(".")
    return parts[1] if len(parts) > 1 else parts[0]


def _imports(path: Path) -> set[str]:
    tree = ast.parse(path.read_text(encoding="utf-8"))
    found: set[str] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            found.update(alias.name for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and node.module and node.level == 0:
            found.add(node.module)
    return found


def _sources() -> dict[str, Path]:
    return {_module_name(path): path for path in PACKAGE.rglob("*.py")}


class ArchitectureGuardrailTests(unittest.TestCase):
    def test_layers_import_only_what_the_layer_map_allows(self) -> None:
        violations: list[str] = []
        for module, path in _sources().items():
            allowed = ALLOWED_LAYERS.get(_layer(module))
            if allowed is None:
                continue
            for target in _imports(path):
                if target.startswith("lifesim.") and _layer(target) not in allowed:
                    violations.append(f"{module} -> {target}")

        self.assertEqual([], sorted(violations))

    def test_third_party_libraries_stay_in_their_adapters(self) -> None:
        violations: list[str] = []
        for path in PACKAGE.rglob("*.py"):
            relative = path.relative_to(PACKAGE).as_posix()
            for target in _imports(path):
                homes = LIBRARY_HOMES.get(target.split(".")[0])
                if homes is not None and not relative.startswith(homes):
                    violations.append(f"{relative} imports {target}")

        self.assertEqual([], sorted(violations))

    def test_server_functions_live_behind_the_store(self) -> None:
        imports = _imports(PACKAGE / "infrastructure" / "server_functions.py")

        self.assertIn("lifesim.domain.repositories", imports)
        for path in (PACKAGE / "application").rglob("*.py"):
            with self.subTest(module=path.name):
                self.assertNotIn("lifesim.infrastructure.server_functions", _imports(path))

    def test_package_import_graph_has_no_cycles(self) -> None:
        sources = _sources()
        graph = {
            module: {target for target in _imports(path) if target in sources and target != module}
            for module, path in sources.items()
        }

        try:
            tuple(TopologicalSorter(graph).static_order())
        except CycleError as exc:
            self.fail(f"Import cycle detected: {' -> '.join(exc.args[1])}")


if __name__ == "__main__":
    unittest.main()
