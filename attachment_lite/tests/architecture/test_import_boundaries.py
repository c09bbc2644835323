from __future__ import annotations

import ast
from pathlib import Path

ROOT = Path(__file__).resolve().parents[3]
PACKAGE = ROOT / "attachment_lite"


def _iter_python_files(base: Path) -> list[Path]:
    return sorted(
        file
        for file in base.rglob("*.py")
        if "__pycache__" not in file.parts and ".venv" not in file.parts
    )


def _imports_for(file_path: Path) -> list[tuple[str, int]]:
    tree = ast.parse(file_path.read_text(encoding="utf-8"), filename=str(file_path))
    imports: list[tuple[str, int]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                imports.append((alias.name, node.lineno))
        elif isinstance(node, ast.ImportFrom):
            module = node.module or ""
            if node.level > 0:
                module = f"{'.' * node.level}{module}"
            imports.append((module, node.lineno))
    return imports


def test_persistence_does_not_import_attachments() -> None:
    violations: list[str] = []
    for file_path in _iter_python_files(PACKAGE / "features" / "persistence"):
        for module, lineno in _imports_for(file_path):
            if module.startswith("attachment_lite.features.attachments"):
                violations.append(f"{file_path}:{lineno} imports '{module}'")
    assert not violations, "Persistence modules cannot depend on attachments:\n" + "\n".join(violations)


def test_consistency_core_does_not_import_http_layer() -> None:
    core_modules = {"coordinator.py", "tracker.py", "columns.py", "schemas.py", "storage.py"}
    violations: list[str] = []
    for file_path in _iter_python_files(PACKAGE / "features" / "attachments"):
        if file_path.name not in core_modules:
            continue
        for module, lineno in _imports_for(file_path):
            if module.split(".")[0] in {"fastapi", "starlette"} or module == ".service":
                violations.append(f"{file_path}:{lineno} imports '{module}'")
    assert not violations, "Attachment core modules cannot import the HTTP layer:\n" + "\n".join(violations)


def test_db_package_does_not_import_features() -> None:
    violations: list[str] = []
    for file_path in _iter_python_files(PACKAGE / "db"):
        for module, lineno in _imports_for(file_path):
            if module.startswith("attachment_lite.features"):
                violations.append(f"{file_path}:{lineno} imports '{module}'")
    assert not violations, "db modules cannot import feature modules:\n" + "\n".join(violations)
