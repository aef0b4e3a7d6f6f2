# Copyright (c) 2026 Jeroen Visser. All rights reserved.
# Licensed under the MIT License — see LICENSE.
"""Domain modules import only the standard library, numpy and varprop itself."""
import ast
from pathlib import Path

import pytest

DOMAIN_ROOT = Path(__file__).resolve().parent.parent / "src" / "varprop" / "domain"

ALLOWED_TOP = {
    "bisect", "dataclasses", "datetime", "enum", "logging", "math", "numpy", "types", "typing",
}
ALLOWED_INTERNAL_PREFIX = "varprop"


def _imported_modules(path):
    tree = ast.parse(path.read_text(encoding="utf-8"))
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                yield alias.name
        elif isinstance(node, ast.ImportFrom) and node.module and node.level == 0:
            yield node.module


@pytest.mark.parametrize("path", sorted(DOMAIN_ROOT.glob("*.py")), ids=lambda p: p.stem)
def test_domain_purity(path):
    for module in _imported_modules(path):
        top = module.split(".")[0]
        assert top in ALLOWED_TOP or module.startswith(ALLOWED_INTERNAL_PREFIX), \
            f"Forbidden import in {path.name}: {module}"


def test_domain_modules_found():
    assert len(list(DOMAIN_ROOT.glob("*.py"))) >= 15
