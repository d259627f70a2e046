# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Shared fixtures for integration tests.

Provides a small mixed-language workspace with cross-file imports.
"""

from pathlib import Path

import pytest
import yaml

from acl_context.config import Config


def write_file(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


@pytest.fixture
def sample_workspace(tmp_path: Path) -> Path:
    """Create a representative workspace.

    Layout:
    - web/: TypeScript app with static, type-only and dynamic imports
    - api/: Python package with relative imports
    - node_modules/: dependency tree that must never be indexed
    - .acl/config.yml: short debounce for change tests

    Returns:
        Resolved path to the workspace root
    """
    root = (tmp_path / "workspace").resolve()

    write_file(
        root / "web" / "app.ts",
        "import { render } from './ui/render';\n"
        "import type { Props } from './ui/types';\n"
        "import React from 'react';\n"
        "\n"
        "export async function main(): Promise<void> {\n"
        "  const admin = await import('./admin');\n"
        "  render(admin.page);\n"
        "}\n",
    )
    write_file(
        root / "web" / "ui" / "render.ts",
        "import type { Props } from './types';\n"
        "\n"
        "export function render(props: Props): void {}\n",
    )
    write_file(root / "web" / "ui" / "types.ts", "export interface Props {\n  page: string;\n}\n")
    write_file(root / "web" / "admin" / "index.ts", "export const page = 'admin';\n")

    write_file(root / "api" / "__init__.py", "")
    write_file(
        root / "api" / "models.py",
        "class User:\n    def __init__(self, name):\n        self.name = name\n",
    )
    write_file(
        root / "api" / "routes" / "__init__.py",
        "",
    )
    write_file(
        root / "api" / "routes" / "users.py",
        "from typing import TYPE_CHECKING\n"
        "from ..models import User\n"
        "\n"
        "if TYPE_CHECKING:\n"
        "    from . import schemas\n"
        "\n"
        "def list_users():\n"
        "    return [User('a')]\n",
    )
    write_file(root / "api" / "routes" / "schemas.py", "class UserSchema:\n    pass\n")

    write_file(root / "node_modules" / "react" / "index.js", "module.exports = {};\n")
    write_file(root / "package.json", '{"name": "sample"}\n')

    write_file(root / ".acl" / "config.yml", yaml.safe_dump({"cache_debounce_ms": 50}))
    return root


@pytest.fixture
def sample_config(sample_workspace: Path) -> Config:
    return Config(sample_workspace)
