# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Language analyzers that turn source text into skeletons.

Components:
- skeleton_parser: language detection, regex extraction for TypeScript,
  JavaScript, Go and Rust, the generic fallback, and ``parse_file``
- python_skeleton: AST-based extraction for Python files

The parser never raises: unreadable or unsupported files yield None and
oversized files yield a shell skeleton carrying a size message.
"""

from acl_context.analyzers.python_skeleton import parse_python_source
from acl_context.analyzers.skeleton_parser import (
    EXTENSION_TO_LANGUAGE,
    detect_language,
    is_project_file,
    parse_file,
    parse_source,
)

__all__ = [
    "EXTENSION_TO_LANGUAGE",
    "detect_language",
    "is_project_file",
    "parse_file",
    "parse_python_source",
    "parse_source",
]
