"""
Source Outline: function spans of a C / C++ unit via tree-sitter.

The corpus loader only needs one structural fact about a unit: which
function encloses a given line.  C units are parsed with the C grammar,
C++ units with the C++ grammar; headers (.h) use the C grammar.
"""

import logging
import os
from dataclasses import dataclass
from typing import List, Optional

import tree_sitter_c as tsc
import tree_sitter_cpp as tscpp
from tree_sitter import Language, Node, Parser

logger = logging.getLogger(__name__)

C_LANGUAGE = Language(tsc.language())
CPP_LANGUAGE = Language(tscpp.language())

C_EXTENSIONS = {".c", ".h"}
CPP_EXTENSIONS = {".cc", ".cpp", ".cxx", ".hh", ".hpp", ".hxx"}
SOURCE_EXTENSIONS = C_EXTENSIONS | CPP_EXTENSIONS


@dataclass(frozen=True)
class FunctionSpan:
    """A function definition and the lines it covers (1-indexed, inclusive)."""
    name: str
    start_line: int
    end_line: int

    def contains(self, line: int) -> bool:
        return self.start_line <= line <= self.end_line


def is_cpp(path: str) -> bool:
    return os.path.splitext(path)[1].lower() in CPP_EXTENSIONS


class SourceOutline:
    """Function spans of one parsed unit."""

    def __init__(self, path: str, source: bytes):
        self.path = path
        # Parsers are not shared between threads; one per outline.
        parser = Parser(CPP_LANGUAGE if is_cpp(path) else C_LANGUAGE)
        tree = parser.parse(source)
        if tree.root_node.has_error:
            logger.debug("Syntax errors while parsing %s; spans may be partial", path)
        self.functions: List[FunctionSpan] = []
        for node in _walk_type(tree.root_node, "function_definition"):
            name = _function_name(node, source)
            if name is None:
                continue
            self.functions.append(FunctionSpan(
                name=name,
                start_line=node.start_point[0] + 1,
                end_line=node.end_point[0] + 1,
            ))

    def function_at_line(self, line: int) -> Optional[FunctionSpan]:
        """Innermost function containing ``line``, or None at file scope."""
        enclosing = [fn for fn in self.functions if fn.contains(line)]
        if not enclosing:
            return None
        return min(enclosing, key=lambda fn: (fn.end_line - fn.start_line, fn.start_line))

    def function_name_at(self, line: int) -> str:
        fn = self.function_at_line(line)
        return fn.name if fn else ""


# ────────────────────────────────────────────────────────────────
#  Tree traversal helpers
# ────────────────────────────────────────────────────────────────

def _node_text(node: Node, source: bytes) -> str:
    return source[node.start_byte:node.end_byte].decode("utf-8", errors="replace")


def _function_name(fn_node: Node, source: bytes) -> Optional[str]:
    """Name of a function_definition: follow declarators down to the function_declarator.

    Handles pointer / reference return types (``int *f(void)``) and
    qualified C++ names (``Foo::bar``).
    """
    decl = fn_node.child_by_field_name("declarator")
    while decl is not None and decl.type != "function_declarator":
        inner = decl.child_by_field_name("declarator")
        if inner is None:
            inner = next(
                (c for c in decl.named_children if c.type.endswith("declarator")),
                None,
            )
        decl = inner
    if decl is None:
        return None
    name_node = decl.child_by_field_name("declarator")
    if name_node is None:
        return None
    return " ".join(_node_text(name_node, source).split())


def _walk_type(node: Node, type_name: str):
    """Yield all descendant nodes of a given type."""
    cursor = node.walk()
    visited = False
    while True:
        if not visited and cursor.node.type == type_name:
            yield cursor.node
        if not visited and cursor.goto_first_child():
            visited = False
            continue
        if cursor.goto_next_sibling():
            visited = False
            continue
        if cursor.goto_parent():
            visited = True
            continue
        break
