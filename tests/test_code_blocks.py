"""Tests for top-level code block detection."""

from context_engine.chunking.code_blocks import CodeBlock, find_blocks

TS_SOURCE = """import { x } from "y";

export function greet(name: string): string {
  const s = "}";
  return `hi ${name}`;
}

export interface Opts {
  a: number;
  b: string;
}

export const add = (a: number, b: number) => {
  return a + b;
};""".split("\n")


class TestPythonBlocks:

    def test_functions_and_classes(self) -> None:
        lines = [
            "import os",
            "",
            "def alpha(x):",
            "    y = x + 1",
            "    return y",
            "",
            "async def beta():",
            "    await x()",
            "    return None",
            "",
            "class Gamma:",
            "    def run(self):",
            "        return 1",
        ]
        assert find_blocks(lines, "mod.py") == [
            CodeBlock("function", "alpha", 2, 5),
            CodeBlock("function", "beta", 6, 9),
            CodeBlock("class", "Gamma", 10, 13),
        ]

    def test_decorators_are_included(self) -> None:
        lines = ["@app.command()", "def run():", "    pass", "    return 1"]
        assert find_blocks(lines, "cli.py") == [CodeBlock("function", "run", 0, 4)]

    def test_closing_bracket_continues_block(self) -> None:
        lines = ["def f(", "    a,", "    b,", "):", "    return a"]
        assert find_blocks(lines, "f.py") == [CodeBlock("function", "f", 0, 5)]

    def test_short_blocks_are_ignored(self) -> None:
        assert find_blocks(["def f(): return 1", "x = f()"], "f.py") == []


class TestBraceBlocks:

    def test_typescript_declarations(self) -> None:
        assert find_blocks(TS_SOURCE, "src/util.ts") == [
            CodeBlock("function", "greet", 2, 6),
            CodeBlock("interface", "Opts", 7, 11),
            CodeBlock("function", "add", 12, 15),
        ]

    def test_braces_in_comments_are_ignored(self) -> None:
        lines = [
            "class Box {",
            "  // } not a close",
            "  /* { nor an open */",
            "  size = 1;",
            "}",
        ]
        assert find_blocks(lines, "box.js") == [CodeBlock("class", "Box", 0, 5)]

    def test_unbalanced_braces_yield_nothing(self) -> None:
        lines = ["function broken() {", "  if (x) {", "  return 1;"]
        assert find_blocks(lines, "broken.js") == []

    def test_type_alias_block(self) -> None:
        lines = ["export type Point = {", "  x: number;", "  y: number;", "};"]
        assert find_blocks(lines, "types.ts") == [CodeBlock("type", "Point", 0, 4)]

    def test_expression_arrow_does_not_take_next_body(self) -> None:
        lines = [
            "export const add = (a, b) => a + b;",
            "export function greet(name) {",
            "  const s = name;",
            "  return s;",
            "}",
        ]
        assert find_blocks(lines, "util.js") == [CodeBlock("function", "greet", 1, 5)]

    def test_object_typed_parameter_is_not_the_body(self) -> None:
        lines = [
            "export function configure(opts: { port: number }): void {",
            "  listen(opts.port);",
            "  log('ready');",
            "}",
        ]
        assert find_blocks(lines, "server.ts") == [CodeBlock("function", "configure", 0, 4)]

    def test_apostrophe_in_jsx_text(self) -> None:
        lines = [
            "export function Banner() {",
            "  return (",
            "    <p>Don't panic</p>",
            "  );",
            "}",
            "",
            "export function Footer() {",
            "  // closing note",
            "  return <footer>ok</footer>;",
            "}",
        ]
        assert [(b.name, b.start, b.end) for b in find_blocks(lines, "ui.tsx")] == [
            ("Banner", 0, 5),
            ("Footer", 6, 10),
        ]

    def test_overload_signature_has_no_body(self) -> None:
        lines = [
            "export function pick(a: string): string;",
            "export function pick(a: any) {",
            "  return a;",
            "}",
        ]
        assert find_blocks(lines, "pick.ts") == [CodeBlock("function", "pick", 1, 4)]
