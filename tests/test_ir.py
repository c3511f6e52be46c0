"""Tests for three-address code generation."""

import pytest

from compiler_phases import (
    BinaryOperator, CompilationContext, IRGenerator, TACInstruction,
    generate_intermediate_code, lexical_analysis, syntax_analysis,
)


class TestLowering:
    """Lowering rules for each node kind."""

    def test_declaration_with_literal(self, ir):
        assert ir("let x = 42;") == ["x = 42"]

    def test_declaration_without_initializer_emits_nothing(self, ir):
        assert ir("let x;") == []

    def test_binary_expression(self, ir):
        assert ir("let x = 2 + 3;") == ["t0 = 2 + 3", "x = t0"]

    def test_operands_are_lowered_before_their_operator(self, ir):
        assert ir("let y = (1 + 2) * (3 + 4);") == [
            "t0 = 1 + 2",
            "t1 = 3 + 4",
            "t2 = t0 * t1",
            "y = t2",
        ]

    def test_left_to_right_chain(self, ir):
        assert ir("let z = 2 + 3 * 4;") == ["t0 = 2 + 3", "t1 = t0 * 4", "z = t1"]

    def test_string_literal_operand(self, ir):
        assert ir("let s = 'hi';") == ['s = "hi"']

    def test_string_with_double_quotes_keeps_single_quotes(self, ir):
        assert ir("let s = 'say \"hi\"';") == ["s = 'say \"hi\"'"]

    def test_plain_and_compound_assignment(self, ir):
        assert ir("let x = 1; x = 5; x += 2;") == ["x = 1", "x = 5", "t0 = x + 2", "x = t0"]

    def test_identifier_statement_emits_nothing(self, ir):
        assert ir("let x = 1; x;") == ["x = 1"]


class TestControlFlow:
    """If statements and labels."""

    def test_if_without_else(self, ir):
        assert ir("let x = 1; if (x > 0) { x = 2; }") == [
            "x = 1",
            "t0 = x > 0",
            "if t0 goto L0",
            "goto L1",
            "L0:",
            "x = 2",
            "L1:",
        ]

    def test_if_else_with_identifier_bodies(self, ir):
        assert ir("let x = 1; if (x > 0) { x; } else { x; }") == [
            "x = 1",
            "t0 = x > 0",
            "if t0 goto L0",
            "goto L2",
            "L0:",
            "goto L1",
            "L2:",
            "L1:",
        ]

    def test_else_branch_is_lowered(self, ir):
        assert ir("let x = 1; if (x) { x = 2; } else { x = 3; }") == [
            "x = 1",
            "if x goto L0",
            "goto L2",
            "L0:",
            "x = 2",
            "goto L1",
            "L2:",
            "x = 3",
            "L1:",
        ]

    def test_nested_ifs_get_fresh_labels(self, ir):
        lines = ir("let a = 1; if (a) { if (a) { a = 2; } }")
        labels = [line for line in lines if line.endswith(':')]
        assert labels == ["L0:", "L2:", "L3:", "L1:"]


class TestFunctions:
    """Functions, calls and returns."""

    def test_function_declaration(self, ir):
        assert ir("function add(a, b) { return a + b; }") == [
            "function add:",
            "param a",
            "param b",
            "t0 = a + b",
            "return t0",
        ]

    def test_bare_return(self, ir):
        assert ir("function f() { return; }") == ["function f:", "return"]

    def test_body_without_return_gets_one(self, ir):
        assert ir("function f(a) { let b = a; }") == ["function f:", "param a", "b = a", "return"]

    def test_empty_body_gets_a_return(self, ir):
        assert ir("function f() { }") == ["function f:", "return"]

    def test_trailing_if_still_gets_a_return(self, ir):
        assert ir("function f(a) { if (a) { return 1; } }")[-2:] == ["L1:", "return"]

    def test_call_with_arguments(self, ir):
        assert ir("function add(a, b) { return a + b; }\nlet x = add(5, 3);")[-4:] == [
            "param 5",
            "param 3",
            "t1 = call add, 2",
            "x = t1",
        ]

    def test_arguments_are_lowered_before_params(self, ir):
        assert ir("function f(a, b) { } f(1 + 2, 3);") == [
            "function f:",
            "param a",
            "param b",
            "return",
            "t0 = 1 + 2",
            "param t0",
            "param 3",
            "t1 = call f, 2",
        ]

    def test_builtin_method_call(self, ir):
        assert ir("console.log('hi');") == ['param "hi"', "t0 = call console.log, 1"]

    def test_formal_and_actual_params_are_distinguishable(self, run):
        tac = run("function f(a) { } f(1);", 'intermediate')['tac']
        params = [i for i in tac if i.op == 'param']
        assert [(p.arg1, p.arg2) for p in params] == [('a', 0), ('1', None)]


class TestObjects:
    """Arrays, objects, classes and arrow functions."""

    def test_array_literal(self, ir):
        assert ir("let a = [1, 2];") == ["t0 = []", "t0[0] = 1", "t0[1] = 2", "a = t0"]

    def test_object_literal(self, ir):
        assert ir("let o = {x: 1, y: 2 + 3};") == [
            "t0 = {}",
            "t0.x = 1",
            "t1 = 2 + 3",
            "t0.y = t1",
            "o = t0",
        ]

    def test_member_access(self, ir):
        assert ir("let o = {x: 1}; let v = o.x;")[-2:] == ["t1 = o.x", "v = t1"]

    def test_arrow_function_argument(self, ir):
        assert ir("const numbers = [1];\nconst d = numbers.map(n => n * 2);") == [
            "t0 = []",
            "t0[0] = 1",
            "numbers = t0",
            "goto L1",
            "function L0:",
            "param n",
            "t1 = n * 2",
            "return t1",
            "L1:",
            "param L0",
            "t2 = call numbers.map, 1",
            "d = t2",
        ]

    def test_class_and_new(self, ir):
        source = (
            "class C {\n"
            "  constructor() { this.v = 0; }\n"
            "  bump(x) { this.v += x; return this.v; }\n"
            "}\n"
            "const c = new C();"
        )
        assert ir(source) == [
            "class C:",
            "function C.constructor:",
            "this.v = 0",
            "return",
            "function C.bump:",
            "param x",
            "t0 = this.v",
            "t1 = t0 + x",
            "this.v = t1",
            "t2 = this.v",
            "return t2",
            "t3 = new C, 0",
            "c = t3",
        ]


class TestCounters:
    """Temp and label numbering."""

    def test_counters_reset_per_invocation(self, ir):
        source = "let a = 1 + 2; if (a) { a = 3; }"
        assert ir(source) == ir(source)
        assert ir(source)[0] == "t0 = 1 + 2"

    def test_explicit_context_is_threaded_through(self):
        ast = syntax_analysis(lexical_analysis("let a = 1 + 2;"))
        context = CompilationContext()
        generate_intermediate_code(ast, context)
        second = generate_intermediate_code(ast, context)
        assert repr(second[0]) == "t1 = 1 + 2"
        assert context.temp_count == 2

    def test_context_labels(self):
        context = CompilationContext()
        assert [context.new_label(), context.new_label()] == ["L0", "L1"]
        assert context.new_temp() == "t0"

    def test_generator_without_context_creates_one(self):
        gen = IRGenerator()
        assert gen.context.temp_count == 0


class TestInstructionText:
    """Rendering of individual instructions."""

    @pytest.mark.parametrize("instr, text", [
        (TACInstruction('assign', dest='x', arg1='1'), "x = 1"),
        (TACInstruction('binary', dest='t0', arg1='a', arg2='b', operator=BinaryOperator.LE), "t0 = a <= b"),
        (TACInstruction('label', dest='L3'), "L3:"),
        (TACInstruction('goto', dest='L3'), "goto L3"),
        (TACInstruction('if', dest='L3', arg1='t1'), "if t1 goto L3"),
        (TACInstruction('call', dest='t2', arg1='f', arg2=0), "t2 = call f, 0"),
        (TACInstruction('return'), "return"),
        (TACInstruction('function', dest='main'), "function main:"),
        (TACInstruction('class', dest='C'), "class C:"),
    ])
    def test_rendering(self, instr, text):
        assert repr(instr) == text
        assert str(instr) == text
