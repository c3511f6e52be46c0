"""Tests for the phase driver and error reporting."""

import logging

import pytest

from compiler_phases import (
    CompilerError, PHASES, SemanticError, ValidationError, compile_source,
    run_pipeline,
)

FACTORIAL = (
    "function factorial(n) {\n"
    "  if (n <= 1) {\n"
    "    return 1;\n"
    "  }\n"
    "  return n * factorial(n - 1);\n"
    "}\n"
    "console.log(factorial(5));"
)

CALCULATOR = (
    "class Calculator {\n"
    "  constructor() {\n"
    "    this.value = 0;\n"
    "  }\n"
    "  add(x) {\n"
    "    this.value += x;\n"
    "    return this.value;\n"
    "  }\n"
    "}\n"
    "const calc = new Calculator();\n"
    "console.log(calc.add(5));"
)

ARRAYS = (
    "const numbers = [1, 2, 3, 4, 5];\n"
    "const doubled = numbers.map(n => n * 2);\n"
    "console.log(doubled);"
)


class TestSuccess:
    """Complete programs run through every phase."""

    @pytest.mark.parametrize("source", [FACTORIAL, CALCULATOR, ARRAYS])
    def test_examples_compile_cleanly(self, source):
        result = compile_source(source)
        assert result['errors'] == []
        assert result['tokens']
        assert result['symbol_table'] is not None
        assert result['tac']
        assert result['optimized_tac']
        assert result['asm']

    def test_simple_declaration(self):
        result = compile_source("let x = 42;")
        assert [t.value for t in result['tokens']] == ['let', 'x', '=', '42', ';']
        assert repr(result['ast']) == "Program([VariableDeclaration(let,[Identifier(x), NumberLiteral(42)])])"
        assert [repr(i) for i in result['tac']] == ["x = 42"]
        assert result['asm'] == ["  mov x, 42"]

    def test_output_is_deterministic(self):
        first = compile_source(FACTORIAL)
        second = compile_source(FACTORIAL)
        assert first['tac'] == second['tac']
        assert first['optimized_tac'] == second['optimized_tac']
        assert first['asm'] == second['asm']

    def test_stop_after_syntax(self):
        result = compile_source("let x = 1;", until='syntax')
        assert result['ast'] is not None
        assert result['symbol_table'] is None
        assert result['tac'] == []
        assert result['asm'] == []

    def test_stop_after_intermediate(self):
        result = compile_source("let x = 2 + 3;", until='intermediate')
        assert [repr(i) for i in result['tac']] == ["t0 = 2 + 3", "x = t0"]
        assert result['optimized_tac'] == []

    def test_phase_names(self):
        assert PHASES == ('lexical', 'syntax', 'semantic', 'intermediate', 'optimized', 'target')

    @pytest.mark.parametrize("call", [compile_source, run_pipeline])
    def test_unknown_phase(self, call):
        with pytest.raises(ValueError):
            call("let x = 1;", until='linking')


class TestFailures:
    """The first error stops the pipeline; earlier outputs are kept."""

    def test_empty_input(self):
        result = compile_source("   \n\t")
        assert result['errors'] == [{
            'phase': 'validation',
            'message': "Source code cannot be empty",
            'line': None,
            'column': None,
        }]
        assert result['tokens'] == []

    def test_lexical_error(self):
        result = compile_source("let x = @;")
        assert result['errors'] == [{
            'phase': 'lexical',
            'message': "Unexpected character '@'",
            'line': 1,
            'column': 9,
        }]
        assert result['tokens'] == []

    def test_comment_syntax_is_not_recognized(self):
        result = compile_source("// nothing here")
        assert [t.value for t in result['tokens']] == ['/', '/', 'nothing', 'here']
        assert result['errors'] == [{
            'phase': 'syntax',
            'message': "Unexpected token: /",
            'line': 1,
            'column': 1,
        }]

    def test_syntax_error_keeps_tokens(self):
        result = compile_source("foo(1, 2")
        assert len(result['errors']) == 1
        assert result['errors'][0]['message'] == "Expected closing parenthesis in function call"
        assert len(result['tokens']) == 5
        assert result['ast'] is None
        assert result['tac'] == []

    def test_semantic_error_keeps_ast(self):
        result = compile_source("let x = 42;\ny;")
        assert result['errors'] == [{
            'phase': 'semantic',
            'message': "Undefined variable: y",
            'line': 2,
            'column': 1,
        }]
        assert result['ast'] is not None
        assert result['symbol_table'] is None
        assert result['tac'] == []
        assert result['asm'] == []

    def test_run_pipeline_raises(self):
        with pytest.raises(SemanticError):
            run_pipeline("y;")

    def test_partial_results_are_collected(self):
        result = {}
        with pytest.raises(SemanticError):
            run_pipeline("y;", result=result)
        assert 'tokens' in result
        assert 'ast' in result
        assert 'symbol_table' not in result

    def test_validation_error_raised_from_pipeline(self):
        with pytest.raises(ValidationError):
            run_pipeline("")


class TestErrorText:
    """Human-readable error formatting."""

    def test_with_position(self):
        err = compile_source("foo(1, 2")['errors'][0]
        text = str(CompilerError(err['message'], err['line'], err['column'], err['phase']))
        assert text == "Syntax error (line 1, column 1): Expected closing parenthesis in function call"

    def test_without_position(self):
        assert str(ValidationError("Source code cannot be empty")) == \
            "Validation error: Source code cannot be empty"

    def test_phase_can_be_overridden(self):
        assert CompilerError("boom", phase='request').phase == 'request'
        assert CompilerError("boom").phase == 'compiler'


class TestLogging:
    """Phase progress goes to the module logger."""

    def test_verbose_logs_each_phase(self, caplog):
        with caplog.at_level(logging.INFO, logger='compiler_phases'):
            compile_source("let x = 1;", verbose=True)
        assert "lexical: 5 token(s)" in caplog.messages
        assert "target: 1 line(s)" in caplog.messages

    def test_quiet_run_logs_at_debug(self, caplog):
        with caplog.at_level(logging.INFO, logger='compiler_phases'):
            compile_source("let x = 1;")
        assert not any(m.startswith("lexical:") for m in caplog.messages)

    def test_failure_is_logged(self, caplog):
        with caplog.at_level(logging.INFO, logger='compiler_phases'):
            compile_source("y;")
        assert any("Undefined variable: y" in m for m in caplog.messages)
