#!/usr/bin/env python3
"""
compiler_phases.py
Educational compiler pipeline for a small JavaScript-like language
(lexer → recursive-descent parser → scoped semantic analysis → TAC IR
→ peephole optimizer → pseudo x86-64 assembly).

Every phase is exposed on its own so a front end can show what each one
produces. All mutable state (temp/label counters, scope stack, constant
table) is created per call; nothing is shared between compilations.
"""

import argparse
import logging
import operator
import re
import sys
from collections import OrderedDict, namedtuple
from contextlib import contextmanager
from enum import Enum

logger = logging.getLogger(__name__)

PHASES = ('lexical', 'syntax', 'semantic', 'intermediate', 'optimized', 'target')

# =====================================================
# ERRORS
# =====================================================
class CompilerError(Exception):
    phase = 'compiler'

    def __init__(self, message, line=None, column=None, phase=None):
        super().__init__(message)
        self.message = message
        self.line = line
        self.column = column
        if phase is not None:
            self.phase = phase

    def __str__(self):
        where = []
        if self.line is not None:
            where.append(f"line {self.line}")
        if self.column is not None:
            where.append(f"column {self.column}")
        if where:
            return f"{self.phase.capitalize()} error ({', '.join(where)}): {self.message}"
        return f"{self.phase.capitalize()} error: {self.message}"

    def to_dict(self):
        return {
            'phase': self.phase,
            'message': self.message,
            'line': self.line,
            'column': self.column,
        }


class ValidationError(CompilerError):
    phase = 'validation'


class LexicalError(CompilerError):
    phase = 'lexical'


class ParseError(CompilerError):
    """Unexpected or missing token. Always carries the offending position."""
    phase = 'syntax'


class SemanticError(CompilerError):
    phase = 'semantic'

# =====================================================
# COMPILATION CONTEXT (temps, labels)
# =====================================================
class CompilationContext:
    """Counters for one compilation. Create a new one per source input."""

    def __init__(self):
        self.temp_count = 0
        self.label_count = 0

    def new_temp(self):
        name = f"t{self.temp_count}"
        self.temp_count += 1
        return name

    def new_label(self):
        name = f"L{self.label_count}"
        self.label_count += 1
        return name

# =====================================================
# LEXER
# =====================================================
Token = namedtuple('Token', ['kind', 'value', 'line', 'column'])


def validate_input(code):
    if not code.strip():
        raise ValidationError("Source code cannot be empty")


class Lexer:
    KEYWORDS = {'let', 'const', 'var', 'if', 'else', 'while', 'for', 'function',
                'return', 'class', 'extends', 'new', 'this', 'super'}
    OPERATORS = {'+', '-', '*', '/', '=', '<', '>', '!', '&', '|', '(', ')', '{', '}',
                 '[', ']', ';', ',', '.', ':',
                 '+=', '-=', '*=', '/=', '==', '!=', '>=', '<=', '=>', '&&', '||'}
    token_specification = [
        ("NUMBER",       r'[0-9][0-9.]*'),           # no sign or exponent
        ("STRING",       r'"[^"]*"|\'[^\']*\''),      # no escapes
        ("ID",           r'[A-Za-z_][A-Za-z0-9_]*'),
        ("OP2",          r'\+=|-=|\*=|/=|==|!=|>=|<=|=>|&&|\|\|'),
        ("OP",           r'[-+*/=<>!&|(){}\[\];,.:]'),
        ("NEWLINE",      r'\n'),
        ("SKIP",         r'[^\S\n]+'),
        ("UNTERMINATED", r'["\']'),
        ("MISMATCH",     r'.'),
    ]
    tok_regex = '|'.join(f'(?P<{n}>{p})' for n, p in token_specification)
    master_re = re.compile(tok_regex)

    def __init__(self, code):
        validate_input(code)
        self.code = code
        self.line = 1
        self.line_start = 0
        self.tokens = []
        self._tokenize()

    def _tokenize(self):
        for mo in self.master_re.finditer(self.code):
            kind = mo.lastgroup
            val = mo.group()
            column = mo.start() - self.line_start + 1
            if kind == "NEWLINE":
                self.line += 1
                self.line_start = mo.end()
            elif kind == "SKIP":
                pass
            elif kind == "ID":
                tok_kind = 'keyword' if val in Lexer.KEYWORDS else 'identifier'
                self.tokens.append(Token(tok_kind, val, self.line, column))
            elif kind == "NUMBER":
                self.tokens.append(Token('number', val, self.line, column))
            elif kind == "STRING":
                self.tokens.append(Token('string', val, self.line, column))
                if '\n' in val:
                    self.line += val.count('\n')
                    self.line_start = mo.start() + val.rfind('\n') + 1
            elif kind in ("OP", "OP2"):
                self.tokens.append(Token('operator', val, self.line, column))
            elif kind == "UNTERMINATED":
                raise LexicalError("Unterminated string literal", self.line, column)
            else:
                raise LexicalError(f"Unexpected character {val!r}", self.line, column)

# =====================================================
# AST NODES
# =====================================================
class Node:
    """Base for every AST node: a kind, an optional payload and ordered children."""
    value = None
    line = None
    column = None

    @property
    def kind(self):
        return type(self).__name__

    @property
    def children(self):
        return []

    def __repr__(self):
        children = self.children
        if self.value is not None and children:
            return f"{self.kind}({self.value},{children!r})"
        if children:
            return f"{self.kind}({children!r})"
        if self.value is not None:
            return f"{self.kind}({self.value})"
        return f"{self.kind}()"


class Program(Node):
    def __init__(self, statements):
        self.statements = statements

    @property
    def children(self):
        return list(self.statements)


class Block(Node):
    def __init__(self, statements):
        self.statements = statements

    @property
    def children(self):
        return list(self.statements)


class Parameter(Node):
    def __init__(self, name):
        self.name = self.value = name


class FunctionDeclaration(Node):
    def __init__(self, name, params, body):
        self.name = self.value = name
        self.params = params
        self.body = body

    @property
    def children(self):
        return self.params + [self.body]


class MethodDeclaration(Node):
    def __init__(self, name, params, body):
        self.name = self.value = name
        self.params = params
        self.body = body

    @property
    def children(self):
        return self.params + [self.body]


class ClassDeclaration(Node):
    def __init__(self, name, methods):
        self.name = self.value = name
        self.methods = methods

    @property
    def children(self):
        return list(self.methods)


class VariableDeclaration(Node):
    def __init__(self, keyword, target, init=None):
        self.keyword = self.value = keyword  # 'let' | 'const' | 'var'
        self.target = target
        self.init = init

    @property
    def name(self):
        return self.target.name

    @property
    def children(self):
        if self.init is None:
            return [self.target]
        return [self.target, self.init]


class IfStatement(Node):
    def __init__(self, condition, then_block, else_block=None):
        self.condition = condition
        self.then_block = then_block
        self.else_block = else_block

    @property
    def children(self):
        nodes = [self.condition, self.then_block]
        if self.else_block is not None:
            nodes.append(self.else_block)
        return nodes


class ReturnStatement(Node):
    def __init__(self, argument=None):
        self.argument = argument

    @property
    def children(self):
        return [] if self.argument is None else [self.argument]


class BinaryExpression(Node):
    def __init__(self, operator, left, right):
        self.operator = self.value = operator
        self.left = left
        self.right = right

    @property
    def children(self):
        return [self.left, self.right]


class AssignmentExpression(Node):
    def __init__(self, operator, target, expression):
        self.operator = self.value = operator  # '=' | '+=' | '-=' | '*=' | '/='
        self.target = target
        self.expression = expression

    @property
    def children(self):
        return [self.target, self.expression]


class Identifier(Node):
    def __init__(self, name):
        self.name = self.value = name


class ThisExpression(Node):
    value = 'this'


class NumberLiteral(Node):
    def __init__(self, text):
        self.value = text


class StringLiteral(Node):
    def __init__(self, text):
        self.value = text


class FunctionCall(Node):
    def __init__(self, name, arguments):
        self.name = self.value = name
        self.arguments = arguments

    @property
    def children(self):
        return list(self.arguments)


class MethodCall(Node):
    def __init__(self, obj, method, arguments):
        self.object = obj
        self.method = self.value = method
        self.arguments = arguments

    @property
    def children(self):
        return [self.object] + self.arguments


class MemberExpression(Node):
    def __init__(self, obj, prop):
        self.object = obj
        self.property = self.value = prop

    @property
    def children(self):
        return [self.object]


class ArrayLiteral(Node):
    def __init__(self, elements):
        self.elements = elements

    @property
    def children(self):
        return list(self.elements)


class Property(Node):
    def __init__(self, key, expression):
        self.key = self.value = key
        self.expression = expression

    @property
    def children(self):
        return [self.expression]


class ObjectLiteral(Node):
    def __init__(self, properties):
        self.properties = properties

    @property
    def children(self):
        return list(self.properties)


class NewExpression(Node):
    def __init__(self, class_name, arguments):
        self.class_name = self.value = class_name
        self.arguments = arguments

    @property
    def children(self):
        return list(self.arguments)


class ArrowFunction(Node):
    def __init__(self, param, body):
        self.param = param
        self.body = body

    @property
    def children(self):
        return [self.param, self.body]

# =====================================================
# PARSER (recursive-descent, fail fast)
# =====================================================
BINARY_OPERATORS = {'+', '-', '*', '/', '<', '>', '<=', '>=', '==', '!=', '&&', '||'}
ASSIGNMENT_OPERATORS = {'=', '+=', '-=', '*=', '/='}
DECLARATION_KEYWORDS = {'let', 'const', 'var'}


class Parser:
    # Binary operators share one precedence level and associate left to
    # right: `2 + 3 * 4` is `(2 + 3) * 4`.

    def __init__(self, tokens):
        self.tokens = tokens
        self.pos = 0
        if tokens:
            last = tokens[-1]
            self.eof = Token('eof', '', last.line, last.column)
        else:
            self.eof = Token('eof', '', 1, 1)

    def peek(self):
        if self.pos < len(self.tokens):
            return self.tokens[self.pos]
        return self.eof

    def peek_n(self, n):
        idx = self.pos + n
        if idx < len(self.tokens):
            return self.tokens[idx]
        return self.eof

    def advance(self):
        tok = self.peek()
        self.pos += 1
        return tok

    def at_end(self):
        return self.pos >= len(self.tokens)

    def check(self, value, kind='operator'):
        tok = self.peek()
        return tok.kind == kind and tok.value == value

    def match(self, value, kind='operator'):
        if self.check(value, kind):
            return self.advance()
        return None

    def expect(self, value, msg):
        tok = self.match(value)
        if tok is None:
            self.error(msg)
        return tok

    def error(self, msg, tok=None):
        tok = tok or self.peek()
        raise ParseError(msg, tok.line, tok.column)

    @staticmethod
    def located(node, tok):
        node.line = tok.line
        node.column = tok.column
        return node

    def parse(self):
        if not self.tokens:
            raise ParseError("No tokens to parse")
        program = Program([])
        program.line, program.column = 1, 1
        while not self.at_end():
            if self.match(';'):
                continue
            program.statements.append(self.statement())
        return program

    def statement(self):
        tok = self.peek()
        if tok.kind == 'keyword':
            if tok.value == 'function':
                return self.function_declaration()
            if tok.value == 'class':
                return self.class_declaration()
            if tok.value in DECLARATION_KEYWORDS:
                return self.variable_declaration()
            if tok.value == 'if':
                return self.if_statement()
            if tok.value == 'return':
                return self.return_statement()
        expr = self.expression()
        self.match(';')
        return expr

    def function_declaration(self):
        start = self.advance()  # 'function'
        name_tok = self.peek()
        if name_tok.kind != 'identifier':
            self.error("Expected function name", name_tok)
        self.advance()
        params = self.parameter_list("Expected opening parenthesis after function name")
        body = self.block()
        return self.located(FunctionDeclaration(name_tok.value, params, body), start)

    def parameter_list(self, open_msg):
        self.expect('(', open_msg)
        params = []
        if not self.check(')'):
            while True:
                tok = self.peek()
                if tok.kind != 'identifier':
                    self.error("Expected parameter name", tok)
                self.advance()
                params.append(self.located(Parameter(tok.value), tok))
                if not self.match(','):
                    break
        self.expect(')', "Expected closing parenthesis")
        return params

    def class_declaration(self):
        start = self.advance()  # 'class'
        name_tok = self.peek()
        if name_tok.kind != 'identifier':
            self.error("Expected class name", name_tok)
        self.advance()
        self.expect('{', "Expected opening brace")
        methods = []
        while not self.check('}') and not self.at_end():
            if self.match(';'):
                continue
            methods.append(self.method_declaration())
        self.expect('}', "Expected closing brace")
        return self.located(ClassDeclaration(name_tok.value, methods), start)

    def method_declaration(self):
        # 'constructor' is an ordinary identifier to the lexer
        name_tok = self.peek()
        if name_tok.kind != 'identifier':
            self.error("Expected method name", name_tok)
        self.advance()
        params = self.parameter_list("Expected opening parenthesis after method name")
        body = self.block()
        return self.located(MethodDeclaration(name_tok.value, params, body), name_tok)

    def variable_declaration(self):
        keyword = self.advance()
        id_tok = self.peek()
        if id_tok.kind != 'identifier':
            self.error("Expected identifier after variable declaration", id_tok)
        self.advance()
        init = None
        if self.match('='):
            init = self.expression()
        self.match(';')
        target = self.located(Identifier(id_tok.value), id_tok)
        return self.located(VariableDeclaration(keyword.value, target, init), keyword)

    def if_statement(self):
        start = self.advance()  # 'if'
        self.expect('(', "Expected opening parenthesis after if")
        condition = self.expression()
        self.expect(')', "Expected closing parenthesis")
        then_block = self.block()
        else_block = None
        if self.match('else', kind='keyword'):
            else_block = self.block()
        return self.located(IfStatement(condition, then_block, else_block), start)

    def return_statement(self):
        start = self.advance()  # 'return'
        argument = None
        if not self.at_end() and not self.check(';') and not self.check('}'):
            argument = self.expression()
        self.match(';')
        return self.located(ReturnStatement(argument), start)

    def block(self):
        start = self.expect('{', "Expected opening brace")
        statements = []
        while not self.check('}') and not self.at_end():
            if self.match(';'):
                continue
            statements.append(self.statement())
        self.expect('}', "Expected closing brace")
        return self.located(Block(statements), start)

    # Expressions
    def expression(self):
        start = self.peek()
        target = self.chain()
        tok = self.peek()
        if tok.kind == 'operator' and tok.value in ASSIGNMENT_OPERATORS:
            if not isinstance(target, (Identifier, MemberExpression)):
                self.error("Invalid assignment target", tok)
            self.advance()
            value = self.expression()
            return self.located(AssignmentExpression(tok.value, target, value), start)
        return target

    def chain(self):
        start = self.peek()
        node = self.postfix()
        while self.peek().kind == 'operator' and self.peek().value in BINARY_OPERATORS:
            op = self.advance().value
            right = self.postfix()
            node = self.located(BinaryExpression(op, node, right), start)
        return node

    def postfix(self):
        start = self.peek()
        node = self.primary()
        while self.match('.'):
            prop = self.peek()
            if prop.kind != 'identifier':
                self.error("Expected property name after '.'", prop)
            self.advance()
            if self.check('('):
                args = self.arguments(prop, "Expected closing parenthesis in method call")
                node = self.located(MethodCall(node, prop.value, args), start)
            else:
                node = self.located(MemberExpression(node, prop.value), start)
        return node

    def arguments(self, call_tok, msg):
        self.advance()  # '('
        args = self.expression_list(')')
        if not self.match(')'):
            self.error(msg, call_tok)
        return args

    def expression_list(self, closing):
        items = []
        while not self.check(closing) and not self.at_end():
            items.append(self.expression())
            if not self.match(','):
                break
        return items

    def primary(self):
        tok = self.peek()
        if tok.kind == 'eof':
            self.error("Unexpected end of input", tok)
        if tok.kind == 'identifier':
            if self.peek_n(1).kind == 'operator' and self.peek_n(1).value == '=>':
                self.advance()
                self.advance()
                param = self.located(Parameter(tok.value), tok)
                body = self.expression()
                return self.located(ArrowFunction(param, body), tok)
            self.advance()
            if self.check('('):
                args = self.arguments(tok, "Expected closing parenthesis in function call")
                return self.located(FunctionCall(tok.value, args), tok)
            return self.located(Identifier(tok.value), tok)
        if tok.kind == 'number':
            self.advance()
            return self.located(NumberLiteral(tok.value), tok)
        if tok.kind == 'string':
            self.advance()
            return self.located(StringLiteral(tok.value[1:-1]), tok)
        if tok.kind == 'keyword' and tok.value == 'this':
            self.advance()
            return self.located(ThisExpression(), tok)
        if tok.kind == 'keyword' and tok.value == 'new':
            return self.new_expression()
        if self.match('('):
            node = self.expression()
            self.expect(')', "Expected closing parenthesis")
            return node
        if self.match('['):
            elements = self.expression_list(']')
            self.expect(']', "Expected closing bracket")
            return self.located(ArrayLiteral(elements), tok)
        if self.match('{'):
            return self.object_literal(tok)
        self.error(f"Unexpected token: {tok.value}", tok)

    def new_expression(self):
        start = self.advance()  # 'new'
        name_tok = self.peek()
        if name_tok.kind != 'identifier':
            self.error("Expected class name after new", name_tok)
        self.advance()
        if not self.check('('):
            self.error("Expected opening parenthesis after class name")
        args = self.arguments(name_tok, "Expected closing parenthesis in new expression")
        return self.located(NewExpression(name_tok.value, args), start)

    def object_literal(self, start):
        properties = []
        while not self.check('}') and not self.at_end():
            key_tok = self.peek()
            if key_tok.kind == 'identifier':
                key = key_tok.value
            elif key_tok.kind == 'string':
                key = key_tok.value[1:-1]
            else:
                self.error("Expected property name", key_tok)
            self.advance()
            self.expect(':', "Expected ':' after property name")
            value = self.expression()
            properties.append(self.located(Property(key, value), key_tok))
            if not self.match(','):
                break
        self.expect('}', "Expected closing brace")
        return self.located(ObjectLiteral(properties), start)

# =====================================================
# SEMANTIC ANALYZER (scopes + coarse type inference)
# =====================================================
COMPARISON_OPERATORS = {'<', '>', '<=', '>=', '==', '!=', '&&', '||'}


class Symbol:
    def __init__(self, kind, declaration, data_type='any', initialized=True,
                 parameters=None, return_type=None):
        self.kind = kind                # 'variable' | 'parameter' | 'function'
        self.declaration = declaration  # let/const/var/function/method/class/param/this/builtin
        self.data_type = data_type
        self.initialized = initialized
        self.parameters = parameters
        self.return_type = return_type

    @property
    def variadic(self):
        return any(p.startswith('...') for p in self.parameters or [])

    def to_dict(self):
        d = {
            'type': self.kind,
            'declarationType': self.declaration,
            'dataType': self.data_type,
            'initialized': self.initialized,
        }
        if self.parameters is not None:
            d['parameters'] = list(self.parameters)
        if self.return_type is not None:
            d['returnType'] = self.return_type
        return d

    def __repr__(self):
        return f"Symbol({self.kind}, {self.declaration}, {self.data_type})"


class Scope:
    def __init__(self, name, parent=None):
        self.name = name
        self.parent = parent
        self.symbols = OrderedDict()
        self.children = []
        if parent is not None:
            parent.children.append(self)

    def lookup_local(self, name):
        return self.symbols.get(name)

    def resolve(self, name):
        scope = self
        while scope is not None:
            if name in scope.symbols:
                return scope.symbols[name]
            scope = scope.parent
        return None

    def path(self):
        names = []
        scope = self
        while scope.parent is not None:
            names.append(scope.name)
            scope = scope.parent
        return list(reversed(names))


class SymbolTable:
    """Finished scope tree, plus a flattened view for display."""

    def __init__(self, global_scope):
        self.global_scope = global_scope

    def flatten(self):
        table = OrderedDict()

        def walk(scope):
            prefix = scope.path()
            for name, symbol in scope.symbols.items():
                table['::'.join(prefix + [name])] = symbol
            for child in scope.children:
                walk(child)

        walk(self.global_scope)
        return table

    def to_dict(self):
        return OrderedDict((name, sym.to_dict()) for name, sym in self.flatten().items())

    def __contains__(self, qualified_name):
        return qualified_name in self.flatten()

    def __getitem__(self, qualified_name):
        return self.flatten()[qualified_name]


def builtin_symbols():
    return OrderedDict([
        ('console', Symbol('variable', 'builtin', 'object')),
        ('console.log', Symbol('function', 'builtin', 'function',
                               parameters=['...args'], return_type='void')),
    ])


class SemanticAnalyzer:
    def __init__(self):
        self.global_scope = Scope('global')
        self.global_scope.symbols.update(builtin_symbols())
        self.scopes = [self.global_scope]
        self.returns = []  # one list of returned types per enclosing function
        self.block_count = 0
        self.arrow_count = 0

    @property
    def current(self):
        return self.scopes[-1]

    @contextmanager
    def scope(self, name):
        scope = Scope(name, self.current)
        self.scopes.append(scope)
        try:
            yield scope
        finally:
            self.scopes.pop()

    def run(self, program):
        self.analyze(program)
        logger.debug("semantic analysis visited %d block(s)", self.block_count)
        return program, SymbolTable(self.global_scope)

    def declare(self, name, symbol, node):
        if self.current.lookup_local(name) is not None:
            raise SemanticError(f"Duplicate declaration: {name}", node.line, node.column)
        self.current.symbols[name] = symbol
        return symbol

    def declare_params(self, params):
        for param in params:
            if self.current.lookup_local(param.name) is not None:
                raise SemanticError(f"Duplicate parameter: {param.name}", param.line, param.column)
            self.current.symbols[param.name] = Symbol('parameter', 'param')

    def analyze(self, node):
        if isinstance(node, Program):
            for s in node.statements:
                self.analyze(s)
        elif isinstance(node, Block):
            self.block_count += 1
            with self.scope(f"block{self.block_count}"):
                for s in node.statements:
                    self.analyze(s)
        elif isinstance(node, FunctionDeclaration):
            symbol = self.declare(node.name, Symbol(
                'function', 'function', 'function',
                parameters=[p.name for p in node.params], return_type='any'), node)
            with self.scope(node.name):
                self.declare_params(node.params)
                symbol.return_type = self.analyze_body(node.body)
        elif isinstance(node, ClassDeclaration):
            self.analyze_class(node)
        elif isinstance(node, VariableDeclaration):
            data_type = 'any'
            if node.init is not None:
                self.analyze(node.init)
                data_type = self.infer_type(node.init)
            self.declare(node.name, Symbol(
                'variable', node.keyword, data_type, initialized=node.init is not None), node)
        elif isinstance(node, IfStatement):
            self.analyze(node.condition)
            self.analyze(node.then_block)
            if node.else_block is not None:
                self.analyze(node.else_block)
        elif isinstance(node, ReturnStatement):
            returned = 'void'
            if node.argument is not None:
                self.analyze(node.argument)
                returned = self.infer_type(node.argument)
            if self.returns:
                self.returns[-1].append(returned)
        elif isinstance(node, Identifier):
            self.resolve(node.name, node)
        elif isinstance(node, ThisExpression):
            self.resolve('this', node)
        elif isinstance(node, BinaryExpression):
            self.analyze(node.left)
            self.analyze(node.right)
        elif isinstance(node, AssignmentExpression):
            self.analyze_assignment(node)
        elif isinstance(node, FunctionCall):
            for arg in node.arguments:
                self.analyze(arg)
            symbol = self.current.resolve(node.name)
            if symbol is None:
                raise SemanticError(f"Undefined function: {node.name}", node.line, node.column)
            self.check_arity(f"Function {node.name}", symbol, node)
        elif isinstance(node, MethodCall):
            self.analyze(node.object)
            for arg in node.arguments:
                self.analyze(arg)
            if isinstance(node.object, Identifier):
                symbol = self.current.resolve(f"{node.object.name}.{node.method}")
                if symbol is not None:
                    self.check_arity(f"Function {node.object.name}.{node.method}", symbol, node)
        elif isinstance(node, MemberExpression):
            self.analyze(node.object)
        elif isinstance(node, NewExpression):
            for arg in node.arguments:
                self.analyze(arg)
            symbol = self.current.resolve(node.class_name)
            if symbol is None:
                raise SemanticError(f"Undefined class: {node.class_name}", node.line, node.column)
            if symbol.data_type != 'class':
                raise SemanticError(f"{node.class_name} is not a class", node.line, node.column)
            self.check_arity(f"Constructor of {node.class_name}", symbol, node)
        elif isinstance(node, ArrayLiteral):
            for element in node.elements:
                self.analyze(element)
        elif isinstance(node, ObjectLiteral):
            for prop in node.properties:
                self.analyze(prop.expression)
        elif isinstance(node, ArrowFunction):
            self.arrow_count += 1
            with self.scope(f"arrow{self.arrow_count}"):
                self.declare_params([node.param])
                self.analyze(node.body)

    def analyze_body(self, body):
        self.returns.append([])
        self.analyze(body)
        returned = self.returns.pop()
        return next((t for t in returned if t != 'void'), 'void')

    def analyze_class(self, node):
        constructors = [m for m in node.methods if m.name == 'constructor']
        if len(constructors) > 1:
            dup = constructors[1]
            raise SemanticError(f"Duplicate constructor in class {node.name}", dup.line, dup.column)
        params = [p.name for p in constructors[0].params] if constructors else None
        self.declare(node.name, Symbol('variable', 'class', 'class', parameters=params), node)
        with self.scope(node.name):
            for method in node.methods:
                symbol = None
                if method.name != 'constructor':
                    symbol = self.declare(method.name, Symbol(
                        'function', 'method', 'function',
                        parameters=[p.name for p in method.params], return_type='any'), method)
                with self.scope(method.name):
                    # instance binding
                    self.current.symbols['this'] = Symbol('variable', 'this', node.name)
                    self.declare_params(method.params)
                    returned = self.analyze_body(method.body)
                if symbol is not None:
                    symbol.return_type = returned

    def analyze_assignment(self, node):
        target = node.target
        if isinstance(target, Identifier):
            symbol = self.resolve(target.name, target)
        else:
            self.analyze(target.object)
            symbol = None
        self.analyze(node.expression)
        if symbol is not None:
            symbol.initialized = True

    def resolve(self, name, node):
        symbol = self.current.resolve(name)
        if symbol is None:
            raise SemanticError(f"Undefined variable: {name}", node.line, node.column)
        return symbol

    def check_arity(self, label, symbol, node):
        if symbol.parameters is None or symbol.variadic:
            return
        if symbol.kind != 'function' and symbol.data_type != 'class':
            return
        expected = len(symbol.parameters)
        got = len(node.arguments)
        if expected != got:
            noun = 'argument' if expected == 1 else 'arguments'
            raise SemanticError(f"{label} expects {expected} {noun} but got {got}",
                                node.line, node.column)

    def infer_type(self, expr):
        if isinstance(expr, NumberLiteral):
            return 'number'
        if isinstance(expr, StringLiteral):
            return 'string'
        if isinstance(expr, ArrayLiteral):
            return 'array'
        if isinstance(expr, ObjectLiteral):
            return 'object'
        if isinstance(expr, ArrowFunction):
            return 'function'
        if isinstance(expr, NewExpression):
            return expr.class_name
        if isinstance(expr, Identifier):
            symbol = self.current.resolve(expr.name)
            return symbol.data_type if symbol is not None else 'any'
        if isinstance(expr, AssignmentExpression):
            return self.infer_type(expr.expression)
        if isinstance(expr, FunctionCall):
            symbol = self.current.resolve(expr.name)
            if symbol is not None and symbol.kind == 'function' and symbol.return_type:
                return symbol.return_type
            return 'any'
        if isinstance(expr, BinaryExpression):
            if expr.operator in COMPARISON_OPERATORS:
                return 'boolean'
            lt = self.infer_type(expr.left)
            rt = self.infer_type(expr.right)
            if expr.operator == '+' and 'string' in (lt, rt):
                return 'string'
            if lt == 'number' and rt == 'number':
                return 'number'
        return 'any'

# =====================================================
# IR (TAC) GENERATION
# =====================================================
class BinaryOperator(Enum):
    ADD = '+'
    SUB = '-'
    MUL = '*'
    DIV = '/'
    LT = '<'
    GT = '>'
    LE = '<='
    GE = '>='
    EQ = '=='
    NE = '!='
    AND = '&&'
    OR = '||'


class TACInstruction:
    def __init__(self, op, dest=None, arg1=None, arg2=None, operator=None):
        self.op = op
        self.dest = dest
        self.arg1 = arg1
        self.arg2 = arg2
        self.operator = operator

    @property
    def rhs(self):
        if self.op == 'binary':
            return f"{self.arg1} {self.operator.value} {self.arg2}"
        return str(self.arg1)

    def __eq__(self, other):
        if not isinstance(other, TACInstruction):
            return NotImplemented
        return repr(self) == repr(other)

    def __hash__(self):
        return hash(repr(self))

    def __repr__(self):
        if self.op == 'label':
            return f"{self.dest}:"
        if self.op == 'goto':
            return f"goto {self.dest}"
        if self.op == 'if':
            return f"if {self.arg1} goto {self.dest}"
        if self.op == 'param':
            return f"param {self.arg1}"
        if self.op == 'return':
            return "return" if self.arg1 is None else f"return {self.arg1}"
        if self.op == 'function':
            return f"function {self.dest}:"
        if self.op == 'class':
            return f"class {self.dest}:"
        if self.op == 'call':
            return f"{self.dest} = call {self.arg1}, {self.arg2}"
        if self.op == 'new':
            return f"{self.dest} = new {self.arg1}, {self.arg2}"
        if self.op == 'array':
            return f"{self.dest} = []"
        if self.op == 'object':
            return f"{self.dest} = {{}}"
        if self.op == 'store':
            return f"{self.dest}[{self.arg1}] = {self.arg2}"
        if self.op == 'setfield':
            return f"{self.dest}.{self.arg1} = {self.arg2}"
        if self.op == 'getfield':
            return f"{self.dest} = {self.arg1}.{self.arg2}"
        return f"{self.dest} = {self.rhs}"

    __str__ = __repr__


class IRGenerator:
    def __init__(self, context=None):
        self.context = context or CompilationContext()
        self.tac = []

    def emit(self, op, dest=None, arg1=None, arg2=None, operator=None):
        self.tac.append(TACInstruction(op, dest, arg1, arg2, operator))

    def gen(self, node):
        if isinstance(node, (Program, Block)):
            for s in node.statements:
                self.gen(s)
            return self.tac
        if isinstance(node, VariableDeclaration):
            if node.init is not None:
                value = self.gen_expr(node.init)
                self.emit('assign', dest=node.name, arg1=value)
            return
        if isinstance(node, FunctionDeclaration):
            self.gen_function(node.name, node.params, node.body)
            return
        if isinstance(node, ClassDeclaration):
            self.emit('class', dest=node.name)
            for method in node.methods:
                self.gen_function(f"{node.name}.{method.name}", method.params, method.body)
            return
        if isinstance(node, IfStatement):
            l_true = self.context.new_label()
            l_end = self.context.new_label()
            l_false = self.context.new_label() if node.else_block is not None else None
            cond = self.gen_expr(node.condition)
            self.emit('if', dest=l_true, arg1=cond)
            self.emit('goto', dest=l_false or l_end)
            self.emit('label', dest=l_true)
            self.gen(node.then_block)
            if l_false is not None:
                self.emit('goto', dest=l_end)
                self.emit('label', dest=l_false)
                self.gen(node.else_block)
            self.emit('label', dest=l_end)
            return
        if isinstance(node, ReturnStatement):
            value = None
            if node.argument is not None:
                value = self.gen_expr(node.argument)
            self.emit('return', arg1=value)
            return
        # expression statement
        self.gen_expr(node)

    def gen_function(self, name, params, body):
        self.emit('function', dest=name)
        # formal parameters carry their position in arg2; call arguments don't
        for index, p in enumerate(params):
            self.emit('param', arg1=p.name, arg2=index)
        self.gen(body)
        # every body ends in a return, so it closes its own frame
        if not body.statements or not isinstance(body.statements[-1], ReturnStatement):
            self.emit('return')

    def gen_args(self, arguments):
        args = [self.gen_expr(a) for a in arguments]
        for a in args:
            self.emit('param', arg1=a)
        return len(args)

    def gen_expr(self, expr):
        if isinstance(expr, NumberLiteral):
            return expr.value
        if isinstance(expr, StringLiteral):
            quote = "'" if '"' in expr.value else '"'
            return f"{quote}{expr.value}{quote}"
        if isinstance(expr, Identifier):
            return expr.name
        if isinstance(expr, ThisExpression):
            return 'this'
        if isinstance(expr, BinaryExpression):
            a = self.gen_expr(expr.left)
            b = self.gen_expr(expr.right)
            dest = self.context.new_temp()
            self.emit('binary', dest=dest, arg1=a, arg2=b, operator=BinaryOperator(expr.operator))
            return dest
        if isinstance(expr, AssignmentExpression):
            return self.gen_assignment(expr)
        if isinstance(expr, FunctionCall):
            count = self.gen_args(expr.arguments)
            dest = self.context.new_temp()
            self.emit('call', dest=dest, arg1=expr.name, arg2=count)
            return dest
        if isinstance(expr, MethodCall):
            obj = self.gen_expr(expr.object)
            count = self.gen_args(expr.arguments)
            dest = self.context.new_temp()
            self.emit('call', dest=dest, arg1=f"{obj}.{expr.method}", arg2=count)
            return dest
        if isinstance(expr, MemberExpression):
            obj = self.gen_expr(expr.object)
            dest = self.context.new_temp()
            self.emit('getfield', dest=dest, arg1=obj, arg2=expr.property)
            return dest
        if isinstance(expr, NewExpression):
            count = self.gen_args(expr.arguments)
            dest = self.context.new_temp()
            self.emit('new', dest=dest, arg1=expr.class_name, arg2=count)
            return dest
        if isinstance(expr, ArrayLiteral):
            dest = self.context.new_temp()
            self.emit('array', dest=dest)
            for index, element in enumerate(expr.elements):
                value = self.gen_expr(element)
                self.emit('store', dest=dest, arg1=index, arg2=value)
            return dest
        if isinstance(expr, ObjectLiteral):
            dest = self.context.new_temp()
            self.emit('object', dest=dest)
            for prop in expr.properties:
                value = self.gen_expr(prop.expression)
                self.emit('setfield', dest=dest, arg1=prop.key, arg2=value)
            return dest
        if isinstance(expr, ArrowFunction):
            l_entry = self.context.new_label()
            l_skip = self.context.new_label()
            self.emit('goto', dest=l_skip)
            self.emit('function', dest=l_entry)
            self.emit('param', arg1=expr.param.name, arg2=0)
            value = self.gen_expr(expr.body)
            self.emit('return', arg1=value)
            self.emit('label', dest=l_skip)
            return l_entry
        raise TypeError(f"cannot lower {expr.kind} as an expression")

    def gen_assignment(self, expr):
        target = expr.target
        compound = expr.operator != '='
        if isinstance(target, MemberExpression):
            obj = self.gen_expr(target.object)
            current = None
            if compound:
                current = self.context.new_temp()
                self.emit('getfield', dest=current, arg1=obj, arg2=target.property)
            value = self.gen_expr(expr.expression)
            if compound:
                value = self.combine(expr.operator, current, value)
            self.emit('setfield', dest=obj, arg1=target.property, arg2=value)
            return value
        value = self.gen_expr(expr.expression)
        if compound:
            value = self.combine(expr.operator, target.name, value)
        self.emit('assign', dest=target.name, arg1=value)
        return target.name

    def combine(self, assign_op, left, right):
        dest = self.context.new_temp()
        self.emit('binary', dest=dest, arg1=left, arg2=right,
                  operator=BinaryOperator(assign_op[0]))
        return dest

# =====================================================
# OPTIMIZER: constant folding/propagation + de-duplication
# =====================================================
_NUMBER_RE = re.compile(r'-?(\d+\.?\d*|\.\d+)')

# Every operator is listed; None means "never folded".
_FOLDERS = {
    BinaryOperator.ADD: operator.add,
    BinaryOperator.SUB: operator.sub,
    BinaryOperator.MUL: operator.mul,
    BinaryOperator.DIV: operator.truediv,
    BinaryOperator.LT: lambda x, y: 1 if x < y else 0,
    BinaryOperator.GT: lambda x, y: 1 if x > y else 0,
    BinaryOperator.LE: lambda x, y: 1 if x <= y else 0,
    BinaryOperator.GE: lambda x, y: 1 if x >= y else 0,
    BinaryOperator.EQ: lambda x, y: 1 if x == y else 0,
    BinaryOperator.NE: lambda x, y: 1 if x != y else 0,
    BinaryOperator.AND: None,
    BinaryOperator.OR: None,
}

# instructions that write a destination without being assign/binary
_OPAQUE_WRITES = ('call', 'new', 'array', 'object', 'getfield')


def parse_number(token):
    text = str(token)
    if not _NUMBER_RE.fullmatch(text):
        return None
    if re.fullmatch(r'-?\d+', text):
        return int(text)
    return float(text)


def format_number(value):
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def is_literal(token):
    text = str(token)
    if parse_number(text) is not None:
        return True
    return len(text) >= 2 and text[0] == text[-1] and text[0] in '"\''


def fold(op, left, right):
    """Return the folded literal text, or None when the line can't be folded."""
    folder = _FOLDERS[op]
    a = parse_number(left)
    b = parse_number(right)
    if folder is None or a is None or b is None:
        return None
    if op is BinaryOperator.DIV and b == 0:
        return None
    return format_number(folder(a, b))


def fold_constants(tac):
    known = {}
    result = []
    for instr in tac:
        # new frame, function exit or join point: nothing is known any more
        if instr.op in ('function', 'class', 'return', 'label'):
            known.clear()
            result.append(instr)
        elif instr.op == 'binary':
            left = known.get(instr.arg1, instr.arg1)
            right = known.get(instr.arg2, instr.arg2)
            value = fold(instr.operator, left, right)
            if value is not None:
                known[instr.dest] = value
                result.append(TACInstruction('assign', dest=instr.dest, arg1=value))
            else:
                known.pop(instr.dest, None)
                result.append(TACInstruction('binary', dest=instr.dest, arg1=left, arg2=right,
                                             operator=instr.operator))
        elif instr.op == 'assign':
            if instr.arg1 == instr.dest:
                continue
            value = known.get(instr.arg1, instr.arg1)
            if is_literal(value):
                known[instr.dest] = value
            else:
                known.pop(instr.dest, None)
            result.append(TACInstruction('assign', dest=instr.dest, arg1=value))
        else:
            if instr.op in _OPAQUE_WRITES:
                known.pop(instr.dest, None)
            result.append(instr)
    return result


def remove_duplicates(tac):
    seen = set()
    result = []
    for instr in tac:
        if instr.op in ('assign', 'binary'):
            key = (instr.dest, instr.rhs)
            if key in seen:
                continue
            seen.add(key)
        result.append(instr)
    return result


def optimize_tac(tac):
    # One pass only: chains of dependent constants may need a second run.
    return remove_duplicates(fold_constants(tac))

# =====================================================
# CODE GENERATION (pseudo x86-64, one location per name)
# =====================================================
_ARITHMETIC = {
    BinaryOperator.ADD: 'add',
    BinaryOperator.SUB: 'sub',
    BinaryOperator.MUL: 'imul',
    BinaryOperator.AND: 'and',
    BinaryOperator.OR: 'or',
}
_SETCC = {
    BinaryOperator.LT: 'setl',
    BinaryOperator.GT: 'setg',
    BinaryOperator.LE: 'setle',
    BinaryOperator.GE: 'setge',
    BinaryOperator.EQ: 'sete',
    BinaryOperator.NE: 'setne',
}


def emit_epilogue(asm):
    asm.append("  mov rsp, rbp")
    asm.append("  pop rbp")
    asm.append("  ret")


def emit_call(asm, dest, target, count):
    asm.append(f"  call {target}")
    asm.append(f"  mov {dest}, rax")
    if int(count) > 0:
        asm.append(f"  add rsp, {int(count) * 8}")


def tac_to_assembly(tac):
    asm = []
    for instr in tac:
        if instr.op == 'function':
            asm.append(f"{instr.dest}:")
            asm.append("  push rbp")
            asm.append("  mov rbp, rsp")
        elif instr.op == 'param':
            if instr.arg2 is not None:
                asm.append(f"  mov {instr.arg1}, [rbp + {16 + 8 * instr.arg2}]")
            else:
                asm.append(f"  push {instr.arg1}")
        elif instr.op == 'return':
            if instr.arg1 is not None:
                asm.append(f"  mov rax, {instr.arg1}")
            emit_epilogue(asm)
        elif instr.op == 'label':
            asm.append(f"{instr.dest}:")
        elif instr.op == 'if':
            asm.append(f"  cmp {instr.arg1}, 0")
            asm.append(f"  jne {instr.dest}")
        elif instr.op == 'goto':
            asm.append(f"  jmp {instr.dest}")
        elif instr.op == 'call':
            emit_call(asm, instr.dest, instr.arg1, instr.arg2)
        elif instr.op == 'new':
            emit_call(asm, instr.dest, f"{instr.arg1}.constructor", instr.arg2)
        elif instr.op == 'binary':
            op = instr.operator
            asm.append(f"  mov rax, {instr.arg1}")
            if op is BinaryOperator.DIV:
                asm.append("  xor rdx, rdx")
                asm.append(f"  div {instr.arg2}")
            elif op in _SETCC:
                asm.append(f"  cmp rax, {instr.arg2}")
                asm.append(f"  {_SETCC[op]} al")
                asm.append("  movzx rax, al")
            else:
                asm.append(f"  {_ARITHMETIC[op]} rax, {instr.arg2}")
            asm.append(f"  mov {instr.dest}, rax")
        elif instr.op == 'array':
            asm.append("  call alloc_array")
            asm.append(f"  mov {instr.dest}, rax")
        elif instr.op == 'object':
            asm.append("  call alloc_object")
            asm.append(f"  mov {instr.dest}, rax")
        elif instr.op == 'store':
            asm.append(f"  mov [{instr.dest} + {int(instr.arg1) * 8}], {instr.arg2}")
        elif instr.op == 'setfield':
            asm.append(f"  mov [{instr.dest}.{instr.arg1}], {instr.arg2}")
        elif instr.op == 'getfield':
            asm.append(f"  mov {instr.dest}, [{instr.arg1}.{instr.arg2}]")
        elif instr.op == 'class':
            asm.append(f"; class {instr.dest}")
        elif instr.op == 'assign':
            asm.append(f"  mov {instr.dest}, {instr.arg1}")
        else:
            raise ValueError(f"unknown TAC op {instr.op!r}")
    return asm

# =====================================================
# PHASE ENTRY POINTS
# =====================================================
def lexical_analysis(code):
    return Lexer(code).tokens


def syntax_analysis(tokens):
    return Parser(tokens).parse()


def semantic_analysis(ast):
    return SemanticAnalyzer().run(ast)


def generate_intermediate_code(ast, context=None):
    return IRGenerator(context).gen(ast)


def optimize(tac):
    return optimize_tac(tac)


def generate_target_code(tac):
    return tac_to_assembly(tac)

# =====================================================
# COMPILER DRIVER
# =====================================================
def _empty_result():
    return {
        'tokens': [],
        'ast': None,
        'symbol_table': None,
        'tac': [],
        'optimized_tac': [],
        'asm': [],
        'errors': [],
    }


def _check_phase(until):
    if until not in PHASES:
        raise ValueError(f"unknown phase {until!r}; expected one of {', '.join(PHASES)}")
    return PHASES.index(until)


def run_pipeline(code, until='target', result=None, verbose=False):
    """Run every phase up to and including `until`; raise the first CompilerError.

    `result` may be passed in to collect outputs as each phase finishes.
    """
    last = _check_phase(until)
    result = _empty_result() if result is None else result
    log = logger.info if verbose else logger.debug
    context = CompilationContext()

    tokens = lexical_analysis(code)
    result['tokens'] = tokens
    log("lexical: %d token(s)", len(tokens))
    if last < 1:
        return result

    ast = syntax_analysis(tokens)
    result['ast'] = ast
    log("syntax: %r", ast)
    if last < 2:
        return result

    _, table = semantic_analysis(ast)
    result['symbol_table'] = table
    log("semantic: %d symbol(s)", len(table.flatten()))
    if last < 3:
        return result

    tac = generate_intermediate_code(ast, context)
    result['tac'] = tac
    log("intermediate: %s", tac)
    if last < 4:
        return result

    optimized = optimize(tac)
    result['optimized_tac'] = optimized
    log("optimized: %s", optimized)
    if last < 5:
        return result

    result['asm'] = generate_target_code(optimized)
    log("target: %d line(s)", len(result['asm']))
    return result


def compile_source(code, until='target', verbose=False):
    _check_phase(until)
    result = _empty_result()
    try:
        run_pipeline(code, until, result=result, verbose=verbose)
    except CompilerError as exc:
        logger.info("compilation failed: %s", exc)
        result['errors'] = [exc.to_dict()]
    return result

# =====================================================
# COMMAND LINE
# =====================================================
def format_result(result):
    lines = []
    if result['tokens']:
        lines.append("== tokens")
        lines.extend(f"{t.line}:{t.column} {t.kind} {t.value}" for t in result['tokens'])
    if result['ast'] is not None:
        lines.append("== ast")
        lines.append(repr(result['ast']))
    if result['symbol_table'] is not None:
        lines.append("== symbols")
        lines.extend(f"{name}: {sym.to_dict()}" for name, sym in result['symbol_table'].flatten().items())
    if result['tac']:
        lines.append("== intermediate")
        lines.extend(repr(i) for i in result['tac'])
    if result['optimized_tac']:
        lines.append("== optimized")
        lines.extend(repr(i) for i in result['optimized_tac'])
    if result['asm']:
        lines.append("== target")
        lines.extend(result['asm'])
    return lines


def main(argv=None):
    parser = argparse.ArgumentParser(prog='compiler-phases',
                                     description="Show every compilation phase for a source file.")
    parser.add_argument('source', nargs='?', help="source file (default: stdin)")
    parser.add_argument('--phase', choices=PHASES, default='target', help="last phase to run")
    parser.add_argument('-v', '--verbose', action='store_true', help="log each phase")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING,
                        format='%(levelname)s %(name)s: %(message)s')

    if args.source:
        with open(args.source, encoding='utf-8') as f:
            code = f.read()
    else:
        code = sys.stdin.read()

    result = compile_source(code, until=args.phase, verbose=args.verbose)
    for line in format_result(result):
        print(line)
    if result['errors']:
        for err in result['errors']:
            print(str(CompilerError(err['message'], err['line'], err['column'], err['phase'])),
                  file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
