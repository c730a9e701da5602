"""
Code generation utilities

Provides helpers for generating C and Lua source text.
"""

import re


class CodeGen:
    """Code generation helper with indentation support"""

    def __init__(self, indent_str: str = '    '):
        self._lines: list[str] = []
        self._indent: int = 0
        self._indent_str: str = indent_str

    def line(self, text: str = ''):
        """Add a line with current indentation"""
        if text:
            self._lines.append(self._indent_str * self._indent + text)
        else:
            self._lines.append('')

    def lines(self, *texts: str):
        """Add multiple lines"""
        for text in texts:
            self.line(text)

    def raw(self, text: str):
        """Add raw text without indentation processing"""
        self._lines.append(text)

    def indent(self):
        """Increase indentation"""
        self._indent += 1

    def dedent(self):
        """Decrease indentation"""
        if self._indent > 0:
            self._indent -= 1

    def block(self, header: str, footer: str = '}'):
        """Context manager for code blocks"""
        return _BlockContext(self, header, footer)

    def output(self) -> str:
        """Get generated code as string"""
        return '\n'.join(self._lines) + '\n'

    def clear(self):
        """Clear all generated code"""
        self._lines.clear()
        self._indent = 0


class _BlockContext:
    """Context manager for indented code blocks"""

    def __init__(self, gen: CodeGen, header: str, footer: str):
        self._gen = gen
        self._header = header
        self._footer = footer

    def __enter__(self):
        self._gen.line(self._header)
        self._gen.indent()
        return self

    def __exit__(self, *args):
        self._gen.dedent()
        self._gen.line(self._footer)


_WORD_BOUNDARY = re.compile(r'(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])')

# Lua reserved keywords
LUA_KEYWORDS = {
    'and', 'break', 'do', 'else', 'elseif', 'end', 'false', 'for',
    'function', 'goto', 'if', 'in', 'local', 'nil', 'not', 'or',
    'repeat', 'return', 'then', 'true', 'until', 'while'
}

# C reserved keywords that can clash with argument names
C_KEYWORDS = {
    'auto', 'break', 'case', 'char', 'const', 'continue', 'default', 'do',
    'double', 'else', 'enum', 'extern', 'float', 'for', 'goto', 'if', 'int',
    'long', 'register', 'return', 'short', 'signed', 'sizeof', 'static',
    'struct', 'switch', 'typedef', 'union', 'unsigned', 'void', 'volatile',
    'while', 'bool', 'true', 'false',
}


def as_snake_case(name: str, prefix: str = '') -> str:
    """Convert a PascalCase or snake_case name to snake_case, removing prefix

    Examples:
        LookupError -> lookup_error
        HTTPClient -> http_client
        get_value -> get_value
    """
    result = _WORD_BOUNDARY.sub('_', name).lower()
    if prefix and result.startswith(prefix):
        result = result[len(prefix):]
    return result


def as_pascal_case(name: str, prefix: str = '') -> str:
    """Convert a snake_case name to PascalCase, removing prefix

    Examples:
        find_item -> FindItem
        not_found -> NotFound
        Magic -> Magic
    """
    if prefix and name.startswith(prefix):
        name = name[len(prefix):]
    if '_' not in name:
        return name[:1].upper() + name[1:]
    return ''.join(part.capitalize() for part in name.split('_') if part)


def safe_identifier(name: str, keywords: set[str]) -> str:
    """Append an underscore to names that clash with target keywords"""
    if name in keywords:
        return name + '_'
    return name


def c_string_literal(text: str) -> str:
    """Quote text as a C/Lua double-quoted string literal"""
    escaped = text.replace('\\', '\\\\').replace('"', '\\"').replace('\n', '\\n')
    return f'"{escaped}"'
