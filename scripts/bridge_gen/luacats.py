"""
LuaCATS type definition generation module

Generates a .lua definition file for IDE autocompletion of the generated
Lua module.
"""

from typing import Optional, TYPE_CHECKING

from .codegen import LUA_KEYWORDS, safe_identifier

if TYPE_CHECKING:
    from .ir import InterfaceDefinition, Record, Enum, ErrorEnum, Object, CallbackInterface, Signature
    from .types import TypeConverter


class LuaCATSGenerator:
    """Generates LuaCATS type definition files"""

    def __init__(self, ci: 'InterfaceDefinition', type_conv: 'TypeConverter', module_name: str,
                 ignores: Optional[set[str]] = None):
        self.ci = ci
        self.type_conv = type_conv
        self.module_name = module_name
        self.ignores = ignores or set()

    def generate(self) -> str:
        """Generate complete LuaCATS type definition file"""
        lines = []
        lines.append('---@meta')
        lines.append(f'-- LuaCATS type definitions for {self.module_name}')
        lines.append('-- Auto-generated, do not edit')
        lines.append('')

        lines.append(f'---@class {self.module_name}.Fault')
        lines.append('---@field type string')
        lines.append('---@field variant? string')
        lines.append('---@field message? string')
        lines.append('')

        for record in self.ci.records():
            lines.extend(self._gen_record(record))
            lines.append('')
        for enum in self.ci.enums():
            if not enum.is_flat:
                lines.extend(self._gen_tagged(enum))
        for error in self.ci.errors():
            lines.extend(self._gen_tagged(error))
        for callback in self.ci.callback_interfaces():
            lines.extend(self._gen_callback(callback))
            lines.append('')
        for obj in self.ci.objects():
            lines.append(f'---@class {self.module_name}.{obj.name}')
            lines.append('')

        # Module class
        lines.append(f'---@class {self.module_name}')
        for obj in self.ci.objects():
            lines.append(f'---@field {obj.name} {self.module_name}.{obj.name}')
        lines.append(f'---@field Fault {self.module_name}.Fault')
        lines.append(f'local {self.module_name} = {{}}')
        lines.append('')

        for enum in self.ci.enums():
            if enum.is_flat:
                lines.extend(self._gen_flat_enum(enum))
                lines.append('')

        for obj in self.ci.objects():
            lines.extend(self._gen_object(obj))

        for func in self.ci.functions:
            if func.name in self.ignores:
                continue
            lines.extend(self._gen_func(f'{self.module_name}.{self._lua_name(func.name)}', func))
            lines.append('')

        lines.append(f'return {self.module_name}')
        return '\n'.join(lines) + '\n'

    @staticmethod
    def _lua_name(name: str) -> str:
        return safe_identifier(name, LUA_KEYWORDS)

    def _gen_record(self, record: 'Record') -> list[str]:
        lines = [f'---@class {self.module_name}.{record.name}']
        for f in record.fields:
            optional = '?' if f.has_default else ''
            lines.append(f'---@field {f.name}{optional} {self.type_conv.annotation(f.type)}')
        return lines

    def _gen_flat_enum(self, enum: 'Enum') -> list[str]:
        lines = [f'---@enum {self.module_name}.{enum.name}']
        lines.append(f'{self.module_name}.{enum.name} = {{')
        for i, variant in enumerate(enum.variants, start=1):
            lines.append(f'    {variant.name} = {i},')
        lines.append('}')
        return lines

    def _gen_tagged(self, enum: 'Enum') -> list[str]:
        """Data enums tag variants with `tag`, errors with `variant`"""
        is_error = enum.kind == 'error'
        tags = '|'.join(f'"{v.name}"' for v in enum.variants)
        if is_error:
            lines = [f'---@class {self.module_name}.{enum.name} : {self.module_name}.Fault']
            lines.append(f'---@field variant {tags}')
        else:
            lines = [f'---@class {self.module_name}.{enum.name}']
            lines.append(f'---@field tag {tags}')

        seen = set()
        for variant in enum.variants:
            for f in variant.fields:
                if f.name in seen:
                    continue
                seen.add(f.name)
                lines.append(f'---@field {f.name}? {self.type_conv.annotation(f.type)}')
        lines.append('')
        return lines

    def _fun_type(self, method: 'Signature') -> str:
        params = ', '.join(['self'] + [f'{a.name}: {self.type_conv.annotation(a.type)}'
                                       for a in method.arguments])
        ret = f': {self.type_conv.annotation(method.return_type)}' if method.return_type else ''
        return f'fun({params}){ret}'

    def _gen_callback(self, callback: 'CallbackInterface') -> list[str]:
        lines = [f'---@class {self.module_name}.{callback.name}']
        for method in callback.methods:
            lines.append(f'---@field {method.name} {self._fun_type(method)}')
        return lines

    def _gen_object(self, obj: 'Object') -> list[str]:
        qualified = f'{self.module_name}.{obj.name}'
        lines = []
        for cons in obj.constructors:
            if cons.name in self.ignores:
                continue
            lines.extend(self._gen_func(f'{qualified}.{self._lua_name(cons.name)}', cons,
                                        returns=qualified))
            lines.append('')
        for method in obj.methods:
            if method.name in self.ignores:
                continue
            lines.extend(self._gen_func(f'{qualified}:{self._lua_name(method.name)}', method))
            lines.append('')

        lines.append(f'---@return {qualified}')
        lines.append(f'function {qualified}:clone() end')
        lines.append('')
        lines.append(f'function {qualified}:close() end')
        lines.append('')
        return lines

    def _gen_func(self, name: str, sig: 'Signature', returns: Optional[str] = None) -> list[str]:
        lines = []
        if sig.docs:
            lines.extend(f'--- {line}'.rstrip() for line in sig.docs.splitlines())
        for arg in sig.arguments:
            optional = '?' if arg.has_default else ''
            lines.append(f'---@param {self._lua_name(arg.name)}{optional} {self.type_conv.annotation(arg.type)}')
        ret = returns or (self.type_conv.annotation(sig.return_type) if sig.return_type else None)
        if ret is not None:
            lines.append(f'---@return {ret}')
        param_names = ', '.join(self._lua_name(a.name) for a in sig.arguments)
        lines.append(f'function {name}({param_names}) end')
        return lines
