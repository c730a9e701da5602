"""
Type naming module

Spells interface types in each output language: C types for the scaffolding
layer, Python annotations for host classes and LuaCATS annotations for the
Lua module.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, TYPE_CHECKING

from .ir import TypeRef, Primitive, NamedType, OptionalType, SequenceType, MapType
from .scaffolding import FfiType

if TYPE_CHECKING:
    from .ir import InterfaceDefinition


C_TYPES = {
    FfiType.INT8: 'int8_t',
    FfiType.UINT8: 'uint8_t',
    FfiType.INT16: 'int16_t',
    FfiType.UINT16: 'uint16_t',
    FfiType.INT32: 'int32_t',
    FfiType.UINT32: 'uint32_t',
    FfiType.INT64: 'int64_t',
    FfiType.UINT64: 'uint64_t',
    FfiType.FLOAT32: 'float',
    FfiType.FLOAT64: 'double',
    FfiType.HANDLE: 'uint64_t',
    FfiType.BUFFER: 'BridgeBuffer',
    FfiType.OWNED_BUFFER: 'BridgeBuffer',
    FfiType.CALLBACK: 'BridgeForeignCallback',
}

PYTHON_PRIMITIVES = {
    'bool': 'bool',
    'string': 'str',
    'bytes': 'bytes',
    'f32': 'float',
    'f64': 'float',
}

LUACATS_PRIMITIVES = {
    'bool': 'boolean',
    'string': 'string',
    'bytes': 'string',
    'f32': 'number',
    'f64': 'number',
}


@dataclass
class ConversionContext:
    """Context for a custom type spelling"""
    type: TypeRef             # Declared type being spelled
    language: str             # 'python' or 'lua'
    module: str = ''          # Lua module name for qualified names
    ci: Optional['InterfaceDefinition'] = None


class TypeHandler(ABC):
    """Base class for custom type spellings"""

    @abstractmethod
    def python_type(self, ctx: ConversionContext) -> str:
        """Return a Python annotation"""
        pass

    @abstractmethod
    def luacats_type(self, ctx: ConversionContext) -> str:
        """Return a LuaCATS type annotation"""
        pass


class TypeConverter:
    """Spells declared types for one output language"""

    def __init__(self, ci: 'InterfaceDefinition', language: str, module: str = ''):
        if language not in ('python', 'lua'):
            raise ValueError(f'no type spellings for language: {language}')
        self.ci = ci
        self.language = language
        self.module = module or ci.namespace
        self._handlers: dict[str, TypeHandler] = {}

    def register(self, type_name: str, handler: TypeHandler):
        """Register a custom spelling for a type (as written in descriptions)"""
        self._handlers[type_name] = handler

    def has_handler(self, type_name: str) -> bool:
        return type_name in self._handlers

    def get_handler(self, type_name: str) -> Optional[TypeHandler]:
        return self._handlers.get(type_name)

    def annotation(self, type_ref: Optional[TypeRef]) -> str:
        """Spell a type reference; None is the empty return"""
        if type_ref is None:
            return 'None' if self.language == 'python' else 'nil'

        handler = self._handlers.get(str(type_ref))
        if handler is not None:
            ctx = ConversionContext(type=type_ref, language=self.language,
                                    module=self.module, ci=self.ci)
            if self.language == 'python':
                return handler.python_type(ctx)
            return handler.luacats_type(ctx)

        if self.language == 'python':
            return self._python_type(type_ref)
        return self._luacats_type(type_ref)

    def _python_type(self, type_ref: TypeRef) -> str:
        if isinstance(type_ref, Primitive):
            if type_ref.is_integer:
                return 'int'
            return PYTHON_PRIMITIVES[type_ref.kind]
        if isinstance(type_ref, OptionalType):
            return f'Optional[{self.annotation(type_ref.inner)}]'
        if isinstance(type_ref, SequenceType):
            return f'list[{self.annotation(type_ref.inner)}]'
        if isinstance(type_ref, MapType):
            return f'dict[{self.annotation(type_ref.key)}, {self.annotation(type_ref.value)}]'
        if isinstance(type_ref, NamedType):
            return type_ref.name
        return 'Any'

    def _luacats_type(self, type_ref: TypeRef) -> str:
        if isinstance(type_ref, Primitive):
            if type_ref.is_integer:
                return 'integer'
            return LUACATS_PRIMITIVES[type_ref.kind]
        if isinstance(type_ref, OptionalType):
            inner = self.annotation(type_ref.inner)
            if isinstance(type_ref.inner, MapType):
                inner = f'({inner})'
            return f'{inner}?'
        if isinstance(type_ref, SequenceType):
            inner = self.annotation(type_ref.inner)
            if isinstance(type_ref.inner, OptionalType):
                inner = f'({inner})'
            return f'{inner}[]'
        if isinstance(type_ref, MapType):
            return f'table<{self.annotation(type_ref.key)}, {self.annotation(type_ref.value)}>'
        if isinstance(type_ref, NamedType):
            return f'{self.module}.{type_ref.name}'
        return 'any'

    @staticmethod
    def c_type(ffi_type: Optional[FfiType]) -> str:
        """C spelling of a boundary type; None is void"""
        if ffi_type is None:
            return 'void'
        return C_TYPES[ffi_type]
