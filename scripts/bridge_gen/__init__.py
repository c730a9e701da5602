"""
bridge_gen - interface-to-binding compiler core

This framework turns a language-neutral interface description into the
pieces a binding needs: a validated interface model, the byte-level
marshalling protocol, handle lifecycles, the flat C-ABI scaffolding layer,
special-operation hooks per host language, and emitters that generate
C headers, Lua bindings and LuaCATS annotations.
"""

from .errors import (
    BridgeError, ValidationError, InternalFault, ProtocolError, DeclaredError,
    CALL_SUCCESS, CALL_ERROR, CALL_UNEXPECTED_ERROR,
)
from .ir import (
    InterfaceDefinition, TypeRef, Primitive, NamedType, OptionalType, SequenceType, MapType,
    Field, Argument, Signature, Function, Constructor, Method,
    TypeDef, Record, Variant, Enum, ErrorEnum, Object, CallbackInterface,
    OperationKind, SpecialOperation, parse_type,
)
from .validate import validate
from .codegen import CodeGen
from .marshal import BufferReader, BufferWriter, Converter, ConverterFactory
from .values import ValueTypes
from .lifecycle import HandleArena
from .scaffolding import CONTRACT_VERSION, CallStatus, FfiFunction, FfiKind, FfiType, Scaffolding
from .special_ops import SpecialOperationMapper
from .types import TypeConverter, TypeHandler, ConversionContext
from .native import NativeLibrary
from .host import Bindings, ObjectProxy, bind
from .cheader import HeaderGenerator
from .lua import LuaGenerator
from .luacats import LuaCATSGenerator
from .generator import Generator, LanguageConfig

__all__ = [
    'BridgeError', 'ValidationError', 'InternalFault', 'ProtocolError', 'DeclaredError',
    'CALL_SUCCESS', 'CALL_ERROR', 'CALL_UNEXPECTED_ERROR',
    'InterfaceDefinition', 'TypeRef', 'Primitive', 'NamedType', 'OptionalType', 'SequenceType', 'MapType',
    'Field', 'Argument', 'Signature', 'Function', 'Constructor', 'Method',
    'TypeDef', 'Record', 'Variant', 'Enum', 'ErrorEnum', 'Object', 'CallbackInterface',
    'OperationKind', 'SpecialOperation', 'parse_type',
    'validate',
    'CodeGen',
    'BufferReader', 'BufferWriter', 'Converter', 'ConverterFactory',
    'ValueTypes',
    'HandleArena',
    'CONTRACT_VERSION', 'CallStatus', 'FfiFunction', 'FfiKind', 'FfiType', 'Scaffolding',
    'SpecialOperationMapper',
    'TypeConverter', 'TypeHandler', 'ConversionContext',
    'NativeLibrary',
    'Bindings', 'ObjectProxy', 'bind',
    'HeaderGenerator',
    'LuaGenerator',
    'LuaCATSGenerator',
    'Generator', 'LanguageConfig',
]
