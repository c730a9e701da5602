"""
Scaffolding synthesis module

Derives the C-callable entry point of every interface function, method and
constructor, plus the per-object lifecycle functions and the per-component
buffer management functions.

Calling convention:
    - scalar arguments (fixed-width numbers, booleans, handles) are passed
      directly; every other argument is a (pointer, length) pair into a
      caller-owned buffer holding its lowered encoding
    - every call carries a trailing error slot (CallStatus); status 0 leaves
      it untouched, 1 stores a lowered declared error, 2 stores a best-effort
      lowered message for an internal fault
    - object returns are always scalar handles
"""

from dataclasses import dataclass
from enum import Enum as _PyEnum
from typing import Iterator, Optional

from .codegen import as_snake_case
from .errors import CALL_SUCCESS, ValidationError
from .ir import (
    InterfaceDefinition, TypeDef, TypeRef, Signature,
    Primitive, NamedType, Function, Constructor, Method,
    Object, CallbackInterface, ErrorEnum,
)

# Bumped whenever the calling convention changes incompatibly
CONTRACT_VERSION = 1


class FfiType(_PyEnum):
    """Boundary-level representation of a value"""
    INT8 = 'i8'
    UINT8 = 'u8'
    INT16 = 'i16'
    UINT16 = 'u16'
    INT32 = 'i32'
    UINT32 = 'u32'
    INT64 = 'i64'
    UINT64 = 'u64'
    FLOAT32 = 'f32'
    FLOAT64 = 'f64'
    HANDLE = 'handle'
    BUFFER = 'buffer'
    OWNED_BUFFER = 'owned_buffer'
    CALLBACK = 'callback'

    @property
    def is_buffer(self) -> bool:
        return self in (FfiType.BUFFER, FfiType.OWNED_BUFFER)


PRIMITIVE_FFI_TYPES = {
    'u8': FfiType.UINT8,
    'i8': FfiType.INT8,
    'u16': FfiType.UINT16,
    'i16': FfiType.INT16,
    'u32': FfiType.UINT32,
    'i32': FfiType.INT32,
    'u64': FfiType.UINT64,
    'i64': FfiType.INT64,
    'f32': FfiType.FLOAT32,
    'f64': FfiType.FLOAT64,
    'bool': FfiType.INT8,
}


class FfiKind(_PyEnum):
    FUNCTION = 'function'
    CONSTRUCTOR = 'constructor'
    METHOD = 'method'
    FREE = 'free'
    CLONE = 'clone'
    INIT_CALLBACK = 'init_callback'
    BUFFER_ALLOC = 'buffer_alloc'
    BUFFER_FREE = 'buffer_free'
    CONTRACT_VERSION = 'contract_version'


@dataclass(frozen=True)
class FfiArgument:
    """One boundary argument; `source` is the declared type it carries"""
    name: str
    type: FfiType
    source: Optional[TypeRef] = None


@dataclass(frozen=True)
class FfiFunction:
    """A synthesized scaffolding symbol

    Every FfiFunction implicitly takes a trailing error slot.
    """
    name: str
    kind: FfiKind
    arguments: tuple[FfiArgument, ...] = ()
    return_type: Optional[FfiType] = None
    return_source: Optional[TypeRef] = None
    owner: Optional[str] = None
    member: Optional[str] = None
    throws: Optional[str] = None
    fallible: bool = False


@dataclass
class CallStatus:
    """Error slot filled in by a failing scaffolding call"""
    code: int = CALL_SUCCESS
    error_buf: bytes = b''


# ============================================================
# Symbol naming
# ============================================================

def function_symbol(namespace: str, name: str) -> str:
    return f'{namespace}_fn_{name}'


def constructor_symbol(namespace: str, object_name: str, cons: Constructor) -> str:
    """Primary constructors end in _new, alternates in _new_<name>"""
    base = f'{namespace}_{as_snake_case(object_name)}_new'
    if cons.is_primary:
        return base
    return f'{base}_{cons.name}'


def method_symbol(namespace: str, object_name: str, name: str) -> str:
    return f'{namespace}_{as_snake_case(object_name)}_{name}'


def free_symbol(namespace: str, object_name: str) -> str:
    return f'{namespace}_{as_snake_case(object_name)}_free'


def clone_symbol(namespace: str, object_name: str) -> str:
    return f'{namespace}_{as_snake_case(object_name)}_clone'


def init_callback_symbol(namespace: str, callback_name: str) -> str:
    return f'{namespace}_{as_snake_case(callback_name)}_init_callback'


# ============================================================
# Synthesis
# ============================================================

def ffi_type_for(type_ref: TypeRef, ci: InterfaceDefinition) -> FfiType:
    """Scalar-or-buffer classification of a declared type"""
    if isinstance(type_ref, Primitive):
        return PRIMITIVE_FFI_TYPES.get(type_ref.kind, FfiType.BUFFER)
    if isinstance(type_ref, NamedType):
        target = ci.get_type(type_ref.name)
        if target is None:
            raise ValidationError('signature uses an undefined type', {'type': type_ref.name})
        if isinstance(target, Object):
            return FfiType.HANDLE
        if isinstance(target, CallbackInterface):
            return FfiType.HANDLE
        return FfiType.BUFFER
    return FfiType.BUFFER


def _check_defined(sig: Signature, ci: InterfaceDefinition, where: str):
    for type_ref in sig.types():
        for ref in type_ref.walk():
            if isinstance(ref, NamedType) and ci.get_type(ref.name) is None:
                raise ValidationError('signature uses an undefined type',
                                      {'in': where, 'type': ref.name})
    if sig.throws is not None and not isinstance(ci.get_type(sig.throws), ErrorEnum):
        raise ValidationError('signature throws an undefined error', {'in': where, 'throws': sig.throws})


def synthesize_signature(ci: InterfaceDefinition, sig: Signature,
                         owner: Optional[TypeDef] = None) -> FfiFunction:
    """Derive the boundary signature for a function, constructor or method"""
    where = f'{owner.name}.{sig.name}' if owner is not None else sig.name
    _check_defined(sig, ci, where)

    arguments = []
    if isinstance(sig, Constructor):
        if not isinstance(owner, Object):
            raise ValidationError('constructor outside of an object', {'in': where})
        kind = FfiKind.CONSTRUCTOR
        name = constructor_symbol(ci.namespace, owner.name, sig)
    elif isinstance(sig, Method):
        if not isinstance(owner, Object):
            raise ValidationError('only object methods have scaffolding functions', {'in': where})
        kind = FfiKind.METHOD
        name = method_symbol(ci.namespace, owner.name, sig.name)
        arguments.append(FfiArgument('ptr', FfiType.HANDLE, NamedType(owner.name)))
    elif isinstance(sig, Function):
        kind = FfiKind.FUNCTION
        name = function_symbol(ci.namespace, sig.name)
    else:
        raise ValidationError('unsupported signature', {'in': where})

    for arg in sig.arguments:
        arguments.append(FfiArgument(arg.name, ffi_type_for(arg.type, ci), arg.type))

    return_type = ffi_type_for(sig.return_type, ci) if sig.return_type is not None else None

    return FfiFunction(
        name=name,
        kind=kind,
        arguments=tuple(arguments),
        return_type=return_type,
        return_source=sig.return_type,
        owner=owner.name if owner is not None else None,
        member=sig.name,
        throws=sig.throws,
        fallible=sig.is_fallible,
    )


class Scaffolding:
    """Every boundary signature of one interface, indexed by symbol and member"""

    def __init__(self, ci: InterfaceDefinition, functions: list[FfiFunction]):
        self.ci = ci
        self._functions: dict[str, FfiFunction] = {}
        self._members: dict[tuple, FfiFunction] = {}
        for fn in functions:
            if fn.name in self._functions:
                raise ValidationError('scaffolding symbol collision', {'symbol': fn.name})
            self._functions[fn.name] = fn
            self._members[(fn.kind, fn.owner, fn.member)] = fn

    @classmethod
    def synthesize(cls, ci: InterfaceDefinition) -> 'Scaffolding':
        """Synthesize all scaffolding functions for an interface"""
        ns = ci.namespace
        functions = [
            FfiFunction(f'{ns}_contract_version', FfiKind.CONTRACT_VERSION,
                        return_type=FfiType.UINT32, return_source=Primitive('u32')),
            FfiFunction(f'{ns}_buffer_alloc', FfiKind.BUFFER_ALLOC,
                        arguments=(FfiArgument('size', FfiType.INT32, Primitive('i32')),),
                        return_type=FfiType.BUFFER),
            FfiFunction(f'{ns}_buffer_free', FfiKind.BUFFER_FREE,
                        arguments=(FfiArgument('buf', FfiType.OWNED_BUFFER),)),
        ]

        for func in ci.functions:
            functions.append(synthesize_signature(ci, func))

        for obj in ci.objects():
            for cons in obj.constructors:
                functions.append(synthesize_signature(ci, cons, obj))
            for method in obj.methods:
                functions.append(synthesize_signature(ci, method, obj))
            functions.append(FfiFunction(
                free_symbol(ns, obj.name), FfiKind.FREE,
                arguments=(FfiArgument('ptr', FfiType.HANDLE, NamedType(obj.name)),),
                owner=obj.name,
            ))
            functions.append(FfiFunction(
                clone_symbol(ns, obj.name), FfiKind.CLONE,
                arguments=(FfiArgument('ptr', FfiType.HANDLE, NamedType(obj.name)),),
                return_type=FfiType.HANDLE,
                return_source=NamedType(obj.name),
                owner=obj.name,
            ))

        for callback in ci.callback_interfaces():
            functions.append(FfiFunction(
                init_callback_symbol(ns, callback.name), FfiKind.INIT_CALLBACK,
                arguments=(FfiArgument('callback', FfiType.CALLBACK),),
                owner=callback.name,
            ))

        return cls(ci, functions)

    def __iter__(self) -> Iterator[FfiFunction]:
        return iter(self._functions.values())

    def __len__(self) -> int:
        return len(self._functions)

    def __contains__(self, symbol: str) -> bool:
        return symbol in self._functions

    def get(self, symbol: str) -> FfiFunction:
        """Look up a scaffolding function by its exported symbol"""
        return self._functions[symbol]

    def _member(self, kind: FfiKind, owner: Optional[str], member: Optional[str]) -> FfiFunction:
        return self._members[(kind, owner, member)]

    def function(self, name: str) -> FfiFunction:
        return self._member(FfiKind.FUNCTION, None, name)

    def constructor(self, object_name: str, name: str = 'new') -> FfiFunction:
        return self._member(FfiKind.CONSTRUCTOR, object_name, name)

    def method(self, object_name: str, name: str) -> FfiFunction:
        return self._member(FfiKind.METHOD, object_name, name)

    def free(self, object_name: str) -> FfiFunction:
        return self._member(FfiKind.FREE, object_name, None)

    def clone(self, object_name: str) -> FfiFunction:
        return self._member(FfiKind.CLONE, object_name, None)

    def init_callback(self, callback_name: str) -> FfiFunction:
        return self._member(FfiKind.INIT_CALLBACK, callback_name, None)

    @property
    def contract_version(self) -> FfiFunction:
        return self._member(FfiKind.CONTRACT_VERSION, None, None)

    @property
    def buffer_alloc(self) -> FfiFunction:
        return self._member(FfiKind.BUFFER_ALLOC, None, None)

    @property
    def buffer_free(self) -> FfiFunction:
        return self._member(FfiKind.BUFFER_FREE, None, None)

    def for_object(self, object_name: str) -> list[FfiFunction]:
        """All scaffolding functions owned by one object, in declaration order"""
        return [fn for fn in self if fn.owner == object_name]
