"""
In-process native library module

Implements the native half of the boundary for native logic written in
Python. Every synthesized scaffolding symbol is callable through
`invoke(symbol, args, status)` with the same conventions a C library
exposes: scalars pass directly, everything else as lowered bytes, and
failures are reported through the CallStatus error slot.

Example:
    lib = NativeLibrary(ci)

    @lib.implement('Box')
    class Box:
        def __init__(self, val):
            self.val = val

        def __str__(self):
            return f'Box({self.val})'
"""

import logging
from typing import Any, Callable, Optional

from .callback import CallbackProxy, lower_message
from .errors import (
    CALL_ERROR, CALL_UNEXPECTED_ERROR, DeclaredError, InternalFault,
)
from .ir import (
    InterfaceDefinition, TypeDef, Object, CallbackInterface, Method, OperationKind, TRAIT_KINDS,
)
from .lifecycle import HandleArena
from .marshal import ConverterFactory, HandleCodec
from .scaffolding import (
    CONTRACT_VERSION, CallStatus, FfiFunction, FfiKind, Scaffolding,
)
from .values import ValueTypes

logger = logging.getLogger(__name__)

_U64_MASK = 2**64 - 1


def _close_implementation(obj: Any):
    """Arena teardown: give the implementation a chance to clean up"""
    close = getattr(obj, 'close', None)
    if callable(close):
        close()


def _three_way(a: Any, b: Any) -> int:
    if a == b:
        return 0
    return -1 if a < b else 1


# Protocol fallbacks for trait methods an implementation does not define
TRAIT_FALLBACKS: dict[OperationKind, Callable] = {
    OperationKind.STRING_CONVERT: lambda obj: str(obj),
    OperationKind.DEBUG_CONVERT: lambda obj: repr(obj),
    OperationKind.EQUALITY: lambda obj, other: obj == other,
    OperationKind.HASHING: lambda obj: hash(obj) & _U64_MASK,
    OperationKind.ORDERING: _three_way,
}


class _NativeHandles(HandleCodec):
    """Objects are arena handles; callback interfaces become proxies"""

    def __init__(self, library: 'NativeLibrary'):
        self.library = library

    def lower(self, type_def: TypeDef, value: Any) -> int:
        if isinstance(type_def, CallbackInterface):
            raise InternalFault('callback interfaces cannot be returned to the host',
                                {'callback': type_def.name})
        cls = self.library.implementation(type_def.name)
        if not isinstance(value, cls):
            raise TypeError(f'expected {type_def.name} implementation, {type(value).__name__} found')
        return self.library.arena.allocate(value)

    def lift(self, type_def: TypeDef, handle: int) -> Any:
        if isinstance(type_def, CallbackInterface):
            foreign = self.library.foreign_callback(type_def.name)
            return CallbackProxy(type_def, foreign, handle, self.library.converters)
        # Object arguments are borrowed: no reference is added or consumed
        return self.library.arena.get(handle)


class NativeLibrary:
    """Native side of one interface, backed by Python implementations"""

    def __init__(self, ci: InterfaceDefinition, scaffolding: Optional[Scaffolding] = None):
        self.ci = ci
        self.scaffolding = scaffolding or Scaffolding.synthesize(ci)
        self.types = ValueTypes(ci)
        self.arena = HandleArena(destructor=_close_implementation)
        self.converters = ConverterFactory(ci, self.types, _NativeHandles(self))
        self._implementations: dict[str, type] = {}
        self._functions: dict[str, Callable] = {}
        self._callbacks: dict[str, Callable] = {}

    # --------------------------------------------------------
    # Registration
    # --------------------------------------------------------

    def implement(self, name: str):
        """Decorator registering the class implementing an Object"""
        if not isinstance(self.ci.get_type(name), Object):
            raise ValueError(f'{name} is not an object of {self.ci.namespace}')

        def decorator(cls: type) -> type:
            self._implementations[name] = cls
            return cls
        return decorator

    def function(self, name: str):
        """Decorator registering a top-level function implementation"""
        if self.ci.get_function(name) is None:
            raise ValueError(f'{name} is not a function of {self.ci.namespace}')

        def decorator(fn: Callable) -> Callable:
            self._functions[name] = fn
            return fn
        return decorator

    def implementation(self, name: str) -> type:
        try:
            return self._implementations[name]
        except KeyError:
            raise InternalFault('object has no implementation', {'object': name}) from None

    def foreign_callback(self, name: str) -> Callable:
        try:
            return self._callbacks[name]
        except KeyError:
            raise InternalFault('callback interface was never initialized', {'callback': name}) from None

    # --------------------------------------------------------
    # Boundary
    # --------------------------------------------------------

    def invoke(self, symbol: str, args: list, status: CallStatus) -> Any:
        """Call a scaffolding symbol; failures land in `status`"""
        fn = self.scaffolding.get(symbol)
        try:
            return self._dispatch(fn, list(args))
        except DeclaredError as exc:
            if fn.throws is not None and isinstance(exc, self.types.get(fn.throws)):
                status.code = CALL_ERROR
                status.error_buf = self.converters.error(fn.throws).lower(exc)
                return None
            logger.debug('%s raised an undeclared error', symbol, exc_info=True)
            status.code = CALL_UNEXPECTED_ERROR
            status.error_buf = lower_message(str(exc))
            return None
        except Exception as exc:
            logger.debug('%s failed', symbol, exc_info=True)
            status.code = CALL_UNEXPECTED_ERROR
            status.error_buf = lower_message(str(exc))
            return None

    def _dispatch(self, fn: FfiFunction, args: list) -> Any:
        if len(args) != len(fn.arguments):
            raise InternalFault('wrong number of arguments',
                                {'symbol': fn.name, 'expected': len(fn.arguments), 'got': len(args)})

        kind = fn.kind
        if kind is FfiKind.CONTRACT_VERSION:
            return CONTRACT_VERSION
        if kind is FfiKind.BUFFER_ALLOC:
            return bytes(args[0])
        if kind is FfiKind.BUFFER_FREE:
            return None
        if kind is FfiKind.FREE:
            self.arena.release(args[0])
            return None
        if kind is FfiKind.CLONE:
            return self.arena.clone_handle(args[0])
        if kind is FfiKind.INIT_CALLBACK:
            self._callbacks[fn.owner] = args[0]
            return None

        if kind is FfiKind.FUNCTION:
            target = self._functions.get(fn.member)
            if target is None:
                raise InternalFault('function has no implementation', {'function': fn.member})
        elif kind is FfiKind.CONSTRUCTOR:
            cls = self.implementation(fn.owner)
            target = cls if fn.member == 'new' else getattr(cls, fn.member)
        else:
            obj = self.arena.get(args[0])
            target = self._bound_method(obj, fn)

        declared = fn.arguments
        if kind is FfiKind.METHOD:
            declared, args = declared[1:], args[1:]
        lifted = [self.converters.get(arg.source).lift(value) for arg, value in zip(declared, args)]
        result = target(*lifted)

        if fn.return_source is None:
            return None
        return self.converters.get(fn.return_source).lower(result)

    def _bound_method(self, obj: Any, fn: FfiFunction) -> Callable:
        method = getattr(obj, fn.member, None)
        if method is not None:
            return method
        decl: Method = self.ci.get_type(fn.owner).get_method(fn.member)
        kind = self._trait_kind(decl)
        if kind is None:
            raise InternalFault('object implementation lacks a method',
                                {'object': fn.owner, 'method': fn.member})
        fallback = TRAIT_FALLBACKS[kind]
        return lambda *args: fallback(obj, *args)

    @staticmethod
    def _trait_kind(method: Method) -> Optional[OperationKind]:
        if method.trait is None:
            return None
        return TRAIT_KINDS.get(method.trait)
