"""
Host binding runtime module

Builds Python classes over any library exposing the scaffolding calling
convention (a NativeLibrary in-process, or a CtypesLibrary over a shared
object):

    api = bind(ci, library)
    box = api.Box('yo')
    print(str(box), box == api.Box('yo'))

Status handling for every call: 0 returns the lifted value, 1 raises the
lifted declared error, 2 raises InternalFault with the best-effort message.
"""

import logging
import threading
from typing import Any, Callable, Optional, Protocol

from .callback import ForeignCallbackDispatcher, lift_message
from .errors import (
    CALL_SUCCESS, CALL_ERROR, CALL_UNEXPECTED_ERROR, InternalFault, ProtocolError,
)
from .ir import InterfaceDefinition, TypeDef, Object, CallbackInterface, Signature
from .marshal import Converter, ConverterFactory, HandleCodec
from .scaffolding import CONTRACT_VERSION, CallStatus, FfiFunction, Scaffolding
from .special_ops import SpecialOperationMapper, HookBinding
from .values import ValueTypes, call_signature, bind_values

logger = logging.getLogger(__name__)


class Library(Protocol):
    """What the host runtime needs from a native library"""
    scaffolding: Scaffolding

    def invoke(self, symbol: str, args: list, status: CallStatus) -> Any:
        ...


def check_call_status(status: CallStatus, error: Optional[Converter] = None):
    """Raise the host-side exception a failed call reported"""
    if status.code == CALL_SUCCESS:
        return
    if status.code == CALL_ERROR:
        if error is None:
            raise InternalFault('declared error from a call that declares none')
        raise error.lift(status.error_buf)
    if status.code == CALL_UNEXPECTED_ERROR:
        raise InternalFault(lift_message(status.error_buf))
    raise InternalFault('unknown call status', {'code': status.code})


def call_scaffolding(library: Library, fn: FfiFunction, args: list,
                     error: Optional[Converter] = None) -> Any:
    """Invoke one scaffolding function and check its error slot"""
    status = CallStatus()
    result = library.invoke(fn.name, args, status)
    check_call_status(status, error)
    return result


# ============================================================
# Objects
# ============================================================

class ObjectProxy:
    """Base of every host-side Object wrapper

    Owns exactly one reference to a native handle. The handle field is set
    to None before the free function runs, so closing twice (explicitly,
    through a with block, or on collection) releases once.
    """

    _bindings: 'Bindings'
    _object: Object
    _handle: Optional[int] = None

    @classmethod
    def _make_instance_(cls, handle: int):
        """Wrap a handle without running a constructor"""
        inst = cls.__new__(cls)
        inst._adopt(handle)
        return inst

    def _adopt(self, handle: int):
        if not handle:
            raise ProtocolError('raw handle value was null', {'type': self._object.name})
        self._lock = threading.Lock()
        self._handle = handle

    def _borrow_handle(self) -> int:
        handle = self._handle
        if handle is None:
            raise ValueError(f'{type(self).__name__} object has been closed')
        return handle

    def _take_handle(self) -> Optional[int]:
        lock = self.__dict__.get('_lock')
        if lock is None:
            return None
        with lock:
            handle, self._handle = self._handle, None
        return handle

    @property
    def closed(self) -> bool:
        return self._handle is None

    def close(self):
        """Release the native object; later calls are no-ops"""
        handle = self._take_handle()
        if handle is None:
            return
        free = self._bindings.scaffolding.free(self._object.name)
        call_scaffolding(self._bindings.library, free, [handle])

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __del__(self):
        self.close()

    def __copy__(self):
        clone = self._bindings.scaffolding.clone(self._object.name)
        handle = call_scaffolding(self._bindings.library, clone, [self._borrow_handle()])
        return type(self)._make_instance_(handle)


def _make_hook(cls_ref: list, binding: HookBinding, impl: Callable) -> Callable:
    """Wrap an ordinary method as a special-operation hook"""
    adapter = binding.adapter
    binary = bool(binding.method.arguments)

    if not binary:
        def unary_hook(self):
            return impl(self)
        unary_hook.__name__ = binding.hook
        return unary_hook

    def binary_hook(self, other):
        if not isinstance(other, cls_ref[0]):
            return NotImplemented
        result = impl(self, other)
        if adapter == 'negate':
            return not result
        if adapter == 'lt':
            return result < 0
        if adapter == 'le':
            return result <= 0
        if adapter == 'gt':
            return result > 0
        if adapter == 'ge':
            return result >= 0
        return result
    binary_hook.__name__ = binding.hook
    return binary_hook


# ============================================================
# Bindings
# ============================================================

class _HostHandles(HandleCodec):
    """Object wrappers lower to borrowed handles; callbacks are registered"""

    def __init__(self, bindings: 'Bindings'):
        self.bindings = bindings

    def lower(self, type_def: TypeDef, value: Any) -> int:
        if isinstance(type_def, CallbackInterface):
            return self.bindings.callbacks[type_def.name].register(value)
        cls = self.bindings.get(type_def.name)
        if not isinstance(value, cls):
            raise TypeError(f'expected {type_def.name} instance, {type(value).__name__} found')
        return value._borrow_handle()

    def lift(self, type_def: TypeDef, handle: int) -> Any:
        if isinstance(type_def, CallbackInterface):
            raise InternalFault('callback interfaces cannot be returned to the host',
                                {'callback': type_def.name})
        return self.bindings.get(type_def.name)._make_instance_(handle)


class Bindings:
    """Python classes and functions bound to one native library

    Records, enums, errors, objects and top-level functions are attributes
    named after their declarations.
    """

    def __init__(self, ci: InterfaceDefinition, library: Library):
        self.ci = ci
        self.library = library
        self.scaffolding = library.scaffolding
        self.types = ValueTypes(ci)
        self.converters = ConverterFactory(ci, self.types, _HostHandles(self))
        self.mapper = SpecialOperationMapper(ci, self.scaffolding)
        self.callbacks = {
            cb.name: ForeignCallbackDispatcher(cb, self.converters)
            for cb in ci.callback_interfaces()
        }
        self._members: dict[str, Any] = {}

        self._check_contract_version()
        for obj in ci.objects():
            self._members[obj.name] = self._make_object_class(obj)
        for func in ci.functions:
            self._members[func.name] = self._make_function(func)
        for name, dispatcher in self.callbacks.items():
            call_scaffolding(library, self.scaffolding.init_callback(name), [dispatcher])

    def __getattr__(self, name: str) -> Any:
        members = self.__dict__.get('_members', {})
        if name in members:
            return members[name]
        types = self.__dict__.get('types')
        if types is not None and name in types:
            return types.get(name)
        raise AttributeError(name)

    def get(self, name: str) -> Any:
        return getattr(self, name)

    def _check_contract_version(self):
        version = call_scaffolding(self.library, self.scaffolding.contract_version, [])
        if version != CONTRACT_VERSION:
            raise InternalFault('scaffolding contract version mismatch',
                                {'library': version, 'expected': CONTRACT_VERSION})

    # --------------------------------------------------------
    # Callables
    # --------------------------------------------------------

    def _lowering(self, sig: Signature) -> Callable[[tuple, dict], list]:
        signature = call_signature(sig.arguments)
        converters = [self.converters.get(arg.type) for arg in sig.arguments]

        def lower(args: tuple, kwargs: dict) -> list:
            values = bind_values(signature, sig.arguments, args, kwargs, self.types.default_value)
            return [conv.lower(value) for conv, value in zip(converters, values)]
        return lower

    def _error_converter(self, sig: Signature) -> Optional[Converter]:
        return self.converters.error(sig.throws) if sig.throws else None

    def _make_function(self, func: Signature) -> Callable:
        fn = self.scaffolding.function(func.name)
        lower = self._lowering(func)
        error = self._error_converter(func)
        ret = self.converters.get(func.return_type) if func.return_type else None

        def function(*args, **kwargs):
            result = call_scaffolding(self.library, fn, lower(args, kwargs), error)
            return ret.lift(result) if ret is not None else None

        function.__name__ = func.name
        function.__qualname__ = func.name
        function.__doc__ = func.docs or None
        function.__signature__ = call_signature(func.arguments)
        return function

    def _make_method(self, obj: Object, method: Signature) -> Callable:
        fn = self.scaffolding.method(obj.name, method.name)
        lower = self._lowering(method)
        error = self._error_converter(method)
        ret = self.converters.get(method.return_type) if method.return_type else None

        def bound_method(this, *args, **kwargs):
            raw = [this._borrow_handle()] + lower(args, kwargs)
            result = call_scaffolding(self.library, fn, raw, error)
            return ret.lift(result) if ret is not None else None

        bound_method.__name__ = method.name
        bound_method.__qualname__ = f'{obj.name}.{method.name}'
        bound_method.__doc__ = method.docs or None
        return bound_method

    def _make_constructor(self, obj: Object, cons: Signature) -> Callable:
        fn = self.scaffolding.constructor(obj.name, cons.name)
        lower = self._lowering(cons)
        error = self._error_converter(cons)

        if cons.name == 'new':
            def __init__(this, *args, **kwargs):
                this._adopt(call_scaffolding(self.library, fn, lower(args, kwargs), error))
            __init__.__doc__ = cons.docs or None
            return __init__

        def alternate(cls, *args, **kwargs):
            # Call the fallible function before creating any wrapper
            handle = call_scaffolding(self.library, fn, lower(args, kwargs), error)
            return cls._make_instance_(handle)
        alternate.__name__ = cons.name
        alternate.__qualname__ = f'{obj.name}.{cons.name}'
        alternate.__doc__ = cons.docs or None
        return classmethod(alternate)

    def _make_object_class(self, obj: Object) -> type:
        cls_ref: list[type] = []
        namespace: dict[str, Any] = {
            '__doc__': obj.docs or f'{obj.name} object',
            '_bindings': self,
            '_object': obj,
        }

        primary = obj.primary_constructor()
        if primary is not None:
            namespace['__init__'] = self._make_constructor(obj, primary)
        else:
            def __init__(this, *args, **kwargs):
                raise TypeError(f'{obj.name} has no primary constructor')
            namespace['__init__'] = __init__

        for cons in obj.alternate_constructors():
            namespace[cons.name] = self._make_constructor(obj, cons)

        methods = {}
        for method in obj.methods:
            methods[method.name] = self._make_method(obj, method)
            namespace[method.name] = methods[method.name]

        for binding in self.mapper.map_object(obj, 'python'):
            namespace[binding.hook] = _make_hook(cls_ref, binding, methods[binding.method.name])

        cls = type(obj.name, (ObjectProxy,), namespace)
        cls_ref.append(cls)
        logger.debug('bound object %s (%d methods)', obj.name, len(methods))
        return cls


def bind(ci: InterfaceDefinition, library: Library) -> Bindings:
    """Bind the Python host surface of an interface to a native library"""
    return Bindings(ci, library)
