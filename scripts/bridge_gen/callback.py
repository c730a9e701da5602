"""
Callback interface module

Host-implemented interfaces invoked from native code.

The host registers one foreign callback per CallbackInterface through the
interface's init_callback scaffolding function. Host implementations live
in a host-side arena and cross the boundary as handles. Native code invokes
them as:

    callback(handle, method_index, args_buffer) -> (status, return_buffer)

Index 0 releases the handle; declared methods are numbered from 1. The
argument buffer holds every argument's encoding back to back, and the
status codes are the same 0/1/2 used by scaffolding calls.
"""

import logging
import threading
from typing import Any, Callable, Optional

from .errors import (
    CALL_SUCCESS, CALL_ERROR, CALL_UNEXPECTED_ERROR,
    DeclaredError, InternalFault, ProtocolError,
)
from .ir import CallbackInterface, Method
from .lifecycle import HandleArena
from .marshal import BufferReader, BufferWriter, ConverterFactory, StringConverter

logger = logging.getLogger(__name__)

CALLBACK_FREE_INDEX = 0

ForeignCallback = Callable[[int, int, bytes], tuple[int, bytes]]


def callback_methods(callback: CallbackInterface) -> list[tuple[int, Method]]:
    """Methods of a callback interface with their dispatch indexes"""
    return [(i + 1, method) for i, method in enumerate(callback.methods)]


def lower_message(message: str) -> bytes:
    """Best-effort payload for an unexpected error"""
    return StringConverter().lower(message)


def lift_message(data: bytes) -> str:
    try:
        return StringConverter().lift(data)
    except ProtocolError:
        return 'unknown error'


class ForeignCallbackDispatcher:
    """Host side: routes native invocations to registered host objects"""

    def __init__(self, callback: CallbackInterface, converters: ConverterFactory):
        self.callback = callback
        self.converters = converters
        self.arena = HandleArena()

    def register(self, impl: Any) -> int:
        """Hand a host implementation to native code"""
        for method in self.callback.methods:
            if not callable(getattr(impl, method.name, None)):
                raise TypeError(f'{type(impl).__name__} does not implement '
                                f'{self.callback.name}.{method.name}')
        return self.arena.allocate(impl)

    def __call__(self, handle: int, method_index: int, args_buf: bytes) -> tuple[int, bytes]:
        if method_index == CALLBACK_FREE_INDEX:
            try:
                self.arena.release(handle)
            except InternalFault as exc:
                return CALL_UNEXPECTED_ERROR, lower_message(str(exc))
            return CALL_SUCCESS, b''

        if not 1 <= method_index <= len(self.callback.methods):
            return CALL_UNEXPECTED_ERROR, lower_message(
                f'{self.callback.name} has no method {method_index}')
        method = self.callback.methods[method_index - 1]

        try:
            impl = self.arena.get(handle)
            buf = BufferReader(args_buf)
            args = [self.converters.get(arg.type).read(buf) for arg in method.arguments]
            buf.check_consumed()
            result = getattr(impl, method.name)(*args)
            out = BufferWriter()
            if method.return_type is not None:
                self.converters.get(method.return_type).write(result, out)
            return CALL_SUCCESS, out.getvalue()
        except DeclaredError as exc:
            if method.throws is not None and isinstance(exc, self.converters.values.get(method.throws)):
                return CALL_ERROR, self.converters.error(method.throws).lower(exc)
            logger.debug('%s.%s raised an undeclared error', self.callback.name, method.name,
                         exc_info=True)
            return CALL_UNEXPECTED_ERROR, lower_message(str(exc))
        except Exception as exc:
            logger.debug('%s.%s failed', self.callback.name, method.name, exc_info=True)
            return CALL_UNEXPECTED_ERROR, lower_message(str(exc))


class CallbackProxy:
    """Native side: a host object reached through a foreign callback

    Attribute access yields one callable per declared method. The proxy owns
    the handle it was given and releases it once, on `release()` or when
    collected.
    """

    def __init__(self, callback: CallbackInterface, foreign: ForeignCallback,
                 handle: int, converters: ConverterFactory):
        self._callback = callback
        self._foreign = foreign
        self._handle: Optional[int] = handle
        self._converters = converters
        self._lock = threading.Lock()
        self._methods = {method.name: (index, method) for index, method in callback_methods(callback)}

    def __getattr__(self, name: str):
        methods = self.__dict__.get('_methods', {})
        if name not in methods:
            raise AttributeError(name)
        index, method = methods[name]

        def invoke(*args):
            return self._invoke(index, method, args)

        invoke.__name__ = name
        return invoke

    def _invoke(self, index: int, method: Method, args: tuple) -> Any:
        handle = self._handle
        if handle is None:
            raise InternalFault('callback handle already released', {'callback': self._callback.name})
        if len(args) != len(method.arguments):
            raise TypeError(f'{method.name}() takes {len(method.arguments)} arguments, {len(args)} given')

        buf = BufferWriter()
        for arg, value in zip(method.arguments, args):
            self._converters.get(arg.type).write(value, buf)

        code, ret = self._foreign(handle, index, buf.getvalue())
        if code == CALL_SUCCESS:
            if method.return_type is None:
                return None
            # Return values are always buffered, even scalars
            reader = BufferReader(ret)
            value = self._converters.get(method.return_type).read(reader)
            reader.check_consumed()
            return value
        if code == CALL_ERROR and method.throws is not None:
            raise self._converters.error(method.throws).lift(ret)
        raise InternalFault(lift_message(ret), {'callback': f'{self._callback.name}.{method.name}'})

    def release(self):
        """Return the handle to the host; later calls are no-ops"""
        lock = self.__dict__.get('_lock')
        if lock is None:
            return
        with lock:
            handle, self._handle = self._handle, None
        if handle is not None:
            self._foreign(handle, CALLBACK_FREE_INDEX, b'')

    def __del__(self):
        self.release()
