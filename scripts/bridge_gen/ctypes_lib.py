"""
ctypes library adapter

Binds a shared library exporting the scaffolding symbols so the host
runtime can call it like an in-process NativeLibrary.
"""

import ctypes
import logging
from typing import Any, Callable

from .ir import InterfaceDefinition
from .scaffolding import CallStatus, FfiFunction, FfiType, Scaffolding

logger = logging.getLogger(__name__)


class BridgeBuffer(ctypes.Structure):
    """Native-owned byte buffer returned by value"""
    _fields_ = [
        ('capacity', ctypes.c_int32),
        ('len', ctypes.c_int32),
        ('data', ctypes.POINTER(ctypes.c_uint8)),
    ]


class BridgeCallStatus(ctypes.Structure):
    """Trailing error slot of every scaffolding call"""
    _fields_ = [
        ('code', ctypes.c_int8),
        ('error_buf', BridgeBuffer),
    ]


# int32_t callback(uint64_t handle, int32_t method, const uint8_t *args,
#                  int32_t args_len, BridgeBuffer *out_return)
FOREIGN_CALLBACK = ctypes.CFUNCTYPE(
    ctypes.c_int32,
    ctypes.c_uint64,
    ctypes.c_int32,
    ctypes.POINTER(ctypes.c_uint8),
    ctypes.c_int32,
    ctypes.POINTER(BridgeBuffer),
)

CTYPES = {
    FfiType.INT8: ctypes.c_int8,
    FfiType.UINT8: ctypes.c_uint8,
    FfiType.INT16: ctypes.c_int16,
    FfiType.UINT16: ctypes.c_uint16,
    FfiType.INT32: ctypes.c_int32,
    FfiType.UINT32: ctypes.c_uint32,
    FfiType.INT64: ctypes.c_int64,
    FfiType.UINT64: ctypes.c_uint64,
    FfiType.FLOAT32: ctypes.c_float,
    FfiType.FLOAT64: ctypes.c_double,
    FfiType.HANDLE: ctypes.c_uint64,
    FfiType.BUFFER: BridgeBuffer,
    FfiType.OWNED_BUFFER: BridgeBuffer,
    FfiType.CALLBACK: FOREIGN_CALLBACK,
}


def _argtypes(fn: FfiFunction) -> list:
    """ctypes argument list; buffer arguments expand to (pointer, length)"""
    argtypes = []
    for arg in fn.arguments:
        if arg.type is FfiType.BUFFER:
            argtypes += [ctypes.POINTER(ctypes.c_uint8), ctypes.c_int32]
        else:
            argtypes.append(CTYPES[arg.type])
    argtypes.append(ctypes.POINTER(BridgeCallStatus))
    return argtypes


def _pointer_to(data: bytes):
    """Caller-owned copy of `data`; NULL for an empty buffer"""
    if not data:
        return None
    array = (ctypes.c_uint8 * len(data)).from_buffer_copy(data)
    return ctypes.cast(array, ctypes.POINTER(ctypes.c_uint8))


class CtypesLibrary:
    """Scaffolding symbols of a loaded shared library"""

    def __init__(self, cdll: Any, scaffolding: Scaffolding):
        self.cdll = cdll
        self.scaffolding = scaffolding
        self._cfuncs: dict[str, Any] = {}
        # CFUNCTYPE wrappers must outlive every native reference to them
        self._callbacks: list = []

    @classmethod
    def load(cls, path: str, ci: InterfaceDefinition) -> 'CtypesLibrary':
        """Load a shared library implementing `ci`"""
        logger.info('loading %s from %s', ci.namespace, path)
        return cls(ctypes.CDLL(path), Scaffolding.synthesize(ci))

    def _cfunc(self, fn: FfiFunction) -> Any:
        cfunc = self._cfuncs.get(fn.name)
        if cfunc is None:
            cfunc = getattr(self.cdll, fn.name)
            cfunc.argtypes = _argtypes(fn)
            cfunc.restype = CTYPES[fn.return_type] if fn.return_type is not None else None
            self._cfuncs[fn.name] = cfunc
        return cfunc

    def invoke(self, symbol: str, args: list, status: CallStatus) -> Any:
        fn = self.scaffolding.get(symbol)
        c_args = []
        keepalive = []
        for arg, value in zip(fn.arguments, args):
            if arg.type is FfiType.BUFFER:
                data = bytes(value)
                pointer = _pointer_to(data)
                keepalive.append(pointer)
                c_args += [pointer, len(data)]
            elif arg.type is FfiType.CALLBACK:
                c_args.append(self._wrap_callback(value))
            else:
                c_args.append(value)

        c_status = BridgeCallStatus()
        result = self._cfunc(fn)(*c_args, ctypes.pointer(c_status))

        status.code = c_status.code
        if c_status.code != 0:
            status.error_buf = self._take_buffer(c_status.error_buf)
            return None
        if fn.return_type is FfiType.BUFFER:
            return self._take_buffer(result)
        return result

    def _take_buffer(self, buf: BridgeBuffer) -> bytes:
        """Copy a native-owned buffer and hand it back to the library"""
        if not buf.data:
            return b''
        data = ctypes.string_at(buf.data, buf.len)
        free = self._cfunc(self.scaffolding.buffer_free)
        free(buf, ctypes.pointer(BridgeCallStatus()))
        return data

    def _alloc_buffer(self, data: bytes) -> BridgeBuffer:
        """Native-owned buffer holding `data`, for callback return values"""
        alloc = self._cfunc(self.scaffolding.buffer_alloc)
        buf = alloc(len(data), ctypes.pointer(BridgeCallStatus()))
        if data:
            ctypes.memmove(buf.data, data, len(data))
        buf.len = len(data)
        return buf

    def _wrap_callback(self, dispatcher: Callable[[int, int, bytes], tuple[int, bytes]]):
        def trampoline(handle, method, args_ptr, args_len, out_return):
            args = ctypes.string_at(args_ptr, args_len) if args_len else b''
            code, ret = dispatcher(handle, method, args)
            if ret:
                out_return[0] = self._alloc_buffer(ret)
            return code

        wrapped = FOREIGN_CALLBACK(trampoline)
        self._callbacks.append(wrapped)
        return wrapped