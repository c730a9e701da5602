"""
Marshalling module

Lowering (host value -> bytes) and lifting (bytes -> host value) for every
type an interface can declare.

Wire format (all multi-byte numbers big-endian):
    - integers: fixed width, 8/16/32/64 bits
    - f32/f64: IEEE 754 single/double
    - bool: one byte, 0 or 1
    - string/bytes: i32 length, then raw UTF-8 / raw bytes
    - Optional<T>: one presence byte, then T if present
    - Sequence<T>: i32 count, then each element
    - Map<K,V>: i32 count, then interleaved key/value pairs
    - Record: fields in declaration order, no padding or tags
    - Enum: i32 discriminant (1-based), then the variant's fields
    - flat ErrorEnum: i32 discriminant, then the message as a string
    - Object/CallbackInterface: u64 handle, never 0
"""

import struct
from abc import ABC, abstractmethod
from typing import Any, Optional, TYPE_CHECKING

from .errors import InternalFault, ProtocolError
from .ir import (
    InterfaceDefinition, TypeDef, TypeRef, Primitive, NamedType,
    OptionalType, SequenceType, MapType,
    Record, Enum, ErrorEnum, Object, CallbackInterface,
)
from .validate import INTEGER_RANGES

if TYPE_CHECKING:
    from .values import ValueTypes


INT_FORMATS = {
    'u8': struct.Struct('>B'),
    'i8': struct.Struct('>b'),
    'u16': struct.Struct('>H'),
    'i16': struct.Struct('>h'),
    'u32': struct.Struct('>I'),
    'i32': struct.Struct('>i'),
    'u64': struct.Struct('>Q'),
    'i64': struct.Struct('>q'),
}

FLOAT_FORMATS = {
    'f32': struct.Struct('>f'),
    'f64': struct.Struct('>d'),
}

_I32_MAX = 2**31 - 1


# ============================================================
# Buffers
# ============================================================

class BufferWriter:
    """Growable output buffer"""

    def __init__(self):
        self._data = bytearray()

    def write_int(self, kind: str, value: int):
        self._data += INT_FORMATS[kind].pack(value)

    def write_float(self, kind: str, value: float):
        self._data += FLOAT_FORMATS[kind].pack(value)

    def write_length(self, n: int):
        if n > _I32_MAX:
            raise ValueError(f'length {n} does not fit in an i32 prefix')
        self.write_int('i32', n)

    def write_sized(self, data: bytes):
        """Write an i32 length prefix followed by the raw bytes"""
        self.write_length(len(data))
        self._data += data

    def getvalue(self) -> bytes:
        return bytes(self._data)

    def __len__(self) -> int:
        return len(self._data)


class BufferReader:
    """Cursor over an input buffer; every overrun is a ProtocolError"""

    def __init__(self, data: bytes):
        self._data = bytes(data)
        self._pos = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def _take(self, n: int) -> bytes:
        if n > self.remaining:
            raise ProtocolError('read past end of buffer',
                                {'offset': self._pos, 'wanted': n, 'remaining': self.remaining})
        chunk = self._data[self._pos:self._pos + n]
        self._pos += n
        return chunk

    def read_int(self, kind: str) -> int:
        fmt = INT_FORMATS[kind]
        return fmt.unpack(self._take(fmt.size))[0]

    def read_float(self, kind: str) -> float:
        fmt = FLOAT_FORMATS[kind]
        return fmt.unpack(self._take(fmt.size))[0]

    def read_length(self) -> int:
        n = self.read_int('i32')
        if n < 0:
            raise ProtocolError('negative length prefix', {'offset': self._pos - 4, 'length': n})
        return n

    def read_count(self) -> int:
        """Element count of a sequence or map; every element takes at least one byte"""
        n = self.read_length()
        if n > self.remaining:
            raise ProtocolError('element count exceeds buffer',
                                {'offset': self._pos - 4, 'count': n, 'remaining': self.remaining})
        return n

    def read_sized(self) -> bytes:
        return self._take(self.read_length())

    def check_consumed(self):
        """Fail if bytes remain after the value that was read"""
        if self.remaining:
            raise ProtocolError('junk remaining in buffer after lifting',
                                {'offset': self._pos, 'remaining': self.remaining})


# ============================================================
# Converters
# ============================================================

class Converter(ABC):
    """Lowers and lifts values of one type

    `write`/`read` encode into a buffer at the cursor. `lower`/`lift` produce
    the boundary form: the plain value for scalar converters, or a complete
    buffer (bytes) for everything else.
    """

    scalar = False

    @abstractmethod
    def write(self, value: Any, buf: BufferWriter):
        pass

    @abstractmethod
    def read(self, buf: BufferReader) -> Any:
        pass

    def lower(self, value: Any) -> Any:
        buf = BufferWriter()
        self.write(value, buf)
        return buf.getvalue()

    def lift(self, data: Any) -> Any:
        buf = BufferReader(data)
        value = self.read(buf)
        buf.check_consumed()
        return value


def _type_error(expected: str, value: Any) -> TypeError:
    return TypeError(f'expected {expected}, {type(value).__name__} found')


class IntConverter(Converter):
    scalar = True

    def __init__(self, kind: str):
        self.kind = kind
        self.lo, self.hi = INTEGER_RANGES[kind]

    def check(self, value: Any):
        if not isinstance(value, int) or isinstance(value, bool):
            raise _type_error('int', value)
        if not self.lo <= value <= self.hi:
            raise ValueError(f'{value} is out of range for {self.kind}')

    def write(self, value, buf):
        self.check(value)
        buf.write_int(self.kind, value)

    def read(self, buf):
        return buf.read_int(self.kind)

    def lower(self, value):
        self.check(value)
        return value

    def lift(self, value):
        if not isinstance(value, int) or not self.lo <= value <= self.hi:
            raise ProtocolError('scalar out of range', {'type': self.kind, 'value': repr(value)})
        return value


class FloatConverter(Converter):
    scalar = True

    def __init__(self, kind: str):
        self.kind = kind

    def check(self, value: Any) -> float:
        """Type-check a value and round it to the converter's precision"""
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            raise _type_error('float', value)
        fmt = FLOAT_FORMATS[self.kind]
        try:
            return fmt.unpack(fmt.pack(value))[0]
        except (OverflowError, struct.error) as exc:
            raise ValueError(f'{value} is out of range for {self.kind}') from exc

    def write(self, value, buf):
        buf.write_float(self.kind, self.check(value))

    def read(self, buf):
        return buf.read_float(self.kind)

    def lower(self, value):
        return self.check(value)

    def lift(self, value):
        return float(value)


class BoolConverter(Converter):
    scalar = True

    def write(self, value, buf):
        buf.write_int('i8', self.lower(value))

    def read(self, buf):
        return self.lift(buf.read_int('i8'))

    def lower(self, value):
        if not isinstance(value, bool):
            raise _type_error('bool', value)
        return 1 if value else 0

    def lift(self, value):
        if value not in (0, 1):
            raise ProtocolError('unexpected byte for boolean', {'value': value})
        return value == 1


class StringConverter(Converter):
    def write(self, value, buf):
        if not isinstance(value, str):
            raise _type_error('str', value)
        buf.write_sized(value.encode('utf-8'))

    def read(self, buf):
        raw = buf.read_sized()
        try:
            return raw.decode('utf-8')
        except UnicodeDecodeError as exc:
            raise ProtocolError('string is not valid UTF-8', {'reason': exc.reason}) from exc


class BytesConverter(Converter):
    def write(self, value, buf):
        if not isinstance(value, (bytes, bytearray)):
            raise _type_error('bytes', value)
        buf.write_sized(bytes(value))

    def read(self, buf):
        return buf.read_sized()


class OptionalConverter(Converter):
    def __init__(self, inner: Converter):
        self.inner = inner

    def write(self, value, buf):
        if value is None:
            buf.write_int('i8', 0)
            return
        buf.write_int('i8', 1)
        self.inner.write(value, buf)

    def read(self, buf):
        flag = buf.read_int('i8')
        if flag == 0:
            return None
        if flag != 1:
            raise ProtocolError('unexpected presence byte', {'value': flag})
        return self.inner.read(buf)


class SequenceConverter(Converter):
    def __init__(self, inner: Converter):
        self.inner = inner

    def write(self, value, buf):
        if not isinstance(value, (list, tuple)):
            raise _type_error('list', value)
        buf.write_length(len(value))
        for item in value:
            self.inner.write(item, buf)

    def read(self, buf):
        count = buf.read_count()
        return [self.inner.read(buf) for _ in range(count)]


class MapConverter(Converter):
    """Maps lift to dicts; with duplicate keys on the wire the last one wins"""

    def __init__(self, key: Converter, value: Converter):
        self.key = key
        self.value = value

    def write(self, value, buf):
        if not isinstance(value, dict):
            raise _type_error('dict', value)
        buf.write_length(len(value))
        for k, v in value.items():
            self.key.write(k, buf)
            self.value.write(v, buf)

    def read(self, buf):
        count = buf.read_count()
        result = {}
        for _ in range(count):
            k = self.key.read(buf)
            result[k] = self.value.read(buf)
        return result


class RecordConverter(Converter):
    def __init__(self, record: Record, cls: type):
        self.record = record
        self.cls = cls
        self.fields: list[tuple[str, Converter]] = []

    def write(self, value, buf):
        if not isinstance(value, self.cls):
            raise _type_error(self.record.name, value)
        for name, conv in self.fields:
            conv.write(getattr(value, name), buf)

    def read(self, buf):
        return self.cls(**{name: conv.read(buf) for name, conv in self.fields})


def _read_discriminant(buf: BufferReader, decl: Enum) -> int:
    index = buf.read_int('i32')
    if not 1 <= index <= len(decl.variants):
        raise ProtocolError('unexpected enum discriminant',
                            {'enum': decl.name, 'discriminant': index,
                             'variants': len(decl.variants)})
    return index


class FlatEnumConverter(Converter):
    def __init__(self, decl: Enum, cls: type):
        self.decl = decl
        self.cls = cls

    def write(self, value, buf):
        if not isinstance(value, self.cls):
            raise _type_error(self.decl.name, value)
        buf.write_int('i32', value.value)

    def read(self, buf):
        return self.cls(_read_discriminant(buf, self.decl))


class DataEnumConverter(Converter):
    def __init__(self, decl: Enum, cls: type):
        self.decl = decl
        self.cls = cls
        self.variants: list[tuple[type, list[tuple[str, Converter]]]] = []

    def write(self, value, buf):
        index = getattr(type(value), '_variant_index', 0)
        if not isinstance(value, self.cls) or not index:
            raise _type_error(f'{self.decl.name} variant', value)
        buf.write_int('i32', index)
        for name, conv in self.variants[index - 1][1]:
            conv.write(getattr(value, name), buf)

    def read(self, buf):
        cls, fields = self.variants[_read_discriminant(buf, self.decl) - 1]
        return cls(**{name: conv.read(buf) for name, conv in fields})


class ErrorConverter(DataEnumConverter):
    """Declared errors; flat variants carry only their message"""

    def write(self, value, buf):
        index = getattr(type(value), '_variant_index', 0)
        if not isinstance(value, self.cls) or not index:
            raise _type_error(f'{self.decl.name} variant', value)
        buf.write_int('i32', index)
        if self.decl.is_flat:
            buf.write_sized(str(value.message).encode('utf-8'))
            return
        for name, conv in self.variants[index - 1][1]:
            conv.write(getattr(value, name), buf)

    def read(self, buf):
        cls, fields = self.variants[_read_discriminant(buf, self.decl) - 1]
        if self.decl.is_flat:
            return cls(StringConverter().read(buf))
        return cls(**{name: conv.read(buf) for name, conv in fields})


class HandleCodec(ABC):
    """Maps Object and CallbackInterface values to handles and back"""

    @abstractmethod
    def lower(self, type_def: TypeDef, value: Any) -> int:
        pass

    @abstractmethod
    def lift(self, type_def: TypeDef, handle: int) -> Any:
        pass


class HandleConverter(Converter):
    """Objects and callback interfaces: a u64 handle, scalar at the boundary"""

    scalar = True

    def __init__(self, type_def: TypeDef, codec: Optional[HandleCodec]):
        self.type_def = type_def
        self.codec = codec

    def _codec(self) -> HandleCodec:
        if self.codec is None:
            raise InternalFault('no handle codec for this boundary', {'type': self.type_def.name})
        return self.codec

    def write(self, value, buf):
        buf.write_int('u64', self.lower(value))

    def read(self, buf):
        return self.lift(buf.read_int('u64'))

    def lower(self, value):
        return self._codec().lower(self.type_def, value)

    def lift(self, handle):
        if handle == 0:
            raise ProtocolError('raw handle value was null', {'type': self.type_def.name})
        return self._codec().lift(self.type_def, handle)


class ConverterFactory:
    """Builds and caches one converter per type reference"""

    def __init__(self, ci: InterfaceDefinition, values: 'ValueTypes',
                 handles: Optional[HandleCodec] = None):
        self.ci = ci
        self.values = values
        self.handles = handles
        self._cache: dict[TypeRef, Converter] = {}

    def get(self, type_ref: TypeRef) -> Converter:
        conv = self._cache.get(type_ref)
        if conv is None:
            conv = self._build(type_ref)
        return conv

    def _build(self, type_ref: TypeRef) -> Converter:
        if isinstance(type_ref, Primitive):
            conv = self._primitive(type_ref.kind)
        elif isinstance(type_ref, OptionalType):
            conv = OptionalConverter(self.get(type_ref.inner))
        elif isinstance(type_ref, SequenceType):
            conv = SequenceConverter(self.get(type_ref.inner))
        elif isinstance(type_ref, MapType):
            conv = MapConverter(self.get(type_ref.key), self.get(type_ref.value))
        elif isinstance(type_ref, NamedType):
            return self._named(type_ref)
        else:
            raise InternalFault('no converter for type', {'type': str(type_ref)})
        self._cache[type_ref] = conv
        return conv

    @staticmethod
    def _primitive(kind: str) -> Converter:
        if kind in INT_FORMATS:
            return IntConverter(kind)
        if kind in FLOAT_FORMATS:
            return FloatConverter(kind)
        if kind == 'bool':
            return BoolConverter()
        if kind == 'string':
            return StringConverter()
        return BytesConverter()

    def _named(self, type_ref: NamedType) -> Converter:
        decl = self.ci.get_type(type_ref.name)
        if decl is None:
            raise InternalFault('no converter for undefined type', {'type': type_ref.name})

        # Cache composite converters before resolving their fields so that
        # recursive types terminate
        if isinstance(decl, (Object, CallbackInterface)):
            conv = HandleConverter(decl, self.handles)
            self._cache[type_ref] = conv
        elif isinstance(decl, Record):
            conv = RecordConverter(decl, self.values.get(decl.name))
            self._cache[type_ref] = conv
            conv.fields = [(f.name, self.get(f.type)) for f in decl.fields]
        elif isinstance(decl, Enum) and decl.is_flat and not isinstance(decl, ErrorEnum):
            conv = FlatEnumConverter(decl, self.values.get(decl.name))
            self._cache[type_ref] = conv
        else:
            cls = self.values.get(decl.name)
            conv = (ErrorConverter if isinstance(decl, ErrorEnum) else DataEnumConverter)(decl, cls)
            self._cache[type_ref] = conv
            for variant_cls, variant in zip(cls._variants, decl.variants):
                conv.variants.append(
                    (variant_cls, [(f.name, self.get(f.type)) for f in variant.fields]))
        return conv

    def error(self, name: str) -> Converter:
        """Converter for the ErrorEnum a signature throws"""
        return self.get(NamedType(name))
