import struct

import pytest

from bridge_gen import ConverterFactory, ValueTypes, ProtocolError, InternalFault, parse_type
from bridge_gen.marshal import BufferReader, BufferWriter


@pytest.fixture
def values(store_ci):
    return ValueTypes(store_ci)


@pytest.fixture
def converters(store_ci, values):
    return ConverterFactory(store_ci, values)


def conv(converters, text):
    return converters.get(parse_type(text))


class TestBuffers:
    def test_big_endian_integers(self):
        buf = BufferWriter()
        buf.write_int('u16', 0x0102)
        buf.write_int('i32', -2)
        buf.write_int('u64', 1)
        assert buf.getvalue() == b'\x01\x02' + b'\xff\xff\xff\xfe' + b'\x00' * 7 + b'\x01'

    def test_sized(self):
        buf = BufferWriter()
        buf.write_sized(b'abc')
        assert buf.getvalue() == b'\x00\x00\x00\x03abc'
        reader = BufferReader(buf.getvalue())
        assert reader.read_sized() == b'abc'
        assert reader.remaining == 0

    def test_read_past_end(self):
        with pytest.raises(ProtocolError, match='read past end'):
            BufferReader(b'\x00\x01').read_int('u32')

    def test_negative_length(self):
        with pytest.raises(ProtocolError, match='negative length'):
            BufferReader(struct.pack('>i', -1)).read_sized()

    def test_length_longer_than_buffer(self):
        with pytest.raises(ProtocolError, match='read past end'):
            BufferReader(struct.pack('>i', 10) + b'abc').read_sized()

    def test_protocol_error_is_an_internal_fault(self):
        assert issubclass(ProtocolError, InternalFault)


class TestScalars:
    @pytest.mark.parametrize('kind, value', [
        ('u8', 255), ('i8', -128), ('u16', 65535), ('i16', -32768),
        ('u32', 2**32 - 1), ('i32', -2**31), ('u64', 2**64 - 1), ('i64', -2**63),
    ])
    def test_integer_bounds(self, converters, kind, value):
        c = conv(converters, kind)
        assert c.scalar
        assert c.lower(value) == value
        buf = BufferWriter()
        c.write(value, buf)
        assert c.read(BufferReader(buf.getvalue())) == value

    @pytest.mark.parametrize('kind, value', [('u8', 256), ('u8', -1), ('i8', 128), ('u64', 2**64)])
    def test_integer_out_of_range(self, converters, kind, value):
        with pytest.raises(ValueError, match='out of range'):
            conv(converters, kind).lower(value)

    def test_integer_type_checked(self, converters):
        with pytest.raises(TypeError):
            conv(converters, 'u32').lower('5')
        with pytest.raises(TypeError):
            conv(converters, 'u32').lower(True)

    def test_integer_lift_out_of_range(self, converters):
        with pytest.raises(ProtocolError):
            conv(converters, 'u8').lift(300)

    def test_floats(self, converters):
        assert conv(converters, 'f64').lower(1) == 1.0
        buf = BufferWriter()
        conv(converters, 'f32').write(0.5, buf)
        assert buf.getvalue() == struct.pack('>f', 0.5)
        with pytest.raises(TypeError):
            conv(converters, 'f64').lower('1.0')

    def test_f32_scalar_matches_buffer(self, converters):
        c = conv(converters, 'f32')
        single = struct.unpack('>f', struct.pack('>f', 0.1))[0]
        assert c.lower(0.1) == single
        assert c.read(BufferReader(struct.pack('>f', 0.1))) == single
        assert c.lower(float('inf')) == float('inf')
        assert conv(converters, 'f64').lower(0.1) == 0.1

    @pytest.mark.parametrize('text', ['f32', 'Sequence<f32>'])
    def test_f32_out_of_range(self, converters, text):
        value = 1e40 if text == 'f32' else [1e40]
        with pytest.raises(ValueError, match='out of range for f32'):
            conv(converters, text).lower(value)

    def test_bool(self, converters):
        c = conv(converters, 'bool')
        assert c.lower(True) == 1
        assert c.lift(0) is False
        with pytest.raises(TypeError):
            c.lower(1)
        with pytest.raises(ProtocolError, match='boolean'):
            c.read(BufferReader(b'\x02'))


class TestBufferTypes:
    def test_string_encoding(self, converters):
        assert conv(converters, 'string').lower('hé') == b'\x00\x00\x00\x03h\xc3\xa9'

    def test_invalid_utf8(self, converters):
        with pytest.raises(ProtocolError, match='UTF-8'):
            conv(converters, 'string').lift(b'\x00\x00\x00\x01\xff')

    def test_bytes(self, converters):
        c = conv(converters, 'bytes')
        assert c.lift(c.lower(b'\x00\x01')) == b'\x00\x01'
        with pytest.raises(TypeError):
            c.lower('text')

    def test_optional(self, converters):
        c = conv(converters, 'Optional<u16>')
        assert c.lower(None) == b'\x00'
        assert c.lower(7) == b'\x01\x00\x07'
        assert c.lift(b'\x01\x00\x07') == 7
        with pytest.raises(ProtocolError, match='presence byte'):
            c.lift(b'\x05')

    def test_sequence(self, converters):
        c = conv(converters, 'Sequence<u8>')
        assert c.lower([1, 2]) == b'\x00\x00\x00\x02\x01\x02'
        assert c.lift(b'\x00\x00\x00\x00') == []
        with pytest.raises(TypeError):
            c.lower({1, 2})

    def test_map(self, converters):
        c = conv(converters, 'Map<string,u8>')
        data = c.lower({'a': 1})
        assert data == b'\x00\x00\x00\x01' + b'\x00\x00\x00\x01a' + b'\x01'
        assert c.lift(data) == {'a': 1}

    def test_map_duplicate_keys_last_wins(self, converters):
        c = conv(converters, 'Map<string,u8>')
        entry_a1 = b'\x00\x00\x00\x01a\x01'
        entry_a2 = b'\x00\x00\x00\x01a\x02'
        assert c.lift(b'\x00\x00\x00\x02' + entry_a1 + entry_a2) == {'a': 2}

    def test_junk_after_value(self, converters):
        with pytest.raises(ProtocolError, match='junk remaining'):
            conv(converters, 'string').lift(b'\x00\x00\x00\x01ab')

    def test_truncated(self, converters):
        with pytest.raises(ProtocolError):
            conv(converters, 'Sequence<u32>').lift(b'\x00\x00\x00\x02\x00\x00\x00\x01')

    @pytest.mark.parametrize('text', ['Sequence<bool>', 'Sequence<Optional<Item>>', 'Map<string,u8>'])
    def test_count_larger_than_buffer(self, converters, text):
        with pytest.raises(ProtocolError, match='element count exceeds buffer'):
            conv(converters, text).lift(struct.pack('>i', 3_000_000))

    def test_count_checked_against_remaining_bytes(self, converters):
        c = conv(converters, 'Sequence<u8>')
        assert c.lift(b'\x00\x00\x00\x02\x07\x08') == [7, 8]
        with pytest.raises(ProtocolError, match='element count exceeds buffer'):
            c.lift(b'\x00\x00\x00\x03\x07\x08')

    def test_lowering_is_deterministic(self, converters):
        c = conv(converters, 'Map<string,Sequence<i32>>')
        value = {'x': [1, -1], 'y': []}
        assert c.lower(value) == c.lower(dict(value))


class TestDeclaredTypes:
    def test_record_round_trip(self, converters, values):
        c = conv(converters, 'Item')
        item = values.Item(id=3, name='bolt', tags=['m4'], note='steel')
        assert c.lift(c.lower(item)) == item

    def test_record_field_order(self, converters, values):
        data = conv(converters, 'Item').lower(values.Item(id=1, name='a'))
        assert data == (b'\x00' * 7 + b'\x01'
                        + b'\x00\x00\x00\x01a'
                        + b'\x00\x00\x00\x00'
                        + b'\x00')

    def test_record_type_checked(self, converters):
        with pytest.raises(TypeError):
            conv(converters, 'Item').lower({'id': 1, 'name': 'a'})

    def test_flat_enum(self, converters, values):
        c = conv(converters, 'Color')
        assert c.lower(values.Color.GREEN) == b'\x00\x00\x00\x02'
        assert c.lift(b'\x00\x00\x00\x03') is values.Color.BLUE

    @pytest.mark.parametrize('discriminant', [0, 4, -1])
    def test_flat_enum_discriminant_bound(self, converters, discriminant):
        with pytest.raises(ProtocolError, match='discriminant'):
            conv(converters, 'Color').lift(struct.pack('>i', discriminant))

    def test_data_enum(self, converters, values):
        c = conv(converters, 'Shape')
        rect = values.Shape.Rect(w=2.0, h=3.0)
        data = c.lower(rect)
        assert data == b'\x00\x00\x00\x02' + struct.pack('>dd', 2.0, 3.0)
        assert c.lift(data) == rect
        assert c.lift(b'\x00\x00\x00\x03') == values.Shape.Empty()

    def test_data_enum_discriminant_bound(self, converters):
        with pytest.raises(ProtocolError, match='discriminant'):
            conv(converters, 'Shape').lift(b'\x00\x00\x00\x04')

    def test_data_enum_type_checked(self, converters, values):
        with pytest.raises(TypeError):
            conv(converters, 'Shape').lower(values.Color.RED)

    def test_structured_error(self, converters, values):
        c = converters.error('StoreError')
        error = values.StoreError.NotFound(id=9)
        data = c.lower(error)
        assert data == b'\x00\x00\x00\x01' + b'\x00' * 7 + b'\x09'
        lifted = c.lift(data)
        assert isinstance(lifted, values.StoreError)
        assert lifted == error
        assert lifted.id == 9

    def test_flat_error_carries_message(self, converters, values):
        c = converters.error('ParseError')
        data = c.lower(values.ParseError.Invalid('bad input'))
        assert data == b'\x00\x00\x00\x02' + b'\x00\x00\x00\x09bad input'
        lifted = c.lift(data)
        assert isinstance(lifted, values.ParseError.Invalid)
        assert str(lifted) == 'bad input'

    def test_handles_need_a_codec(self, converters):
        with pytest.raises(InternalFault, match='no handle codec'):
            conv(converters, 'Store').lower(object())

    def test_null_handle(self, converters):
        with pytest.raises(ProtocolError, match='null'):
            conv(converters, 'Store').lift(0)

    def test_converters_are_cached(self, converters):
        assert conv(converters, 'Sequence<Item>') is conv(converters, 'Sequence<Item>')

    def test_recursive_types(self):
        from bridge_gen import InterfaceDefinition
        ci = InterfaceDefinition.from_dict({'namespace': 'r', 'decls': [
            {'kind': 'record', 'name': 'Node', 'fields': [
                {'name': 'value', 'type': 'u8'}, {'name': 'next', 'type': 'Optional<Node>'}]},
        ]})
        values = ValueTypes(ci)
        c = ConverterFactory(ci, values).get(parse_type('Node'))
        chain = values.Node(value=1, next=values.Node(value=2, next=None))
        assert c.lower(chain) == b'\x01\x01\x02\x00'
        assert c.lift(c.lower(chain)) == chain
