import copy
import gc

import pytest

from bridge_gen import (
    CallStatus, CALL_ERROR, CALL_UNEXPECTED_ERROR, InternalFault, DeclaredError, bind, parse_type,
)


class TestMagic:
    def test_string_conversions(self, magic_api):
        m = magic_api.Magic('yo')
        assert m.get_val() == 'yo'
        assert str(m) == 'Magic(yo)'
        assert repr(m) == 'Magic { val: "yo" }'

    def test_equality(self, magic_api):
        a, b, c = magic_api.Magic('yo'), magic_api.Magic('yo'), magic_api.Magic('no')
        assert a == b
        assert not a != b
        assert a != c
        assert a != 'yo'

    def test_usable_as_dict_key(self, magic_api):
        table = {magic_api.Magic('yo'): 1}
        assert table[magic_api.Magic('yo')] == 1
        assert hash(magic_api.Magic('yo')) == hash(magic_api.Magic('yo'))

    def test_close_twice_releases_once(self, magic_api, magic_lib):
        impl = magic_lib.implementation('Magic')
        before = impl.closed
        m = magic_api.Magic('yo')
        m.close()
        m.close()
        assert m.closed
        assert impl.closed == before + 1
        assert len(magic_lib.arena) == 0

    def test_context_manager(self, magic_api, magic_lib):
        with magic_api.Magic('yo') as m:
            assert len(magic_lib.arena) == 1
        assert m.closed
        assert len(magic_lib.arena) == 0

    def test_collection_releases(self, magic_api, magic_lib):
        m = magic_api.Magic('yo')
        assert len(magic_lib.arena) == 1
        del m
        gc.collect()
        assert len(magic_lib.arena) == 0

    def test_closed_object_cannot_be_used(self, magic_api):
        m = magic_api.Magic('yo')
        m.close()
        with pytest.raises(ValueError, match='closed'):
            m.get_val()

    def test_copy_shares_the_native_object(self, magic_api, magic_lib):
        m = magic_api.Magic('yo')
        clone = copy.copy(m)
        assert clone is not m
        assert magic_lib.arena.ref_count(m._handle) == 2
        m.close()
        assert clone.get_val() == 'yo'
        clone.close()
        assert len(magic_lib.arena) == 0

    def test_argument_type_checked(self, magic_api):
        with pytest.raises(TypeError):
            magic_api.Magic(5)


class TestStore:
    def test_put_and_get(self, store_api):
        store = store_api.Store()
        store.put(store_api.Item(id=5, name='bolt', tags=['m4']))
        item = store.get(5)
        assert item == store_api.Item(id=5, name='bolt', tags=['m4'], note=None)
        assert store.count() == 1
        assert store.ids() == [5]
        assert store.index() == {'bolt': 5}

    def test_optional_return(self, store_api):
        store = store_api.Store()
        assert store.find('bolt') is None
        store.put(store_api.Item(1, 'bolt'))
        assert store.find('bolt').id == 1

    def test_declared_error(self, store_api):
        store = store_api.Store()
        with pytest.raises(store_api.StoreError.NotFound) as info:
            store.get(5)
        assert info.value.id == 5
        assert isinstance(info.value, store_api.StoreError)
        assert isinstance(info.value, DeclaredError)

    def test_declared_error_status(self, store_lib):
        status = CallStatus()
        handle = store_lib.invoke('store_store_new', [], status)
        result = store_lib.invoke('store_store_get', [handle, 42], status)
        assert result is None
        assert status.code == CALL_ERROR
        error = store_lib.converters.error('StoreError').lift(status.error_buf)
        assert error == store_lib.types.StoreError.NotFound(id=42)

    def test_alternate_constructor(self, store_api):
        store = store_api.Store.with_capacity(1)
        store.put(store_api.Item(1, 'a'))
        with pytest.raises(store_api.StoreError.Full):
            store.put(store_api.Item(2, 'b'))

    def test_failing_constructor_creates_nothing(self, store_api, store_lib):
        with pytest.raises(store_api.StoreError.Full):
            store_api.Store.with_capacity(0)
        assert len(store_lib.arena) == 0

    def test_unexpected_error(self, store_api):
        store = store_api.Store()
        with pytest.raises(InternalFault, match='boom'):
            store.crash()

    def test_unexpected_error_status(self, store_lib):
        status = CallStatus()
        handle = store_lib.invoke('store_store_new', [], status)
        store_lib.invoke('store_store_crash', [handle], status)
        assert status.code == CALL_UNEXPECTED_ERROR

    def test_returned_object(self, store_api, store_lib):
        store = store_api.Store()
        store.put(store_api.Item(1, 'a'))
        snap = store.snapshot()
        assert isinstance(snap, store_api.Store)
        store.put(store_api.Item(2, 'b'))
        assert snap.count() == 1
        assert len(store_lib.arena) == 2

    def test_object_arguments_are_borrowed(self, store_api, store_lib):
        store, other = store_api.Store(), store_api.Store()
        assert store.same(store)
        assert not store.same(other)
        assert store_lib.arena.ref_count(store._handle) == 1

    def test_object_argument_type_checked(self, store_api):
        with pytest.raises(TypeError):
            store_api.Store().same('store')

    def test_closed(self, store_api):
        store = store_api.Store()
        store.close()
        with pytest.raises(ValueError):
            store.count()


class TestFunctions:
    def test_enum_return(self, store_api):
        assert store_api.parse_color('green') is store_api.Color.GREEN

    def test_flat_error(self, store_api):
        with pytest.raises(store_api.ParseError.Empty, match='no text'):
            store_api.parse_color('')
        with pytest.raises(store_api.ParseError.Invalid, match='unknown color pink'):
            store_api.parse_color('pink')

    def test_data_enum_argument(self, store_api):
        assert store_api.area(store_api.Shape.Circle(radius=2.0)) == 12.0
        assert store_api.area(store_api.Shape.Rect(w=2.0, h=4.0)) == 8.0
        assert store_api.area(store_api.Shape.Empty()) == 0.0

    def test_default_argument(self, store_api):
        assert store_api.greet('bob') == 'hello bob!'
        assert store_api.greet('bob', punctuation='?') == 'hello bob?'
        assert store_api.greet.__name__ == 'greet'

    def test_bytes_and_bool(self, store_api):
        assert store_api.checksum(b'\x01\x02', False) == 3
        assert store_api.checksum(b'\x01\x02', True) == 252
        with pytest.raises(TypeError):
            store_api.checksum('text', False)
        with pytest.raises(TypeError):
            store_api.checksum(b'', 1)

    def test_missing_implementation(self, store_ci):
        from bridge_gen import NativeLibrary
        lib = NativeLibrary(store_ci)
        status = CallStatus()
        arg = lib.converters.get(parse_type('string')).lower('x')
        lib.invoke('store_fn_greet', [arg, arg], status)
        assert status.code == CALL_UNEXPECTED_ERROR

    def test_registration_checks_names(self, store_lib):
        with pytest.raises(ValueError):
            store_lib.implement('Item')
        with pytest.raises(ValueError):
            store_lib.function('nope')


class Counter:
    def __init__(self, accept=True):
        self.accept = accept
        self.seen = []

    def on_item(self, item):
        self.seen.append(item.name)
        return self.accept

    def on_error(self, message):
        return None


class TestCallbacks:
    def test_callback_is_invoked(self, store_api):
        store = store_api.Store()
        store.put(store_api.Item(1, 'a'))
        store.put(store_api.Item(2, 'b'))
        listener = Counter()
        assert store.notify(listener) == 2
        assert sorted(listener.seen) == ['a', 'b']
        assert store.notify(Counter(accept=False)) == 0

    def test_callback_handle_is_released(self, store_api):
        store = store_api.Store()
        store.notify(Counter())
        gc.collect()
        assert len(store_api.callbacks['Listener'].arena) == 0

    def test_declared_error_from_callback(self, store_api):
        class Failing(Counter):
            def on_error(self, message):
                raise store_api.StoreError.NotFound(id=3)

        store = store_api.Store()
        assert store.report(Counter(), 'x') == 'ok'
        assert store.report(Failing(), 'x') == 'not found 3'

    def test_unexpected_error_from_callback(self, store_api):
        class Broken(Counter):
            def on_error(self, message):
                raise ValueError('bad listener')

        with pytest.raises(InternalFault, match='bad listener'):
            store_api.Store().report(Broken(), 'x')

    def test_incomplete_implementation(self, store_api):
        class Partial:
            def on_item(self, item):
                return True

        with pytest.raises(TypeError, match='does not implement Listener.on_error'):
            store_api.Store().notify(Partial())


class TestBind:
    def test_contract_version_mismatch(self, store_ci, store_lib):
        class OldLibrary:
            scaffolding = store_lib.scaffolding

            def invoke(self, symbol, args, status):
                if symbol == 'store_contract_version':
                    return 0
                return store_lib.invoke(symbol, args, status)

        with pytest.raises(InternalFault, match='contract version mismatch'):
            bind(store_ci, OldLibrary())

    def test_value_types_are_exposed(self, store_api):
        assert store_api.Item(1, 'a').tags == []
        assert store_api.Color.RED.value == 1
        with pytest.raises(AttributeError):
            store_api.Nothing

    def test_defaults_are_fresh(self, store_api):
        a, b = store_api.Item(1, 'a'), store_api.Item(2, 'b')
        a.tags.append('x')
        assert b.tags == []


def test_ordering_hooks():
    from bridge_gen import InterfaceDefinition, NativeLibrary
    ci = InterfaceDefinition.from_dict({
        'namespace': 'ver',
        'decls': [{
            'kind': 'object', 'name': 'Version',
            'constructors': [{'args': [{'name': 'number', 'type': 'u32'}]}],
            'traits': ['Eq', 'Ord'],
        }],
    })
    lib = NativeLibrary(ci)

    @lib.implement('Version')
    class Version:
        def __init__(self, number):
            self.number = number

        def __eq__(self, other):
            return self.number == other.number

        def __lt__(self, other):
            return self.number < other.number

    api = bind(ci, lib)
    one, two = api.Version(1), api.Version(2)
    assert one < two
    assert one <= api.Version(1)
    assert two > one
    assert not one >= two
    assert one == api.Version(1)
    assert sorted([two, one])[0] == one
    with pytest.raises(TypeError):
        hash(one)
