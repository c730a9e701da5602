import copy

import pytest

from bridge_gen import InterfaceDefinition, NativeLibrary, bind


MAGIC = {
    'namespace': 'magic',
    'decls': [
        {
            'kind': 'object',
            'name': 'Magic',
            'constructors': [{'args': [{'name': 'val', 'type': 'string'}]}],
            'methods': [{'name': 'get_val', 'returns': 'string'}],
            'traits': ['Display', 'Debug', 'Eq', 'Hash'],
        },
    ],
}

STORE = {
    'namespace': 'store',
    'decls': [
        {
            'kind': 'error',
            'name': 'StoreError',
            'variants': [
                {'name': 'NotFound', 'fields': [{'name': 'id', 'type': 'u64'}]},
                {'name': 'Full'},
            ],
        },
        {'kind': 'error', 'name': 'ParseError', 'flat': True, 'variants': ['Empty', 'Invalid']},
        {
            'kind': 'record',
            'name': 'Item',
            'fields': [
                {'name': 'id', 'type': 'u64'},
                {'name': 'name', 'type': 'string'},
                {'name': 'tags', 'type': 'Sequence<string>', 'default': []},
                {'name': 'note', 'type': 'Optional<string>', 'default': None},
            ],
        },
        {'kind': 'enum', 'name': 'Color', 'variants': ['RED', 'GREEN', 'BLUE']},
        {
            'kind': 'enum',
            'name': 'Shape',
            'variants': [
                {'name': 'Circle', 'fields': [{'name': 'radius', 'type': 'f64'}]},
                {'name': 'Rect', 'fields': [{'name': 'w', 'type': 'f64'}, {'name': 'h', 'type': 'f64'}]},
                {'name': 'Empty'},
            ],
        },
        {
            'kind': 'callback',
            'name': 'Listener',
            'methods': [
                {'name': 'on_item', 'args': [{'name': 'item', 'type': 'Item'}], 'returns': 'bool'},
                {'name': 'on_error', 'args': [{'name': 'message', 'type': 'string'}],
                 'throws': 'StoreError'},
            ],
        },
        {
            'kind': 'object',
            'name': 'Store',
            'constructors': [
                {'args': []},
                {'name': 'with_capacity', 'args': [{'name': 'capacity', 'type': 'u32'}],
                 'throws': 'StoreError'},
            ],
            'methods': [
                {'name': 'put', 'args': [{'name': 'item', 'type': 'Item'}], 'throws': 'StoreError'},
                {'name': 'get', 'args': [{'name': 'id', 'type': 'u64'}], 'returns': 'Item',
                 'throws': 'StoreError'},
                {'name': 'find', 'args': [{'name': 'name', 'type': 'string'}], 'returns': 'Optional<Item>'},
                {'name': 'count', 'returns': 'u32'},
                {'name': 'ids', 'returns': 'Sequence<u64>'},
                {'name': 'index', 'returns': 'Map<string,u64>'},
                {'name': 'notify', 'args': [{'name': 'listener', 'type': 'Listener'}], 'returns': 'u32'},
                {'name': 'report', 'args': [{'name': 'listener', 'type': 'Listener'},
                                            {'name': 'message', 'type': 'string'}], 'returns': 'string'},
                {'name': 'snapshot', 'returns': 'Store'},
                {'name': 'same', 'args': [{'name': 'other', 'type': 'Store'}], 'returns': 'bool'},
                {'name': 'crash'},
            ],
        },
        {'kind': 'func', 'name': 'parse_color', 'args': [{'name': 'text', 'type': 'string'}],
         'returns': 'Color', 'throws': 'ParseError'},
        {'kind': 'func', 'name': 'area', 'args': [{'name': 'shape', 'type': 'Shape'}], 'returns': 'f64'},
        {'kind': 'func', 'name': 'greet',
         'args': [{'name': 'name', 'type': 'string'},
                  {'name': 'punctuation', 'type': 'string', 'default': '!'}],
         'returns': 'string'},
        {'kind': 'func', 'name': 'checksum',
         'args': [{'name': 'data', 'type': 'bytes'}, {'name': 'invert', 'type': 'bool'}],
         'returns': 'u8'},
    ],
}


@pytest.fixture
def magic_dict():
    return copy.deepcopy(MAGIC)


@pytest.fixture
def store_dict():
    return copy.deepcopy(STORE)


@pytest.fixture
def magic_ci(magic_dict):
    return InterfaceDefinition.from_dict(magic_dict)


@pytest.fixture
def store_ci(store_dict):
    return InterfaceDefinition.from_dict(store_dict)


@pytest.fixture
def magic_lib(magic_ci):
    lib = NativeLibrary(magic_ci)

    @lib.implement('Magic')
    class Magic:
        closed = 0

        def __init__(self, val):
            self.val = val

        def get_val(self):
            return self.val

        def __str__(self):
            return f'Magic({self.val})'

        def __repr__(self):
            return f'Magic {{ val: "{self.val}" }}'

        def __eq__(self, other):
            return isinstance(other, Magic) and self.val == other.val

        def __hash__(self):
            return hash(self.val)

        def close(self):
            type(self).closed += 1

    return lib


@pytest.fixture
def magic_api(magic_ci, magic_lib):
    return bind(magic_ci, magic_lib)


@pytest.fixture
def store_lib(store_ci):
    lib = NativeLibrary(store_ci)
    types = lib.types

    @lib.implement('Store')
    class Store:
        def __init__(self, capacity=None):
            self.items = {}
            self.capacity = capacity

        @classmethod
        def with_capacity(cls, capacity):
            if capacity == 0:
                raise types.StoreError.Full()
            return cls(capacity)

        def put(self, item):
            if self.capacity is not None and len(self.items) >= self.capacity:
                raise types.StoreError.Full()
            self.items[item.id] = item

        def get(self, id):
            try:
                return self.items[id]
            except KeyError:
                raise types.StoreError.NotFound(id=id) from None

        def find(self, name):
            return next((i for i in self.items.values() if i.name == name), None)

        def count(self):
            return len(self.items)

        def ids(self):
            return sorted(self.items)

        def index(self):
            return {i.name: i.id for i in self.items.values()}

        def notify(self, listener):
            return sum(1 for item in self.items.values() if listener.on_item(item))

        def report(self, listener, message):
            try:
                listener.on_error(message)
            except types.StoreError.NotFound as exc:
                return f'not found {exc.id}'
            return 'ok'

        def snapshot(self):
            copy_ = Store(self.capacity)
            copy_.items = dict(self.items)
            return copy_

        def same(self, other):
            return other is self

        def crash(self):
            raise RuntimeError('boom')

    @lib.function('parse_color')
    def parse_color(text):
        if not text:
            raise types.ParseError.Empty('no text')
        try:
            return types.Color[text.upper()]
        except KeyError:
            raise types.ParseError.Invalid(f'unknown color {text}') from None

    @lib.function('area')
    def area(shape):
        if isinstance(shape, types.Shape.Circle):
            return 3.0 * shape.radius * shape.radius
        if isinstance(shape, types.Shape.Rect):
            return shape.w * shape.h
        return 0.0

    @lib.function('greet')
    def greet(name, punctuation):
        return f'hello {name}{punctuation}'

    @lib.function('checksum')
    def checksum(data, invert):
        total = sum(data) & 0xFF
        return 0xFF - total if invert else total

    return lib


@pytest.fixture
def store_api(store_ci, store_lib):
    return bind(store_ci, store_lib)
