import pytest

from bridge_gen import InterfaceDefinition, ValidationError, validate
from bridge_gen.ir import Primitive, NamedType, OptionalType, SequenceType, MapType
from bridge_gen.validate import default_fits


def build(*decls, namespace='t'):
    return InterfaceDefinition.from_dict({'namespace': namespace, 'decls': list(decls)})


def record(name, *fields):
    return {'kind': 'record', 'name': name,
            'fields': [{'name': n, 'type': t} for n, t in fields]}


def test_valid_interfaces(store_ci, magic_ci):
    validate(store_ci)
    validate(magic_ci)


def test_skip_validation(store_dict):
    store_dict['decls'].append(record('Item', ('x', 'u8')))
    ci = InterfaceDefinition.from_dict(store_dict, validate=False)
    with pytest.raises(ValidationError, match='duplicate type'):
        validate(ci)


class TestReferences:
    def test_undefined_field_type(self):
        with pytest.raises(ValidationError, match='undefined type'):
            build(record('A', ('b', 'Missing')))

    def test_undefined_nested_type(self):
        with pytest.raises(ValidationError, match='undefined type'):
            build({'kind': 'func', 'name': 'f', 'args': [{'name': 'x', 'type': 'Map<string,Missing>'}]})

    def test_undefined_return_type(self):
        with pytest.raises(ValidationError, match='undefined type'):
            build({'kind': 'func', 'name': 'f', 'returns': 'Sequence<Missing>'})

    def test_throws_must_name_an_error(self):
        with pytest.raises(ValidationError, match='throws must name an error enum'):
            build(record('A', ('x', 'u8')), {'kind': 'func', 'name': 'f', 'throws': 'A'})

    def test_throws_undefined(self):
        with pytest.raises(ValidationError, match='throws must name an error enum'):
            build({'kind': 'func', 'name': 'f', 'throws': 'Nope'})


class TestUniqueness:
    def test_duplicate_type(self):
        with pytest.raises(ValidationError, match='duplicate type'):
            build(record('A', ('x', 'u8')), record('A', ('y', 'u8')))

    def test_duplicate_function(self):
        with pytest.raises(ValidationError, match='duplicate function'):
            build({'kind': 'func', 'name': 'f'}, {'kind': 'func', 'name': 'f'})

    def test_duplicate_field(self):
        with pytest.raises(ValidationError, match='duplicate field'):
            build(record('A', ('x', 'u8'), ('x', 'u16')))

    def test_duplicate_variant(self):
        with pytest.raises(ValidationError, match='duplicate variant'):
            build({'kind': 'enum', 'name': 'E', 'variants': ['A', 'A']})

    def test_duplicate_argument(self):
        with pytest.raises(ValidationError, match='duplicate field'):
            build({'kind': 'func', 'name': 'f',
                   'args': [{'name': 'a', 'type': 'u8'}, {'name': 'a', 'type': 'u8'}]})

    def test_duplicate_method(self):
        with pytest.raises(ValidationError, match='duplicate method'):
            build({'kind': 'object', 'name': 'O',
                   'methods': [{'name': 'm'}, {'name': 'm'}]})

    def test_two_primary_constructors(self):
        with pytest.raises(ValidationError, match='more than one primary constructor'):
            build({'kind': 'object', 'name': 'O',
                   'constructors': [{'args': []}, {'name': 'new', 'args': []}]})


class TestDeclarations:
    def test_empty_enum(self):
        with pytest.raises(ValidationError, match='no variants'):
            build({'kind': 'enum', 'name': 'E', 'variants': []})

    def test_flat_error_with_fields(self):
        with pytest.raises(ValidationError, match='flat error variants cannot carry fields'):
            build({'kind': 'error', 'name': 'E', 'flat': True,
                   'variants': [{'name': 'A', 'fields': [{'name': 'x', 'type': 'u8'}]}]})

    def test_bad_identifier(self):
        with pytest.raises(ValidationError, match='not an identifier'):
            build(record('A', ('has space', 'u8')))

    def test_callback_in_record(self):
        with pytest.raises(ValidationError, match='only be passed as arguments'):
            build({'kind': 'callback', 'name': 'Cb', 'methods': []}, record('A', ('cb', 'Cb')))

    def test_callback_return(self):
        with pytest.raises(ValidationError, match='only be passed as arguments'):
            build({'kind': 'callback', 'name': 'Cb', 'methods': []},
                  {'kind': 'func', 'name': 'f', 'returns': 'Optional<Cb>'})

    def test_callback_method_returning_object(self):
        with pytest.raises(ValidationError, match='cannot return handles'):
            build({'kind': 'object', 'name': 'O'},
                  {'kind': 'callback', 'name': 'Cb', 'methods': [{'name': 'make', 'returns': 'O'}]})

    @pytest.mark.parametrize('arg_type', ['Inner', 'Optional<Inner>', 'Sequence<Inner>'])
    def test_callback_method_taking_callback(self, arg_type):
        with pytest.raises(ValidationError, match='cannot take callback interfaces'):
            build({'kind': 'callback', 'name': 'Inner', 'methods': [{'name': 'ping'}]},
                  {'kind': 'callback', 'name': 'Outer',
                   'methods': [{'name': 'take', 'args': [{'name': 'inner', 'type': arg_type}]}]})

    def test_function_taking_callback(self):
        ci = build({'kind': 'callback', 'name': 'Cb', 'methods': [{'name': 'ping'}]},
                   {'kind': 'func', 'name': 'run', 'args': [{'name': 'cb', 'type': 'Cb'}]})
        assert ci.get_function('run') is not None


class TestRecordsAndMaps:
    def test_record_without_fields(self):
        with pytest.raises(ValidationError, match='record declares no fields'):
            build({'kind': 'record', 'name': 'Unit', 'fields': []})

    @pytest.mark.parametrize('key', ['Point', 'Sequence<u8>', 'Map<string,u8>', 'Optional<u8>',
                                     'Shape', 'Oops', 'O'])
    def test_unhashable_map_key(self, key):
        with pytest.raises(ValidationError, match='map keys must be'):
            build(record('Point', ('x', 'u8')),
                  {'kind': 'enum', 'name': 'Shape',
                   'variants': [{'name': 'Dot', 'fields': [{'name': 'r', 'type': 'u8'}]}]},
                  {'kind': 'error', 'name': 'Oops', 'flat': True, 'variants': ['Bad']},
                  {'kind': 'object', 'name': 'O'},
                  {'kind': 'func', 'name': 'f', 'args': [{'name': 'm', 'type': f'Map<{key},u8>'}]})

    def test_nested_map_key_checked(self):
        with pytest.raises(ValidationError, match='map keys must be'):
            build(record('Point', ('x', 'u8')),
                  record('Grid', ('cells', 'Sequence<Map<Point,u8>>')))

    @pytest.mark.parametrize('key', ['u8', 'string', 'bytes', 'bool', 'Color'])
    def test_hashable_map_key(self, key):
        build({'kind': 'enum', 'name': 'Color', 'variants': ['RED', 'GREEN']},
              {'kind': 'func', 'name': 'f', 'returns': f'Map<{key},u8>'})


class TestSpecialOperations:
    def test_unknown_method(self):
        with pytest.raises(ValidationError, match='unknown method'):
            build({'kind': 'object', 'name': 'O', 'traits': [{'trait': 'Display', 'method': 'nope'}]})

    def test_wrong_signature(self):
        with pytest.raises(ValidationError, match='wrong signature'):
            build({'kind': 'object', 'name': 'O',
                   'methods': [{'name': 'render', 'returns': 'u32'}],
                   'traits': [{'trait': 'Display', 'method': 'render'}]})

    def test_binary_operand_must_be_self(self):
        with pytest.raises(ValidationError, match='wrong signature'):
            build({'kind': 'object', 'name': 'O',
                   'methods': [{'name': 'eq', 'args': [{'name': 'other', 'type': 'u8'}], 'returns': 'bool'}],
                   'traits': [{'trait': 'Eq', 'method': 'eq'}]})

    def test_fallible_method_rejected(self):
        with pytest.raises(ValidationError, match='wrong signature'):
            build({'kind': 'object', 'name': 'O',
                   'methods': [{'name': 'render', 'returns': 'string', 'fallible': True}],
                   'traits': [{'trait': 'Display', 'method': 'render'}]})

    def test_duplicate_kind(self):
        with pytest.raises(ValidationError, match='more than once'):
            build({'kind': 'object', 'name': 'O',
                   'methods': [{'name': 'eq', 'args': [{'name': 'other', 'type': 'O'}], 'returns': 'bool'}],
                   'traits': [{'trait': 'Eq', 'method': 'eq'}, {'trait': 'PartialEq', 'method': 'eq'}]})

    def test_unknown_trait_is_accepted(self):
        ci = build({'kind': 'object', 'name': 'O', 'traits': ['Clone']})
        assert ci.get_type('O').special_operations[0].kind is None


class TestCycles:
    def test_direct_cycle(self):
        with pytest.raises(ValidationError, match='cycle'):
            build(record('Node', ('next', 'Node')))

    def test_indirect_cycle(self):
        with pytest.raises(ValidationError, match='A -> B -> A'):
            build(record('A', ('b', 'B')), record('B', ('a', 'A')))

    def test_sequence_does_not_break_cycle(self):
        with pytest.raises(ValidationError, match='cycle'):
            build(record('Tree', ('children', 'Sequence<Tree>')))

    def test_cycle_through_enum(self):
        with pytest.raises(ValidationError, match='cycle'):
            build({'kind': 'enum', 'name': 'Expr', 'variants': [
                {'name': 'Neg', 'fields': [{'name': 'inner', 'type': 'Expr'}]}]})

    def test_optional_breaks_cycle(self):
        ci = build(record('Node', ('value', 'u32'), ('next', 'Optional<Node>')))
        assert ci.get_type('Node').fields[1].type == OptionalType(NamedType('Node'))

    def test_object_breaks_cycle(self):
        build({'kind': 'object', 'name': 'Graph',
               'methods': [{'name': 'child', 'returns': 'Graph'},
                           {'name': 'neighbours', 'returns': 'Sequence<Graph>'}]})


class TestSymbols:
    def test_symbol_collision(self):
        # Store_Item and StoreItem both become store_item
        with pytest.raises(ValidationError, match='symbol collision'):
            build({'kind': 'object', 'name': 'Store_Item'}, {'kind': 'object', 'name': 'StoreItem'})


class TestDefaults:
    def test_rejected_default(self):
        with pytest.raises(ValidationError, match='default value does not fit'):
            build({'kind': 'record', 'name': 'A',
                   'fields': [{'name': 'x', 'type': 'u8', 'default': 256}]})

    def test_enum_default(self):
        ci = build({'kind': 'enum', 'name': 'Color', 'variants': ['RED', 'GREEN']},
                   {'kind': 'record', 'name': 'Pen',
                    'fields': [{'name': 'color', 'type': 'Color', 'default': 'GREEN'}]})
        assert ci.get_type('Pen').fields[0].default == 'GREEN'

    @pytest.mark.parametrize('value, type_ref, fits', [
        (255, Primitive('u8'), True),
        (-1, Primitive('u8'), False),
        (True, Primitive('u8'), False),
        (1, Primitive('f32'), True),
        (float('nan'), Primitive('f64'), False),
        (False, Primitive('bool'), True),
        ('x', Primitive('string'), True),
        ('x', Primitive('bytes'), True),
        (None, OptionalType(Primitive('u8')), True),
        ([1, 2], SequenceType(Primitive('i8')), True),
        ([1, 'a'], SequenceType(Primitive('i8')), False),
        ({'a': 1}, MapType(Primitive('string'), Primitive('u32')), True),
        ({'a': -1}, MapType(Primitive('string'), Primitive('u32')), False),
    ])
    def test_default_fits(self, value, type_ref, fits):
        ci = build()
        assert default_fits(value, type_ref, ci) is fits

    def test_record_defaults_are_not_supported(self):
        ci = build(record('P', ('x', 'u8')))
        assert not default_fits({'x': 1}, NamedType('P'), ci)
