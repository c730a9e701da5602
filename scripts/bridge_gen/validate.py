"""
Interface validation module

Checks an InterfaceDefinition for internal consistency. Every problem is
reported as a ValidationError before any signature is synthesized or any
binding is emitted.
"""

import math
import re
from typing import Any, Iterable, Optional

from .errors import ValidationError
from .ir import (
    InterfaceDefinition, TypeDef, TypeRef, Field, Signature,
    Primitive, NamedType, OptionalType, SequenceType, MapType,
    Record, Enum, ErrorEnum, Object, CallbackInterface,
    matches_trait_signature, INTEGER_KINDS,
)

_IDENT_RE = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')

INTEGER_RANGES = {
    'u8': (0, 2**8 - 1),
    'i8': (-2**7, 2**7 - 1),
    'u16': (0, 2**16 - 1),
    'i16': (-2**15, 2**15 - 1),
    'u32': (0, 2**32 - 1),
    'i32': (-2**31, 2**31 - 1),
    'u64': (0, 2**64 - 1),
    'i64': (-2**63, 2**63 - 1),
}


def validate(ci: InterfaceDefinition):
    """Validate an interface, raising ValidationError on the first problem"""
    Validator(ci).run()


class Validator:
    """Walks the model and raises on inconsistencies"""

    def __init__(self, ci: InterfaceDefinition):
        self.ci = ci

    def run(self):
        self._check_unique('type', (t.name for t in self.ci.types))
        self._check_unique('function', (f.name for f in self.ci.functions))

        for type_def in self.ci.types:
            self._check_identifier(type_def.name)
            if isinstance(type_def, Record):
                self._check_record(type_def)
            elif isinstance(type_def, Enum):
                self._check_enum(type_def)
            elif isinstance(type_def, Object):
                self._check_object(type_def)
            elif isinstance(type_def, CallbackInterface):
                self._check_callback(type_def)

        for func in self.ci.functions:
            self._check_signature(func, owner=None)

        self._check_value_cycles()
        self._check_symbols()

    # --------------------------------------------------------
    # Declarations
    # --------------------------------------------------------

    def _check_record(self, record: Record):
        # Every encoded value takes at least one byte
        if not record.fields:
            raise ValidationError('record declares no fields', {'record': record.name})
        self._check_fields(record.fields, record.name)
        self._check_no_callbacks(record.field_types(), record.name)

    def _check_enum(self, enum: Enum):
        if not enum.variants:
            raise ValidationError('enum declares no variants', {'enum': enum.name})
        self._check_unique(f'variant of {enum.name}', (v.name for v in enum.variants))
        for variant in enum.variants:
            self._check_identifier(variant.name)
            self._check_fields(variant.fields, f'{enum.name}.{variant.name}')
            if isinstance(enum, ErrorEnum) and enum.flat and variant.fields:
                raise ValidationError('flat error variants cannot carry fields',
                                      {'error': enum.name, 'variant': variant.name})
        self._check_no_callbacks(enum.field_types(), enum.name)

    def _check_object(self, obj: Object):
        primaries = [c for c in obj.constructors if c.is_primary]
        if len(primaries) > 1:
            raise ValidationError('object declares more than one primary constructor',
                                  {'object': obj.name})
        self._check_unique(f'constructor of {obj.name}', (c.name for c in obj.constructors))
        self._check_unique(f'method of {obj.name}', (m.name for m in obj.methods))

        for cons in obj.constructors:
            self._check_signature(cons, owner=obj)
        for method in obj.methods:
            self._check_signature(method, owner=obj)

        seen_kinds = {}
        for op in obj.special_operations:
            kind = op.kind
            if kind is None:
                # Unknown traits are skipped by the mapper
                continue
            if kind in seen_kinds:
                raise ValidationError('special operation declared more than once',
                                      {'object': obj.name, 'kind': kind.value,
                                       'traits': f'{seen_kinds[kind]},{op.trait}'})
            seen_kinds[kind] = op.trait
            method = obj.get_method(op.method) if op.method else None
            if method is None:
                raise ValidationError('special operation names an unknown method',
                                      {'object': obj.name, 'trait': op.trait, 'method': op.method})
            if not matches_trait_signature(kind, method, obj.name):
                raise ValidationError('special operation method has the wrong signature',
                                      {'object': obj.name, 'trait': op.trait, 'method': op.method})

    def _check_callback(self, callback: CallbackInterface):
        self._check_unique(f'method of {callback.name}', (m.name for m in callback.methods))
        for method in callback.methods:
            self._check_signature(method, owner=callback)
            for arg in method.arguments:
                for ref in arg.type.walk():
                    if isinstance(self.ci.resolve(ref), CallbackInterface):
                        raise ValidationError('callback methods cannot take callback interfaces',
                                              {'callback': callback.name, 'method': method.name,
                                               'argument': arg.name})
            if method.return_type is not None:
                target = self.ci.resolve(method.return_type)
                if isinstance(target, (Object, CallbackInterface)):
                    raise ValidationError('callback methods cannot return handles',
                                          {'callback': callback.name, 'method': method.name})

    # --------------------------------------------------------
    # Signatures and fields
    # --------------------------------------------------------

    def _check_signature(self, sig: Signature, owner: Optional[TypeDef]):
        where = f'{owner.name}.{sig.name}' if owner else sig.name
        self._check_identifier(sig.name)
        self._check_fields(sig.arguments, where)
        if sig.return_type is not None:
            self._check_type(sig.return_type, where)
            for ref in sig.return_type.walk():
                if isinstance(self.ci.resolve(ref), CallbackInterface):
                    raise ValidationError('callback interfaces can only be passed as arguments',
                                          {'in': where})
        if sig.throws is not None:
            target = self.ci.get_type(sig.throws)
            if not isinstance(target, ErrorEnum):
                raise ValidationError('throws must name an error enum',
                                      {'in': where, 'throws': sig.throws})

    def _check_fields(self, fields: Iterable[Field], where: str):
        fields = list(fields)
        self._check_unique(f'field of {where}', (f.name for f in fields))
        for f in fields:
            self._check_identifier(f.name)
            self._check_type(f.type, f'{where}.{f.name}')
            if f.has_default:
                self._check_default(f.default, f.type, f'{where}.{f.name}')

    def _check_type(self, type_ref: TypeRef, where: str):
        for ref in type_ref.walk():
            if isinstance(ref, NamedType) and self.ci.get_type(ref.name) is None:
                raise ValidationError('reference to undefined type',
                                      {'in': where, 'type': ref.name})
        for ref in type_ref.walk():
            if isinstance(ref, MapType) and not self._is_map_key(ref.key):
                raise ValidationError('map keys must be primitives or flat enums',
                                      {'in': where, 'key': str(ref.key)})

    def _is_map_key(self, type_ref: TypeRef) -> bool:
        if isinstance(type_ref, Primitive):
            return True
        target = self.ci.resolve(type_ref)
        return isinstance(target, Enum) and not isinstance(target, ErrorEnum) and target.is_flat

    def _check_no_callbacks(self, type_refs: Iterable[TypeRef], where: str):
        for type_ref in type_refs:
            for ref in type_ref.walk():
                if isinstance(self.ci.resolve(ref), CallbackInterface):
                    raise ValidationError('callback interfaces can only be passed as arguments',
                                          {'in': where})

    def _check_default(self, value: Any, type_ref: TypeRef, where: str):
        if not default_fits(value, type_ref, self.ci):
            raise ValidationError('default value does not fit its type',
                                  {'in': where, 'type': str(type_ref), 'default': repr(value)})

    # --------------------------------------------------------
    # Whole-model checks
    # --------------------------------------------------------

    def _check_value_cycles(self):
        """Records and enums may only recurse through Optional or Object"""
        edges: dict[str, set[str]] = {}
        for type_def in self.ci.types:
            if isinstance(type_def, (Record, Enum)):
                edges[type_def.name] = set()
                for ref in type_def.field_types():
                    edges[type_def.name].update(self._by_value_names(ref))

        visiting: set[str] = set()
        done: set[str] = set()

        def visit(name: str, path: list[str]):
            if name in done:
                return
            if name in visiting:
                cycle = path[path.index(name):] + [name]
                raise ValidationError('value type cycle without Optional or Object indirection',
                                      {'cycle': ' -> '.join(cycle)})
            visiting.add(name)
            for target in sorted(edges.get(name, ())):
                visit(target, path + [name])
            visiting.discard(name)
            done.add(name)

        for name in edges:
            visit(name, [])

    def _by_value_names(self, type_ref: TypeRef) -> set[str]:
        """Records/enums reachable by value, stopping at Optional"""
        if isinstance(type_ref, OptionalType):
            return set()
        if isinstance(type_ref, SequenceType):
            return self._by_value_names(type_ref.inner)
        if isinstance(type_ref, MapType):
            return self._by_value_names(type_ref.key) | self._by_value_names(type_ref.value)
        if isinstance(type_ref, NamedType):
            if isinstance(self.ci.get_type(type_ref.name), (Record, Enum)):
                return {type_ref.name}
        return set()

    def _check_symbols(self):
        from .scaffolding import Scaffolding
        Scaffolding.synthesize(self.ci)

    # --------------------------------------------------------
    # Helpers
    # --------------------------------------------------------

    @staticmethod
    def _check_identifier(name: str):
        if not isinstance(name, str) or not _IDENT_RE.match(name):
            raise ValidationError('name is not an identifier', {'name': repr(name)})

    @staticmethod
    def _check_unique(what: str, names: Iterable[str]):
        seen = set()
        for name in names:
            if name in seen:
                raise ValidationError(f'duplicate {what}', {'name': name})
            seen.add(name)


def default_fits(value: Any, type_ref: TypeRef, ci: InterfaceDefinition) -> bool:
    """Check that a literal default value can initialize a value of type_ref"""
    if isinstance(type_ref, OptionalType):
        return value is None or default_fits(value, type_ref.inner, ci)
    if isinstance(type_ref, SequenceType):
        return (isinstance(value, (list, tuple))
                and all(default_fits(v, type_ref.inner, ci) for v in value))
    if isinstance(type_ref, MapType):
        return (isinstance(value, dict)
                and all(default_fits(k, type_ref.key, ci) and default_fits(v, type_ref.value, ci)
                        for k, v in value.items()))
    if isinstance(type_ref, Primitive):
        kind = type_ref.kind
        if kind in INTEGER_KINDS:
            lo, hi = INTEGER_RANGES[kind]
            return isinstance(value, int) and not isinstance(value, bool) and lo <= value <= hi
        if kind in ('f32', 'f64'):
            return (isinstance(value, (int, float)) and not isinstance(value, bool)
                    and not math.isnan(value))
        if kind == 'bool':
            return isinstance(value, bool)
        if kind == 'string':
            return isinstance(value, str)
        if kind == 'bytes':
            return isinstance(value, (bytes, str))
        return False
    if isinstance(type_ref, NamedType):
        target = ci.get_type(type_ref.name)
        if isinstance(target, Enum) and not isinstance(target, ErrorEnum) and target.is_flat:
            return isinstance(value, str) and any(v.name == value for v in target.variants)
    return False
