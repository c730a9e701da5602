"""
IR (Intermediate Representation) module

Immutable in-memory model of an interface description: records, enums,
error enums, objects, callback interfaces and top-level functions.

Declared types live in one flat, ordered table on InterfaceDefinition.
Type references name a declaration and are resolved by lookup in that
table, so self-referential and cyclic type graphs never form ownership
edges between declarations.
"""

from dataclasses import dataclass, field
from enum import Enum as _PyEnum
from typing import Any, Iterator, Optional
import json
import re

from .errors import ValidationError


# ============================================================
# TYPE REFERENCES
# ============================================================

INTEGER_KINDS = ('u8', 'i8', 'u16', 'i16', 'u32', 'i32', 'u64', 'i64')
FLOAT_KINDS = ('f32', 'f64')
PRIMITIVE_KINDS = INTEGER_KINDS + FLOAT_KINDS + ('bool', 'string', 'bytes')

_IDENT_RE = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')
_GENERIC_RE = re.compile(r'^([A-Za-z_][A-Za-z0-9_]*)\s*<(.*)>$', re.DOTALL)


@dataclass(frozen=True)
class TypeRef:
    """Reference to a built-in or declared type. Abstract."""

    def walk(self) -> Iterator['TypeRef']:
        """Yield this reference and every nested reference, outermost first"""
        yield self


@dataclass(frozen=True)
class Primitive(TypeRef):
    """Fixed-width number, boolean, string or byte string"""
    kind: str

    def __str__(self) -> str:
        return self.kind

    @property
    def is_integer(self) -> bool:
        return self.kind in INTEGER_KINDS

    @property
    def is_float(self) -> bool:
        return self.kind in FLOAT_KINDS


@dataclass(frozen=True)
class NamedType(TypeRef):
    """Reference to a declaration in the interface's type table"""
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class OptionalType(TypeRef):
    inner: TypeRef

    def __str__(self) -> str:
        return f'Optional<{self.inner}>'

    def walk(self) -> Iterator[TypeRef]:
        yield self
        yield from self.inner.walk()


@dataclass(frozen=True)
class SequenceType(TypeRef):
    inner: TypeRef

    def __str__(self) -> str:
        return f'Sequence<{self.inner}>'

    def walk(self) -> Iterator[TypeRef]:
        yield self
        yield from self.inner.walk()


@dataclass(frozen=True)
class MapType(TypeRef):
    key: TypeRef
    value: TypeRef

    def __str__(self) -> str:
        return f'Map<{self.key},{self.value}>'

    def walk(self) -> Iterator[TypeRef]:
        yield self
        yield from self.key.walk()
        yield from self.value.walk()


def _split_generic_args(text: str) -> list[str]:
    """Split 'A, Map<B,C>' at top-level commas"""
    args = []
    depth = 0
    start = 0
    for i, ch in enumerate(text):
        if ch == '<':
            depth += 1
        elif ch == '>':
            depth -= 1
            if depth < 0:
                raise ValidationError('unbalanced type brackets', {'type': text})
        elif ch == ',' and depth == 0:
            args.append(text[start:i].strip())
            start = i + 1
    if depth != 0:
        raise ValidationError('unbalanced type brackets', {'type': text})
    args.append(text[start:].strip())
    return args


def parse_type(text: str) -> TypeRef:
    """Parse a type string into a TypeRef

    Examples:
        u64 -> Primitive('u64')
        Magic -> NamedType('Magic')
        Optional<string>, string? -> OptionalType(Primitive('string'))
        Map<string,Sequence<u8>> -> MapType(...)
    """
    if not isinstance(text, str):
        raise ValidationError('type must be a string', {'type': repr(text)})
    text = text.strip()
    if text.endswith('?'):
        return OptionalType(parse_type(text[:-1]))

    generic = _GENERIC_RE.match(text)
    if generic:
        name, inner = generic.group(1), generic.group(2)
        args = _split_generic_args(inner)
        if name == 'Optional' and len(args) == 1:
            return OptionalType(parse_type(args[0]))
        if name == 'Sequence' and len(args) == 1:
            return SequenceType(parse_type(args[0]))
        if name == 'Map' and len(args) == 2:
            return MapType(parse_type(args[0]), parse_type(args[1]))
        raise ValidationError('unknown generic type', {'type': text})

    if text in PRIMITIVE_KINDS:
        return Primitive(text)
    if _IDENT_RE.match(text):
        return NamedType(text)
    raise ValidationError('unparsable type', {'type': text})


# ============================================================
# SPECIAL OPERATIONS
# ============================================================

class OperationKind(_PyEnum):
    """Closed set of special operations an Object can implement"""
    STRING_CONVERT = 'StringConvert'
    DEBUG_CONVERT = 'DebugConvert'
    EQUALITY = 'Equality'
    HASHING = 'Hashing'
    ORDERING = 'Ordering'


# Trait names accepted in descriptions
TRAIT_KINDS = {
    'Display': OperationKind.STRING_CONVERT,
    'StringConvert': OperationKind.STRING_CONVERT,
    'Debug': OperationKind.DEBUG_CONVERT,
    'DebugConvert': OperationKind.DEBUG_CONVERT,
    'Eq': OperationKind.EQUALITY,
    'PartialEq': OperationKind.EQUALITY,
    'Equality': OperationKind.EQUALITY,
    'Hash': OperationKind.HASHING,
    'Hashing': OperationKind.HASHING,
    'Ord': OperationKind.ORDERING,
    'PartialOrd': OperationKind.ORDERING,
    'Ordering': OperationKind.ORDERING,
}

# Name of the method synthesized when a trait names no method
TRAIT_METHOD_NAMES = {
    OperationKind.STRING_CONVERT: 'trait_display',
    OperationKind.DEBUG_CONVERT: 'trait_debug',
    OperationKind.EQUALITY: 'trait_eq',
    OperationKind.HASHING: 'trait_hash',
    OperationKind.ORDERING: 'trait_cmp',
}

# Kinds whose method takes the other operand
BINARY_KINDS = {OperationKind.EQUALITY, OperationKind.ORDERING}

TRAIT_RETURN_TYPES = {
    OperationKind.STRING_CONVERT: Primitive('string'),
    OperationKind.DEBUG_CONVERT: Primitive('string'),
    OperationKind.EQUALITY: Primitive('bool'),
    OperationKind.HASHING: Primitive('u64'),
    OperationKind.ORDERING: Primitive('i8'),
}


@dataclass(frozen=True)
class SpecialOperation:
    """A trait implementation attached to an Object"""
    trait: str
    method: Optional[str] = None

    @property
    def kind(self) -> Optional[OperationKind]:
        """The operation kind, or None for an unrecognized trait"""
        return TRAIT_KINDS.get(self.trait)


# ============================================================
# DECLARATIONS
# ============================================================

class _NoDefault:
    """Marker for fields and arguments without a default value"""

    def __repr__(self) -> str:
        return 'NO_DEFAULT'


NO_DEFAULT: Any = _NoDefault()


@dataclass(frozen=True)
class Field:
    """Record field, variant field or callable argument"""
    name: str
    type: TypeRef
    default: Any = field(default=NO_DEFAULT, hash=False)

    @property
    def has_default(self) -> bool:
        return self.default is not NO_DEFAULT


Argument = Field


def _freeze_default(value: Any) -> Any:
    """Store list defaults as tuples so the model stays immutable"""
    if isinstance(value, list):
        return tuple(_freeze_default(v) for v in value)
    return value


@dataclass(frozen=True)
class Signature:
    """Name, parameters, return type and fallibility of a callable"""
    name: str
    arguments: tuple[Field, ...] = ()
    return_type: Optional[TypeRef] = None
    throws: Optional[str] = None
    fallible: bool = False
    docs: str = ''

    @property
    def is_fallible(self) -> bool:
        return self.fallible or self.throws is not None

    def types(self) -> Iterator[TypeRef]:
        """Every type reference used by the signature"""
        for arg in self.arguments:
            yield arg.type
        if self.return_type is not None:
            yield self.return_type


@dataclass(frozen=True)
class Function(Signature):
    """Top-level function"""


@dataclass(frozen=True)
class Constructor(Signature):
    """Object constructor; returns a fresh handle"""

    @property
    def is_primary(self) -> bool:
        return self.name == 'new'


@dataclass(frozen=True)
class Method(Signature):
    """Object or callback interface method

    `trait` is set on methods synthesized for a special operation.
    """
    trait: Optional[str] = None


@dataclass(frozen=True)
class TypeDef:
    """Declared type. Abstract."""
    name: str
    docs: str = ''

    kind = ''

    def field_types(self) -> Iterator[TypeRef]:
        """Type references stored by value inside this declaration"""
        return iter(())


@dataclass(frozen=True)
class Record(TypeDef):
    fields: tuple[Field, ...] = ()

    kind = 'record'

    def field_types(self) -> Iterator[TypeRef]:
        return (f.type for f in self.fields)


@dataclass(frozen=True)
class Variant:
    """Enum variant with zero or more fields"""
    name: str
    fields: tuple[Field, ...] = ()
    docs: str = ''

    @property
    def has_fields(self) -> bool:
        return bool(self.fields)


@dataclass(frozen=True)
class Enum(TypeDef):
    """Tagged union; discriminants are 1-based in declaration order"""
    variants: tuple[Variant, ...] = ()

    kind = 'enum'

    @property
    def is_flat(self) -> bool:
        return not any(v.has_fields for v in self.variants)

    def field_types(self) -> Iterator[TypeRef]:
        return (f.type for v in self.variants for f in v.fields)

    def variant_index(self, name: str) -> int:
        """1-based discriminant of a variant"""
        for i, variant in enumerate(self.variants):
            if variant.name == name:
                return i + 1
        raise KeyError(name)


@dataclass(frozen=True)
class ErrorEnum(Enum):
    """Enum raised by fallible callables

    Flat errors carry only a discriminant and a message; structured errors
    carry their variant fields.
    """
    flat: bool = False

    kind = 'error'

    @property
    def is_flat(self) -> bool:
        return self.flat


@dataclass(frozen=True)
class Object(TypeDef):
    """Reference type crossing the boundary as a handle"""
    constructors: tuple[Constructor, ...] = ()
    methods: tuple[Method, ...] = ()
    special_operations: tuple[SpecialOperation, ...] = ()

    kind = 'object'

    def primary_constructor(self) -> Optional[Constructor]:
        for cons in self.constructors:
            if cons.is_primary:
                return cons
        return None

    def alternate_constructors(self) -> list[Constructor]:
        return [c for c in self.constructors if not c.is_primary]

    def get_method(self, name: str) -> Optional[Method]:
        for method in self.methods:
            if method.name == name:
                return method
        return None

    def special_operation(self, kind: OperationKind) -> Optional[SpecialOperation]:
        for op in self.special_operations:
            if op.kind is kind:
                return op
        return None


@dataclass(frozen=True)
class CallbackInterface(TypeDef):
    """Methods implemented by the host and invoked from native code"""
    methods: tuple[Method, ...] = ()

    kind = 'callback'


def trait_method(kind: OperationKind, object_name: str, trait: str) -> Method:
    """Build the conventional method implementing a special operation"""
    arguments: tuple[Field, ...] = ()
    if kind in BINARY_KINDS:
        arguments = (Field('other', NamedType(object_name)),)
    return Method(
        name=TRAIT_METHOD_NAMES[kind],
        arguments=arguments,
        return_type=TRAIT_RETURN_TYPES[kind],
        trait=trait,
    )


def matches_trait_signature(kind: OperationKind, method: Method, object_name: str) -> bool:
    """Check that a declared method has the shape its operation kind needs"""
    if method.return_type != TRAIT_RETURN_TYPES[kind] or method.is_fallible:
        return False
    if kind in BINARY_KINDS:
        return (len(method.arguments) == 1
                and method.arguments[0].type == NamedType(object_name))
    return not method.arguments


# ============================================================
# INTERFACE DEFINITION
# ============================================================

@dataclass(frozen=True)
class InterfaceDefinition:
    """Root of the model: a flat table of declared types plus functions"""
    namespace: str
    types: tuple[TypeDef, ...] = ()
    functions: tuple[Function, ...] = ()
    docs: str = ''
    _index: dict = field(init=False, repr=False, compare=False, hash=False)

    def __post_init__(self):
        index = {}
        for i, type_def in enumerate(self.types):
            index.setdefault(type_def.name, i)
        object.__setattr__(self, '_index', index)

    @classmethod
    def load(cls, json_path: str) -> 'InterfaceDefinition':
        """Load and validate an interface description from a JSON file"""
        with open(json_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict, validate: bool = True) -> 'InterfaceDefinition':
        """Build (and by default validate) the model from a description dict"""
        ci = cls._from_dict(data)
        if validate:
            from .validate import validate as validate_interface
            validate_interface(ci)
        return ci

    @classmethod
    def _from_dict(cls, data: dict) -> 'InterfaceDefinition':
        """Internal: Parse dict into the model"""
        namespace = data.get('namespace', '')
        if not namespace or not _IDENT_RE.match(namespace):
            raise ValidationError('namespace must be an identifier', {'namespace': namespace})

        types: list[TypeDef] = []
        functions: list[Function] = []

        for decl in data.get('decls', []):
            try:
                cls._parse_decl(decl, types, functions)
            except KeyError as exc:
                raise ValidationError('declaration is missing a required key',
                                      {'key': exc.args[0], 'name': decl.get('name', '')}) from exc

        return cls(
            namespace=namespace,
            types=tuple(types),
            functions=tuple(functions),
            docs=data.get('docs', ''),
        )

    @classmethod
    def _parse_decl(cls, decl: dict, types: list, functions: list):
        """Parse one declaration into the type table or function list"""
        kind = decl.get('kind')

        if kind == 'record':
            types.append(Record(
                name=decl['name'],
                fields=cls._parse_fields(decl.get('fields', [])),
                docs=decl.get('docs', ''),
            ))

        elif kind == 'enum':
            types.append(Enum(
                name=decl['name'],
                variants=cls._parse_variants(decl.get('variants', [])),
                docs=decl.get('docs', ''),
            ))

        elif kind == 'error':
            types.append(ErrorEnum(
                name=decl['name'],
                variants=cls._parse_variants(decl.get('variants', [])),
                flat=bool(decl.get('flat', False)),
                docs=decl.get('docs', ''),
            ))

        elif kind == 'object':
            types.append(cls._parse_object(decl))

        elif kind == 'callback':
            types.append(CallbackInterface(
                name=decl['name'],
                methods=tuple(cls._parse_signature(Method, m) for m in decl.get('methods', [])),
                docs=decl.get('docs', ''),
            ))

        elif kind == 'func':
            functions.append(cls._parse_signature(Function, decl))

        else:
            raise ValidationError('unknown declaration kind',
                                  {'kind': kind, 'name': decl.get('name', '')})

    @staticmethod
    def _parse_fields(items: list) -> tuple[Field, ...]:
        """Parse field or argument declarations"""
        fields = []
        for f in items:
            fields.append(Field(
                name=f['name'],
                type=parse_type(f['type']),
                default=_freeze_default(f.get('default', NO_DEFAULT)),
            ))
        return tuple(fields)

    @classmethod
    def _parse_variants(cls, items: list) -> tuple[Variant, ...]:
        """Parse enum variants; bare strings are field-less variants"""
        variants = []
        for v in items:
            if isinstance(v, str):
                variants.append(Variant(name=v))
                continue
            variants.append(Variant(
                name=v['name'],
                fields=cls._parse_fields(v.get('fields', [])),
                docs=v.get('docs', ''),
            ))
        return tuple(variants)

    @classmethod
    def _parse_signature(cls, sig_cls: type, decl: dict) -> Signature:
        """Parse a function, method or constructor declaration"""
        returns = decl.get('returns')
        return sig_cls(
            name=decl['name'],
            arguments=cls._parse_fields(decl.get('args', [])),
            return_type=parse_type(returns) if returns else None,
            throws=decl.get('throws'),
            fallible=bool(decl.get('fallible', False)),
            docs=decl.get('docs', ''),
        )

    @classmethod
    def _parse_object(cls, decl: dict) -> Object:
        """Parse an object declaration, synthesizing trait methods"""
        name = decl['name']
        constructors = []
        for c in decl.get('constructors', []):
            c = dict(c)
            c.setdefault('name', 'new')
            c['returns'] = name
            constructors.append(cls._parse_signature(Constructor, c))

        methods = [cls._parse_signature(Method, m) for m in decl.get('methods', [])]
        special_ops = []
        for t in decl.get('traits', []):
            if isinstance(t, str):
                t = {'trait': t}
            trait = t['trait']
            method_name = t.get('method')
            kind = TRAIT_KINDS.get(trait)
            if method_name is None and kind is not None:
                synthesized = trait_method(kind, name, trait)
                methods.append(synthesized)
                method_name = synthesized.name
            special_ops.append(SpecialOperation(trait=trait, method=method_name))

        return Object(
            name=name,
            constructors=tuple(constructors),
            methods=tuple(methods),
            special_operations=tuple(special_ops),
            docs=decl.get('docs', ''),
        )

    # --------------------------------------------------------
    # Lookups
    # --------------------------------------------------------

    def get_type(self, name: str) -> Optional[TypeDef]:
        """Get a declaration by name"""
        i = self._index.get(name)
        return self.types[i] if i is not None else None

    def type_index(self, name: str) -> int:
        """Position of a declaration in the flat type table"""
        return self._index[name]

    def resolve(self, type_ref: TypeRef) -> Optional[TypeDef]:
        """Resolve a NamedType to its declaration"""
        if isinstance(type_ref, NamedType):
            return self.get_type(type_ref.name)
        return None

    def get_function(self, name: str) -> Optional[Function]:
        for func in self.functions:
            if func.name == name:
                return func
        return None

    def _of_kind(self, kind: type) -> list:
        return [t for t in self.types if type(t) is kind]

    def records(self) -> list[Record]:
        return self._of_kind(Record)

    def enums(self) -> list[Enum]:
        return self._of_kind(Enum)

    def errors(self) -> list[ErrorEnum]:
        return self._of_kind(ErrorEnum)

    def objects(self) -> list[Object]:
        return self._of_kind(Object)

    def callback_interfaces(self) -> list[CallbackInterface]:
        return self._of_kind(CallbackInterface)

    def iter_signatures(self) -> Iterator[tuple[Optional[TypeDef], Signature]]:
        """Every callable in the interface with its owning declaration"""
        for func in self.functions:
            yield None, func
        for type_def in self.types:
            if isinstance(type_def, Object):
                for cons in type_def.constructors:
                    yield type_def, cons
                for method in type_def.methods:
                    yield type_def, method
            elif isinstance(type_def, CallbackInterface):
                for method in type_def.methods:
                    yield type_def, method
