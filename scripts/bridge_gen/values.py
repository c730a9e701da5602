"""
Value classes module

Builds the Python classes that hold by-value interface types on either side
of the boundary:
    - Record      -> dataclass
    - flat Enum   -> enum.Enum valued by the 1-based discriminant
    - data Enum   -> base class plus one frozen dataclass per variant
    - ErrorEnum   -> DeclaredError subclass plus one subclass per variant
"""

import copy
import dataclasses
import enum
import inspect
from typing import Any, Callable, Optional

from .errors import DeclaredError
from .ir import (
    InterfaceDefinition, Field, TypeRef, NamedType, OptionalType, SequenceType, MapType,
    Primitive, Record, Enum, ErrorEnum,
)
from .types import TypeConverter


class _Default:
    """Parameter default marker; the real value is built per call"""

    def __repr__(self) -> str:
        return '<default>'


DEFAULT = _Default()


def keyword_only_from(fields: tuple[Field, ...]) -> int:
    """Index from which fields must be passed by keyword

    A field without a default that follows a defaulted one cannot stay
    positional, so it and everything after it become keyword-only.
    """
    seen_default = False
    for i, f in enumerate(fields):
        if f.has_default:
            seen_default = True
        elif seen_default:
            return i
    return len(fields)


def call_signature(fields: tuple[Field, ...]) -> inspect.Signature:
    """inspect.Signature for a callable taking `fields` as parameters"""
    split = keyword_only_from(fields)
    params = []
    for i, f in enumerate(fields):
        kind = (inspect.Parameter.KEYWORD_ONLY if i >= split
                else inspect.Parameter.POSITIONAL_OR_KEYWORD)
        default = DEFAULT if f.has_default else inspect.Parameter.empty
        params.append(inspect.Parameter(f.name, kind, default=default))
    return inspect.Signature(params)


def bind_values(signature: inspect.Signature, fields: tuple[Field, ...],
                args: tuple, kwargs: dict, default_for: Callable[[Field], Any]) -> list:
    """Bind call arguments to fields in declaration order, filling defaults"""
    bound = signature.bind(*args, **kwargs)
    values = []
    for f in fields:
        if f.name in bound.arguments:
            values.append(bound.arguments[f.name])
        else:
            values.append(default_for(f))
    return values


class ErrorVariant(DeclaredError):
    """Base of every generated error variant

    Flat variants take a message; structured variants take their fields.
    Equality is structural so lifted errors compare equal to the errors
    that were lowered.
    """

    _fields: tuple[Field, ...] = ()
    _signature: inspect.Signature = inspect.Signature()
    _flat = False
    _variant_index = 0
    _value_types: Optional['ValueTypes'] = None

    def __init__(self, *args, **kwargs):
        cls = type(self)
        if cls._flat:
            message = kwargs.pop('message', args[0] if args else '')
            if kwargs or len(args) > 1:
                raise TypeError(f'{cls.__qualname__} takes a single message')
            self._values: dict[str, Any] = {}
            super().__init__(str(message))
            return

        values = bind_values(cls._signature, cls._fields, args, kwargs,
                             cls._value_types.default_value)
        self._values = {f.name: v for f, v in zip(cls._fields, values)}
        rendered = ', '.join(f'{k}={v!r}' for k, v in self._values.items())
        super().__init__(f'{cls.__name__}({rendered})')
        for name, value in self._values.items():
            setattr(self, name, value)

    def __eq__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        if self._flat:
            return self.message == other.message
        return self._values == other._values

    __hash__ = DeclaredError.__hash__

    def __repr__(self) -> str:
        if self._flat:
            return f'{type(self).__qualname__}({self.message!r})'
        rendered = ', '.join(f'{k}={v!r}' for k, v in self._values.items())
        return f'{type(self).__qualname__}({rendered})'


class ValueTypes:
    """Python classes for every Record, Enum and ErrorEnum of an interface

    Classes are reachable as attributes named after their declaration:

        values = ValueTypes(ci)
        values.Point(x=1, y=2)
        values.Color.RED
        values.StoreError.NotFound(id=5)
    """

    def __init__(self, ci: InterfaceDefinition):
        self.ci = ci
        self._python_types = TypeConverter(ci, 'python')
        self._classes: dict[str, type] = {}

        for type_def in ci.types:
            if isinstance(type_def, ErrorEnum):
                self._classes[type_def.name] = self._make_error(type_def)
            elif isinstance(type_def, Enum):
                if type_def.is_flat:
                    self._classes[type_def.name] = self._make_flat_enum(type_def)
                else:
                    self._classes[type_def.name] = self._make_data_enum(type_def)
            elif isinstance(type_def, Record):
                self._classes[type_def.name] = self._make_record(type_def)

    def __getattr__(self, name: str) -> type:
        classes = self.__dict__.get('_classes', {})
        try:
            return classes[name]
        except KeyError:
            raise AttributeError(name) from None

    def __contains__(self, name: str) -> bool:
        return name in self._classes

    def __iter__(self):
        return iter(self._classes.items())

    def get(self, name: str) -> type:
        return self._classes[name]

    # --------------------------------------------------------
    # Defaults
    # --------------------------------------------------------

    def default_value(self, f: Field) -> Any:
        """Fresh host value for a field's declared default"""
        return self.host_value(f.default, f.type)

    def host_value(self, literal: Any, type_ref: TypeRef) -> Any:
        """Convert a literal from an interface description to a host value"""
        if literal is None:
            return None
        if isinstance(type_ref, OptionalType):
            return self.host_value(literal, type_ref.inner)
        if isinstance(type_ref, SequenceType):
            return [self.host_value(v, type_ref.inner) for v in literal]
        if isinstance(type_ref, MapType):
            return {self.host_value(k, type_ref.key): self.host_value(v, type_ref.value)
                    for k, v in literal.items()}
        if isinstance(type_ref, Primitive):
            if type_ref.kind == 'bytes' and isinstance(literal, str):
                return literal.encode('utf-8')
            if type_ref.is_float:
                return float(literal)
            return literal
        if isinstance(type_ref, NamedType) and type_ref.name in self._classes:
            cls = self._classes[type_ref.name]
            if isinstance(cls, enum.EnumMeta):
                return cls[literal]
        return copy.deepcopy(literal)

    # --------------------------------------------------------
    # Class builders
    # --------------------------------------------------------

    def _dataclass_fields(self, fields: tuple[Field, ...]) -> list:
        split = keyword_only_from(fields)
        result = []
        for i, f in enumerate(fields):
            options: dict[str, Any] = {'kw_only': i >= split}
            if f.has_default:
                options['default_factory'] = (lambda f=f: self.default_value(f))
            result.append((f.name, self._python_types.annotation(f.type),
                           dataclasses.field(**options)))
        return result

    def _make_record(self, record: Record) -> type:
        return dataclasses.make_dataclass(
            record.name,
            self._dataclass_fields(record.fields),
            namespace={'__doc__': record.docs or f'{record.name} record'},
        )

    def _make_flat_enum(self, decl: Enum) -> type:
        cls = enum.Enum(decl.name, [(v.name, i + 1) for i, v in enumerate(decl.variants)])
        if decl.docs:
            cls.__doc__ = decl.docs
        return cls

    def _make_data_enum(self, decl: Enum) -> type:
        base = type(decl.name, (), {
            '__doc__': decl.docs or f'{decl.name} enum',
            '__slots__': (),
        })
        variants = []
        for i, variant in enumerate(decl.variants):
            cls = dataclasses.make_dataclass(
                variant.name,
                self._dataclass_fields(variant.fields),
                bases=(base,),
                namespace={'_variant_index': i + 1, '__doc__': variant.docs or None},
                frozen=True,
            )
            cls.__qualname__ = f'{decl.name}.{variant.name}'
            setattr(base, variant.name, cls)
            variants.append(cls)
        base._variants = tuple(variants)
        return base

    def _make_error(self, decl: ErrorEnum) -> type:
        base = type(decl.name, (DeclaredError,), {
            '__doc__': decl.docs or f'{decl.name} error',
        })
        variants = []
        for i, variant in enumerate(decl.variants):
            cls = type(variant.name, (base, ErrorVariant), {
                '__doc__': variant.docs or None,
                '__qualname__': f'{decl.name}.{variant.name}',
                '_fields': variant.fields,
                '_signature': call_signature(variant.fields),
                '_flat': decl.is_flat,
                '_variant_index': i + 1,
                '_value_types': self,
            })
            setattr(base, variant.name, cls)
            variants.append(cls)
        base._variants = tuple(variants)
        return base
