"""
Special operation mapping module

Maps the trait implementations declared on an Object onto each host
language's conventional override points. The mapping is a fixed table from
operation kind to hook; every hook body calls the Object's declared method
through its ordinary scaffolding function.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .ir import InterfaceDefinition, Object, Method, OperationKind
from .scaffolding import Scaffolding, FfiFunction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Hook:
    """One override point and how its result is derived from the method

    Adapters:
        call   - return the method's result
        negate - return `not result` (inequality from equality)
        lt/le/gt/ge - compare a three-way result against zero
        cmp    - return the three-way result as is
    """
    name: str
    adapter: str = 'call'


HOOK_TABLE: dict[str, dict[OperationKind, tuple[Hook, ...]]] = {
    'python': {
        OperationKind.STRING_CONVERT: (Hook('__str__'),),
        OperationKind.DEBUG_CONVERT: (Hook('__repr__'),),
        OperationKind.EQUALITY: (Hook('__eq__'), Hook('__ne__', 'negate')),
        OperationKind.HASHING: (Hook('__hash__'),),
        OperationKind.ORDERING: (
            Hook('__lt__', 'lt'), Hook('__le__', 'le'),
            Hook('__gt__', 'gt'), Hook('__ge__', 'ge'),
        ),
    },
    'lua': {
        OperationKind.STRING_CONVERT: (Hook('__tostring'),),
        OperationKind.EQUALITY: (Hook('__eq'),),
        OperationKind.ORDERING: (Hook('__lt', 'lt'), Hook('__le', 'le')),
    },
    'swift': {
        OperationKind.STRING_CONVERT: (Hook('description'),),
        OperationKind.DEBUG_CONVERT: (Hook('debugDescription'),),
        OperationKind.EQUALITY: (Hook('=='),),
        OperationKind.HASHING: (Hook('hash(into:)'),),
        OperationKind.ORDERING: (Hook('<', 'lt'),),
    },
    'kotlin': {
        OperationKind.STRING_CONVERT: (Hook('toString'),),
        OperationKind.EQUALITY: (Hook('equals'),),
        OperationKind.HASHING: (Hook('hashCode'),),
        OperationKind.ORDERING: (Hook('compareTo', 'cmp'),),
    },
    'ruby': {
        OperationKind.STRING_CONVERT: (Hook('to_s'),),
        OperationKind.DEBUG_CONVERT: (Hook('inspect'),),
        OperationKind.EQUALITY: (Hook('=='),),
        OperationKind.HASHING: (Hook('hash'),),
        OperationKind.ORDERING: (Hook('<=>', 'cmp'),),
    },
}


@dataclass(frozen=True)
class HookBinding:
    """A hook an emitter must install on one Object"""
    language: str
    kind: OperationKind
    hook: str
    adapter: str
    method: Method
    scaffolding: FfiFunction


class SpecialOperationMapper:
    """Produces hook bindings per Object per host language"""

    def __init__(self, ci: InterfaceDefinition, scaffolding: Optional[Scaffolding] = None):
        self.ci = ci
        self.scaffolding = scaffolding or Scaffolding.synthesize(ci)

    @staticmethod
    def languages() -> list[str]:
        return list(HOOK_TABLE)

    def map_object(self, obj: Object, language: str) -> list[HookBinding]:
        """Hook bindings for one Object in one language"""
        table = HOOK_TABLE.get(language)
        if table is None:
            raise KeyError(f'no hook table for language: {language}')

        bindings = []
        for op in obj.special_operations:
            kind = op.kind
            if kind is None:
                logger.warning('%s: skipping unknown special operation %s', obj.name, op.trait)
                continue
            hooks = table.get(kind)
            if not hooks:
                logger.warning('%s: %s has no hook for %s, skipping',
                               obj.name, language, kind.value)
                continue
            method = obj.get_method(op.method)
            ffi = self.scaffolding.method(obj.name, method.name)
            for hook in hooks:
                bindings.append(HookBinding(
                    language=language,
                    kind=kind,
                    hook=hook.name,
                    adapter=hook.adapter,
                    method=method,
                    scaffolding=ffi,
                ))
        return bindings

    def map_all(self, language: str) -> dict[str, list[HookBinding]]:
        """Hook bindings for every Object in one language, keyed by Object name"""
        return {obj.name: self.map_object(obj, language) for obj in self.ci.objects()}
