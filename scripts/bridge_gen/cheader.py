"""
C header generation module

Declares the scaffolding layer a native library must export.
"""

from .callback import callback_methods
from .codegen import CodeGen, C_KEYWORDS, as_snake_case, safe_identifier
from .errors import CALL_SUCCESS, CALL_ERROR, CALL_UNEXPECTED_ERROR
from .ir import InterfaceDefinition
from .scaffolding import CONTRACT_VERSION, FfiFunction, FfiKind, FfiType, Scaffolding
from .types import TypeConverter


def c_parameters(fn: FfiFunction) -> list[str]:
    """C parameter declarations, including the trailing error slot"""
    params = []
    for arg in fn.arguments:
        name = safe_identifier(arg.name, C_KEYWORDS)
        if arg.type is FfiType.BUFFER:
            params.append(f'const uint8_t *{name}_data')
            params.append(f'int32_t {name}_len')
        else:
            params.append(f'{TypeConverter.c_type(arg.type)} {name}')
    params.append('BridgeCallStatus *out_status')
    return params


def c_declaration(fn: FfiFunction) -> str:
    return f'{TypeConverter.c_type(fn.return_type)} {fn.name}({", ".join(c_parameters(fn))})'


class HeaderGenerator:
    """Generates the scaffolding header for one interface"""

    def __init__(self, ci: InterfaceDefinition, scaffolding: Scaffolding):
        self.ci = ci
        self.scaffolding = scaffolding
        self.api = f'{ci.namespace.upper()}_API'

    def generate(self) -> str:
        gen = CodeGen()
        guard = f'{self.ci.namespace.upper()}_SCAFFOLDING_H'

        gen.line('/* machine generated, do not edit */')
        gen.line(f'#ifndef {guard}')
        gen.line(f'#define {guard}')
        gen.line()
        gen.line('#include <stdint.h>')
        gen.line()
        self._gen_api_macro(gen)
        self._gen_constants(gen)
        self._gen_types(gen)

        gen.line('#ifdef __cplusplus')
        gen.line('extern "C" {')
        gen.line('#endif')
        gen.line()

        self._gen_group('Buffers and contract', [
            self.scaffolding.contract_version,
            self.scaffolding.buffer_alloc,
            self.scaffolding.buffer_free,
        ], gen)

        functions = [fn for fn in self.scaffolding if fn.kind is FfiKind.FUNCTION]
        if functions:
            self._gen_group('Functions', functions, gen)

        for obj in self.ci.objects():
            self._gen_group(f'Object {obj.name}', self.scaffolding.for_object(obj.name), gen)

        for callback in self.ci.callback_interfaces():
            prefix = f'{self.ci.namespace.upper()}_{as_snake_case(callback.name).upper()}'
            gen.line(f'/* Callback interface {callback.name} */')
            gen.line(f'#define {prefix}_METHOD_FREE 0')
            for index, method in callback_methods(callback):
                gen.line(f'#define {prefix}_METHOD_{method.name.upper()} {index}')
            self._gen_decl(self.scaffolding.init_callback(callback.name), gen)
            gen.line()

        gen.line('#ifdef __cplusplus')
        gen.line('}')
        gen.line('#endif')
        gen.line()
        gen.line(f'#endif /* {guard} */')
        return gen.output()

    def _gen_api_macro(self, gen: CodeGen):
        gen.line(f'#ifndef {self.api}')
        gen.line('  #ifdef _WIN32')
        gen.line(f'    #ifdef {self.ci.namespace.upper()}_EXPORTS')
        gen.line(f'      #define {self.api} __declspec(dllexport)')
        gen.line('    #else')
        gen.line(f'      #define {self.api} __declspec(dllimport)')
        gen.line('    #endif')
        gen.line('  #else')
        gen.line(f'    #define {self.api}')
        gen.line('  #endif')
        gen.line('#endif')
        gen.line()

    def _gen_constants(self, gen: CodeGen):
        gen.line(f'#define {self.ci.namespace.upper()}_CONTRACT_VERSION {CONTRACT_VERSION}')
        gen.line()
        gen.line('#ifndef BRIDGE_CALL_SUCCESS')
        gen.line(f'#define BRIDGE_CALL_SUCCESS {CALL_SUCCESS}')
        gen.line(f'#define BRIDGE_CALL_ERROR {CALL_ERROR}')
        gen.line(f'#define BRIDGE_CALL_UNEXPECTED_ERROR {CALL_UNEXPECTED_ERROR}')
        gen.line('#endif')
        gen.line()

    def _gen_types(self, gen: CodeGen):
        gen.line('#ifndef BRIDGE_TYPES_DEFINED')
        gen.line('#define BRIDGE_TYPES_DEFINED')
        with gen.block('typedef struct BridgeBuffer {', '} BridgeBuffer;'):
            gen.line('int32_t capacity;')
            gen.line('int32_t len;')
            gen.line('uint8_t *data;')
        gen.line()
        with gen.block('typedef struct BridgeCallStatus {', '} BridgeCallStatus;'):
            gen.line('int8_t code;')
            gen.line('BridgeBuffer error_buf;')
        gen.line()
        gen.line('typedef int32_t (*BridgeForeignCallback)(uint64_t handle, int32_t method,')
        gen.line('                                         const uint8_t *args_data, int32_t args_len,')
        gen.line('                                         BridgeBuffer *out_return);')
        gen.line('#endif')
        gen.line()

    def _gen_group(self, title: str, functions: list[FfiFunction], gen: CodeGen):
        gen.line(f'/* {title} */')
        for fn in functions:
            self._gen_decl(fn, gen)
        gen.line()

    def _gen_decl(self, fn: FfiFunction, gen: CodeGen):
        gen.line(f'{self.api} {c_declaration(fn)};')
