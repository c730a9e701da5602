"""
Lua binding generation module

Generates a Lua 5.4 binding in two parts:
    - C glue (`<module>_ffi.c`) exposing each scaffolding symbol as a Lua
      function returning `result, 0` or `nil, code, error_bytes`
    - a pure Lua module (`<module>.lua`) that lowers and lifts values with
      string.pack/string.unpack, wraps objects in metatables and installs
      special operation hooks
"""

import logging
import math
from typing import Any, Optional

from .callback import callback_methods
from .codegen import CodeGen, LUA_KEYWORDS, C_KEYWORDS, as_snake_case, safe_identifier, c_string_literal
from .ir import (
    InterfaceDefinition, TypeRef, Primitive, NamedType, OptionalType, SequenceType, MapType,
    Record, Enum, ErrorEnum, Object, CallbackInterface, Signature, Field,
)
from .scaffolding import FfiFunction, FfiKind, FfiType, Scaffolding
from .special_ops import SpecialOperationMapper
from .types import TypeConverter
from .validate import INTEGER_RANGES

logger = logging.getLogger(__name__)

LUA_INT_FORMATS = {
    'u8': '>B',
    'i8': '>b',
    'u16': '>I2',
    'i16': '>i2',
    'u32': '>I4',
    'i32': '>i4',
    'u64': '>I8',
    'i64': '>i8',
}

LUA_FLOAT_FORMATS = {
    'f32': '>f',
    'f64': '>d',
}

# Lua integers are signed 64-bit
LUA_INT_BOUNDS = {
    'u64': ('0', 'math.maxinteger'),
    'i64': ('math.mininteger', 'math.maxinteger'),
}

LUA_RUNTIME = '''\
local Fault = {}
Fault.__index = Fault
Fault.__tostring = function(e)
    if e.variant ~= nil then
        return string.format('%s.%s: %s', e.type, e.variant, tostring(e.message))
    end
    return string.format('%s: %s', e.type, tostring(e.message))
end
M.Fault = Fault

local function fault(message)
    return setmetatable({ type = 'InternalFault', message = message }, Fault)
end

local function declared(type_name, variant)
    return setmetatable({ type = type_name, variant = variant }, Fault)
end

local Writer = {}
Writer.__index = Writer

function Writer.new()
    return setmetatable({ parts = {} }, Writer)
end

function Writer:pack(fmt, ...)
    self.parts[#self.parts + 1] = string.pack(fmt, ...)
end

function Writer:bytes(s)
    self:pack('>i4', #s)
    self.parts[#self.parts + 1] = s
end

function Writer:result()
    return table.concat(self.parts)
end

local Reader = {}
Reader.__index = Reader

function Reader.new(data)
    return setmetatable({ data = data or '', pos = 1 }, Reader)
end

function Reader:unpack(fmt)
    if self.pos + string.packsize(fmt) - 1 > #self.data then
        error(fault('read past end of buffer'), 0)
    end
    local value, pos = string.unpack(fmt, self.data, self.pos)
    self.pos = pos
    return value
end

function Reader:length()
    local n = self:unpack('>i4')
    if n < 0 then
        error(fault('negative length prefix'), 0)
    end
    return n
end

function Reader:count()
    local n = self:length()
    if n > #self.data - self.pos + 1 then
        error(fault('element count exceeds buffer'), 0)
    end
    return n
end

function Reader:bytes()
    local n = self:length()
    if self.pos + n - 1 > #self.data then
        error(fault('read past end of buffer'), 0)
    end
    local s = string.sub(self.data, self.pos, self.pos + n - 1)
    self.pos = self.pos + n
    return s
end

function Reader:finish()
    if self.pos <= #self.data then
        error(fault('junk remaining in buffer after lifting'), 0)
    end
end

local function discriminant(r, count, name)
    local index = r:unpack('>i4')
    if index < 1 or index > count then
        error(fault(string.format('unexpected %s discriminant %d', name, index)), 0)
    end
    return index
end

local function check_int(v, lo, hi)
    if math.type(v) ~= 'integer' then
        error(string.format('expected integer, got %s', type(v)), 3)
    end
    if v < lo or v > hi then
        error(string.format('%d is out of range', v), 3)
    end
    return v
end

local function check_number(v)
    if type(v) ~= 'number' then
        error(string.format('expected number, got %s', type(v)), 3)
    end
    return v
end

local function check_bool(v)
    if type(v) ~= 'boolean' then
        error(string.format('expected boolean, got %s', type(v)), 3)
    end
    return v
end

local function check_string(v)
    if type(v) ~= 'string' then
        error(string.format('expected string, got %s', type(v)), 3)
    end
    return v
end

local function default(v, d)
    if v == nil then
        return d
    end
    return v
end

local W, R = {}, {}

local function lower(write, v)
    local w = Writer.new()
    write(w, v)
    return w:result()
end

local function lift(read, data)
    local r = Reader.new(data)
    local v = read(r)
    r:finish()
    return v
end

local function check(result, code, err, read_error)
    if code == 0 then
        return result
    end
    if code == 1 and read_error ~= nil then
        error(lift(read_error, err), 0)
    end
    local message = 'unknown error'
    if err ~= nil then
        local ok, lifted = pcall(lift, R['string'], err)
        if ok then
            message = lifted
        end
    end
    error(fault(message), 0)
end

local callbacks = {}
'''


def type_refs_used(ci: InterfaceDefinition) -> list[TypeRef]:
    """Every type reference reachable from the interface, in first-seen order"""
    seen: dict[TypeRef, None] = {}

    def add(type_ref: TypeRef):
        for ref in type_ref.walk():
            if ref in seen:
                continue
            seen[ref] = None
            decl = ci.resolve(ref)
            if decl is not None:
                for field_type in decl.field_types():
                    add(field_type)

    add(Primitive('string'))
    for type_def in ci.types:
        add(NamedType(type_def.name))
    for _, sig in ci.iter_signatures():
        for type_ref in sig.types():
            add(type_ref)
    return list(seen)


def lua_literal(value: Any, type_ref: TypeRef, ci: InterfaceDefinition) -> str:
    """Lua expression for a default value from an interface description"""
    if value is None:
        return 'nil'
    if isinstance(type_ref, OptionalType):
        return lua_literal(value, type_ref.inner, ci)
    if isinstance(type_ref, SequenceType):
        return '{' + ', '.join(lua_literal(v, type_ref.inner, ci) for v in value) + '}'
    if isinstance(type_ref, MapType):
        items = ', '.join(f'[{lua_literal(k, type_ref.key, ci)}] = {lua_literal(v, type_ref.value, ci)}'
                          for k, v in value.items())
        return '{' + items + '}'
    if isinstance(type_ref, NamedType):
        decl = ci.resolve(type_ref)
        if isinstance(decl, Enum):
            return str(decl.variant_index(value))
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float) and math.isinf(value):
        return 'math.huge' if value > 0 else '-math.huge'
    if isinstance(value, (int, float)):
        return repr(value)
    return c_string_literal(str(value))


class LuaGenerator:
    """Generates C glue and a Lua module for one interface"""

    def __init__(self, ci: InterfaceDefinition, scaffolding: Scaffolding,
                 mapper: Optional[SpecialOperationMapper] = None,
                 module_name: str = '', ignores: Optional[set[str]] = None):
        self.ci = ci
        self.scaffolding = scaffolding
        self.mapper = mapper or SpecialOperationMapper(ci, scaffolding)
        self.module_name = module_name or ci.namespace
        self.ffi_name = f'{self.module_name}_ffi'
        self.ignores = ignores or set()

    def _ignored(self, name: str, symbol: str = '') -> bool:
        return name in self.ignores or symbol in self.ignores

    # ============================================================
    # C glue
    # ============================================================

    def generate_glue(self) -> str:
        gen = CodeGen()
        ns = self.ci.namespace

        gen.line('/* machine generated, do not edit */')
        gen.line('#include <lua.h>')
        gen.line('#include <lauxlib.h>')
        gen.line('#include <lualib.h>')
        gen.line('#include <string.h>')
        gen.line()
        gen.line(f'#include "{ns}_scaffolding.h"')
        gen.line()

        with gen.block('static void push_buffer(lua_State *L, BridgeBuffer buf) {'):
            gen.line('BridgeCallStatus ignored = {0};')
            with gen.block('if (buf.data == NULL) {'):
                gen.line('lua_pushliteral(L, "");')
                gen.line('return;')
            gen.line('lua_pushlstring(L, (const char *)buf.data, (size_t)buf.len);')
            gen.line(f'{ns}_buffer_free(buf, &ignored);')
        gen.line()

        with gen.block('static int push_failure(lua_State *L, BridgeCallStatus *status) {'):
            gen.line('lua_pushnil(L);')
            gen.line('lua_pushinteger(L, status->code);')
            with gen.block('if (status->error_buf.data != NULL) {'):
                gen.line('push_buffer(L, status->error_buf);')
            with gen.block('else {'):
                gen.line('lua_pushnil(L);')
            gen.line('return 3;')
        gen.line()

        exported = []
        for fn in self.scaffolding:
            if fn.kind in (FfiKind.BUFFER_ALLOC, FfiKind.BUFFER_FREE):
                continue
            if fn.kind is FfiKind.INIT_CALLBACK:
                self._gen_callback_glue(fn, gen)
            else:
                self._gen_glue_function(fn, gen)
            exported.append(fn)

        gen.line(f'static const luaL_Reg {self.ffi_name}_funcs[] = {{')
        gen.indent()
        for fn in exported:
            gen.line(f'{{"{fn.name}", l_{fn.name}}},')
        gen.line('{NULL, NULL}')
        gen.dedent()
        gen.line('};')
        gen.line()

        with gen.block(f'{ns.upper()}_API int luaopen_{self.ffi_name}(lua_State *L) {{'):
            gen.line(f'luaL_newlib(L, {self.ffi_name}_funcs);')
            gen.line('return 1;')
        return gen.output()

    def _gen_glue_function(self, fn: FfiFunction, gen: CodeGen):
        with gen.block(f'static int l_{fn.name}(lua_State *L) {{'):
            gen.line('BridgeCallStatus status = {0};')
            call_args = []
            for i, arg in enumerate(fn.arguments, start=1):
                name = safe_identifier(arg.name, C_KEYWORDS)
                if arg.type is FfiType.BUFFER:
                    gen.line(f'size_t {name}_len = 0;')
                    gen.line(f'const char *{name}_data = luaL_checklstring(L, {i}, &{name}_len);')
                    call_args += [f'(const uint8_t *){name}_data', f'(int32_t){name}_len']
                elif arg.type in (FfiType.FLOAT32, FfiType.FLOAT64):
                    ctype = TypeConverter.c_type(arg.type)
                    gen.line(f'{ctype} {name} = ({ctype})luaL_checknumber(L, {i});')
                    call_args.append(name)
                else:
                    ctype = TypeConverter.c_type(arg.type)
                    gen.line(f'{ctype} {name} = ({ctype})luaL_checkinteger(L, {i});')
                    call_args.append(name)
            call_args.append('&status')

            call = f'{fn.name}({", ".join(call_args)})'
            if fn.return_type is None:
                gen.line(f'{call};')
            else:
                gen.line(f'{TypeConverter.c_type(fn.return_type)} result = {call};')

            with gen.block('if (status.code != BRIDGE_CALL_SUCCESS) {'):
                gen.line('return push_failure(L, &status);')

            if fn.return_type is None:
                gen.line('lua_pushnil(L);')
            elif fn.return_type is FfiType.BUFFER:
                gen.line('push_buffer(L, result);')
            elif fn.return_type in (FfiType.FLOAT32, FfiType.FLOAT64):
                gen.line('lua_pushnumber(L, (lua_Number)result);')
            else:
                gen.line('lua_pushinteger(L, (lua_Integer)result);')
            gen.line('lua_pushinteger(L, BRIDGE_CALL_SUCCESS);')
            gen.line('return 2;')
        gen.line()

    def _gen_callback_glue(self, fn: FfiFunction, gen: CodeGen):
        """Trampoline forwarding native invocations to a Lua dispatch function"""
        name = as_snake_case(fn.owner)
        ns = self.ci.namespace

        gen.line(f'static lua_State *g_{name}_L = NULL;')
        gen.line(f'static int g_{name}_ref = LUA_NOREF;')
        gen.line()

        gen.line(f'static int32_t trampoline_{name}(uint64_t handle, int32_t method,')
        gen.line('                                 const uint8_t *args_data, int32_t args_len,')
        gen.line('                                 BridgeBuffer *out_return) {')
        gen.indent()
        gen.line(f'if (g_{name}_ref == LUA_NOREF) return BRIDGE_CALL_UNEXPECTED_ERROR;')
        gen.line(f'lua_State *L = g_{name}_L;')
        gen.line(f'lua_rawgeti(L, LUA_REGISTRYINDEX, g_{name}_ref);')
        gen.line('lua_pushinteger(L, (lua_Integer)handle);')
        gen.line('lua_pushinteger(L, method);')
        gen.line('lua_pushlstring(L, (const char *)args_data, (size_t)args_len);')
        with gen.block('if (lua_pcall(L, 3, 2, 0) != LUA_OK) {'):
            gen.line('lua_pop(L, 1);')
            gen.line('return BRIDGE_CALL_UNEXPECTED_ERROR;')
        gen.line('int32_t code = (int32_t)lua_tointeger(L, -2);')
        gen.line('size_t ret_len = 0;')
        gen.line('const char *ret = lua_tolstring(L, -1, &ret_len);')
        with gen.block('if (ret != NULL && ret_len > 0) {'):
            gen.line('BridgeCallStatus alloc_status = {0};')
            gen.line(f'*out_return = {ns}_buffer_alloc((int32_t)ret_len, &alloc_status);')
            gen.line('memcpy(out_return->data, ret, ret_len);')
            gen.line('out_return->len = (int32_t)ret_len;')
        gen.line('lua_pop(L, 2);')
        gen.line('return code;')
        gen.dedent()
        gen.line('}')
        gen.line()

        with gen.block(f'static int l_{fn.name}(lua_State *L) {{'):
            gen.line('BridgeCallStatus status = {0};')
            gen.line('luaL_checktype(L, 1, LUA_TFUNCTION);')
            gen.line(f'if (g_{name}_ref != LUA_NOREF) luaL_unref(L, LUA_REGISTRYINDEX, g_{name}_ref);')
            gen.line('lua_pushvalue(L, 1);')
            gen.line(f'g_{name}_ref = luaL_ref(L, LUA_REGISTRYINDEX);')
            gen.line(f'g_{name}_L = L;')
            gen.line(f'{fn.name}(trampoline_{name}, &status);')
            with gen.block('if (status.code != BRIDGE_CALL_SUCCESS) {'):
                gen.line('return push_failure(L, &status);')
            gen.line('lua_pushnil(L);')
            gen.line('lua_pushinteger(L, BRIDGE_CALL_SUCCESS);')
            gen.line('return 2;')
        gen.line()

    # ============================================================
    # Lua module
    # ============================================================

    def generate_module(self) -> str:
        gen = CodeGen()
        gen.line('-- machine generated, do not edit')
        gen.line(f'local ffi = require({c_string_literal(self.ffi_name)})')
        gen.line()
        gen.line('local M = {}')
        gen.line()
        for line in LUA_RUNTIME.splitlines():
            gen.line(line)
        gen.line()

        for obj in self.ci.objects():
            gen.line(f'local {obj.name} = {{}}')
            gen.line(f'{obj.name}.__index = {obj.name}')
            gen.line(f'{obj.name}.__name = {c_string_literal(f"{self.module_name}.{obj.name}")}')
            gen.line(f'M.{obj.name} = {obj.name}')
        gen.line()

        for enum in self.ci.enums():
            if enum.is_flat:
                self._gen_flat_enum_table(enum, gen)

        type_refs = type_refs_used(self.ci)
        logger.debug('%s: %d converters', self.module_name, len(type_refs))
        for type_ref in type_refs:
            self._gen_converter(type_ref, gen)

        for callback in self.ci.callback_interfaces():
            self._gen_callback(callback, gen)

        for obj in self.ci.objects():
            self._gen_object(obj, gen)

        for func in self.ci.functions:
            fn = self.scaffolding.function(func.name)
            if self._ignored(func.name, fn.name):
                continue
            name = safe_identifier(func.name, LUA_KEYWORDS)
            self._gen_callable(f'function M.{name}', func, fn, gen)

        gen.line('return M')
        return gen.output()

    def _gen_flat_enum_table(self, enum: Enum, gen: CodeGen):
        gen.line(f'M.{enum.name} = {{')
        gen.indent()
        for i, variant in enumerate(enum.variants, start=1):
            gen.line(f'{variant.name} = {i},')
        gen.dedent()
        gen.line('}')
        gen.line()

    # --------------------------------------------------------
    # Converters
    # --------------------------------------------------------

    def _gen_converter(self, type_ref: TypeRef, gen: CodeGen):
        key = c_string_literal(str(type_ref))

        if isinstance(type_ref, Primitive):
            self._gen_primitive(type_ref, key, gen)
        elif isinstance(type_ref, OptionalType):
            inner = c_string_literal(str(type_ref.inner))
            with gen.block(f'W[{key}] = function(w, v)', 'end'):
                with gen.block('if v == nil then', 'else'):
                    gen.line("w:pack('>B', 0)")
                gen.indent()
                gen.line("w:pack('>B', 1)")
                gen.line(f'W[{inner}](w, v)')
                gen.dedent()
                gen.line('end')
            with gen.block(f'R[{key}] = function(r)', 'end'):
                gen.line("local flag = r:unpack('>B')")
                gen.line('if flag == 0 then return nil end')
                gen.line("if flag ~= 1 then error(fault('unexpected presence byte'), 0) end")
                gen.line(f'return R[{inner}](r)')
        elif isinstance(type_ref, SequenceType):
            inner = c_string_literal(str(type_ref.inner))
            with gen.block(f'W[{key}] = function(w, v)', 'end'):
                gen.line("w:pack('>i4', #v)")
                gen.line(f'for i = 1, #v do W[{inner}](w, v[i]) end')
            with gen.block(f'R[{key}] = function(r)', 'end'):
                gen.line('local t = {}')
                gen.line(f'for i = 1, r:count() do t[i] = R[{inner}](r) end')
                gen.line('return t')
        elif isinstance(type_ref, MapType):
            k = c_string_literal(str(type_ref.key))
            v = c_string_literal(str(type_ref.value))
            with gen.block(f'W[{key}] = function(w, v)', 'end'):
                gen.line('local n = 0')
                gen.line('for _ in pairs(v) do n = n + 1 end')
                gen.line("w:pack('>i4', n)")
                gen.line(f'for k, x in pairs(v) do W[{k}](w, k) W[{v}](w, x) end')
            with gen.block(f'R[{key}] = function(r)', 'end'):
                gen.line('local t = {}')
                gen.line(f'for _ = 1, r:count() do local k = R[{k}](r) t[k] = R[{v}](r) end')
                gen.line('return t')
        else:
            self._gen_named(type_ref, key, gen)
        gen.line()

    def _gen_primitive(self, type_ref: Primitive, key: str, gen: CodeGen):
        kind = type_ref.kind
        if kind in LUA_INT_FORMATS:
            fmt = LUA_INT_FORMATS[kind]
            lo, hi = LUA_INT_BOUNDS.get(kind, tuple(str(b) for b in INTEGER_RANGES[kind]))
            gen.line(f"W[{key}] = function(w, v) w:pack('{fmt}', check_int(v, {lo}, {hi})) end")
            gen.line(f"R[{key}] = function(r) return r:unpack('{fmt}') end")
        elif kind in LUA_FLOAT_FORMATS:
            fmt = LUA_FLOAT_FORMATS[kind]
            gen.line(f"W[{key}] = function(w, v) w:pack('{fmt}', check_number(v)) end")
            gen.line(f"R[{key}] = function(r) return r:unpack('{fmt}') end")
        elif kind == 'bool':
            gen.line(f"W[{key}] = function(w, v) w:pack('>B', check_bool(v) and 1 or 0) end")
            with gen.block(f'R[{key}] = function(r)', 'end'):
                gen.line("local b = r:unpack('>B')")
                gen.line("if b > 1 then error(fault('unexpected byte for boolean'), 0) end")
                gen.line('return b == 1')
        elif kind == 'string':
            gen.line(f'W[{key}] = function(w, v) w:bytes(check_string(v)) end')
            with gen.block(f'R[{key}] = function(r)', 'end'):
                gen.line('local s = r:bytes()')
                gen.line("if utf8.len(s) == nil then error(fault('string is not valid UTF-8'), 0) end")
                gen.line('return s')
        else:
            gen.line(f'W[{key}] = function(w, v) w:bytes(check_string(v)) end')
            gen.line(f'R[{key}] = function(r) return r:bytes() end')

    def _gen_named(self, type_ref: NamedType, key: str, gen: CodeGen):
        decl = self.ci.resolve(type_ref)
        if isinstance(decl, Object):
            gen.line(f"W[{key}] = function(w, v) w:pack('>I8', {decl.name}._borrow(v)) end")
            gen.line(f"R[{key}] = function(r) return {decl.name}._wrap(r:unpack('>I8')) end")
        elif isinstance(decl, CallbackInterface):
            gen.line(f"W[{key}] = function(w, v) w:pack('>I8', callbacks.{decl.name}.register(v)) end")
        elif isinstance(decl, Record):
            with gen.block(f'W[{key}] = function(w, v)', 'end'):
                for f in decl.fields:
                    gen.line(f'W[{c_string_literal(str(f.type))}](w, {self._field_value(f)})')
            with gen.block(f'R[{key}] = function(r)', 'end'):
                gen.line('local v = {}')
                for f in decl.fields:
                    gen.line(f'v.{f.name} = R[{c_string_literal(str(f.type))}](r)')
                gen.line('return v')
        elif isinstance(decl, Enum) and decl.is_flat and not isinstance(decl, ErrorEnum):
            count = len(decl.variants)
            gen.line(f"W[{key}] = function(w, v) w:pack('>i4', check_int(v, 1, {count})) end")
            gen.line(f"R[{key}] = function(r) return discriminant(r, {count}, '{decl.name}') end")
        elif isinstance(decl, Enum):
            self._gen_tagged(decl, key, gen)

    def _field_value(self, f: Field) -> str:
        if f.has_default:
            return f'default(v.{f.name}, {lua_literal(f.default, f.type, self.ci)})'
        return f'v.{f.name}'

    def _gen_tagged(self, decl: Enum, key: str, gen: CodeGen):
        """Data enums are tables tagged by `tag`; errors by `variant`"""
        is_error = isinstance(decl, ErrorEnum)
        tag = 'variant' if is_error else 'tag'

        with gen.block(f'W[{key}] = function(w, v)', 'end'):
            for i, variant in enumerate(decl.variants, start=1):
                keyword = 'if' if i == 1 else 'elseif'
                gen.line(f"{keyword} v.{tag} == '{variant.name}' then")
                gen.indent()
                gen.line(f"w:pack('>i4', {i})")
                if is_error and decl.is_flat:
                    gen.line("W['string'](w, tostring(v.message or ''))")
                for f in variant.fields:
                    gen.line(f'W[{c_string_literal(str(f.type))}](w, {self._field_value(f)})')
                gen.dedent()
            gen.line('else')
            gen.indent()
            gen.line(f"error(string.format('invalid {decl.name} {tag} %s', tostring(v.{tag})), 3)")
            gen.dedent()
            gen.line('end')

        with gen.block(f'R[{key}] = function(r)', 'end'):
            gen.line(f"local index = discriminant(r, {len(decl.variants)}, '{decl.name}')")
            for i, variant in enumerate(decl.variants, start=1):
                keyword = 'if' if i == 1 else 'elseif'
                gen.line(f'{keyword} index == {i} then')
                gen.indent()
                if is_error:
                    gen.line(f"local v = declared('{decl.name}', '{variant.name}')")
                else:
                    gen.line(f"local v = {{ tag = '{variant.name}' }}")
                if is_error and decl.is_flat:
                    gen.line("v.message = R['string'](r)")
                for f in variant.fields:
                    gen.line(f'v.{f.name} = R[{c_string_literal(str(f.type))}](r)')
                gen.line('return v')
                gen.dedent()
            gen.line('end')

    # --------------------------------------------------------
    # Calls
    # --------------------------------------------------------

    def _scalar_arg(self, fn_arg_type: FfiType, type_ref: TypeRef, name: str) -> str:
        """Lua expression passing one argument to the glue function"""
        if fn_arg_type is FfiType.BUFFER:
            return f'lower(W[{c_string_literal(str(type_ref))}], {name})'
        if isinstance(type_ref, Primitive):
            if type_ref.kind == 'bool':
                return f'(check_bool({name}) and 1 or 0)'
            if type_ref.is_float:
                return f'check_number({name})'
            lo, hi = LUA_INT_BOUNDS.get(type_ref.kind, INTEGER_RANGES.get(type_ref.kind, (0, 0)))
            return f'check_int({name}, {lo}, {hi})'
        decl = self.ci.resolve(type_ref)
        if isinstance(decl, CallbackInterface):
            return f'callbacks.{decl.name}.register({name})'
        return f'{decl.name}._borrow({name})'

    def _return_expr(self, fn: FfiFunction, value: str) -> Optional[str]:
        if fn.return_source is None:
            return None
        if fn.return_type is FfiType.BUFFER:
            return f'lift(R[{c_string_literal(str(fn.return_source))}], {value})'
        if isinstance(fn.return_source, Primitive) and fn.return_source.kind == 'bool':
            return f'{value} ~= 0'
        decl = self.ci.resolve(fn.return_source)
        if isinstance(decl, Object):
            return f'{decl.name}._wrap({value})'
        return value

    def _gen_callable(self, header: str, sig: Signature, fn: FfiFunction, gen: CodeGen,
                      receiver: Optional[str] = None, wrap: Optional[str] = None):
        args = [safe_identifier(a.name, LUA_KEYWORDS) for a in sig.arguments]
        params = ([receiver] if receiver is not None else []) + args
        self._gen_doc(sig, gen)
        with gen.block(f'{header}({", ".join(params)})', 'end'):
            for a, name in zip(sig.arguments, args):
                if a.has_default:
                    gen.line(f'if {name} == nil then {name} = {lua_literal(a.default, a.type, self.ci)} end')

            call_args = []
            if receiver is not None:
                call_args.append(f'{fn.owner}._borrow({receiver})')
            declared = fn.arguments[1:] if fn.kind is FfiKind.METHOD else fn.arguments
            for ffi_arg, a, name in zip(declared, sig.arguments, args):
                call_args.append(self._scalar_arg(ffi_arg.type, a.type, name))

            gen.line(f'local result, code, err = ffi.{fn.name}({", ".join(call_args)})')
            if sig.throws:
                gen.line(f'result = check(result, code, err, R[{c_string_literal(sig.throws)}])')
            else:
                gen.line('result = check(result, code, err)')
            if wrap is not None:
                gen.line(f'return {wrap}(result)')
            else:
                expr = self._return_expr(fn, 'result')
                if expr is not None:
                    gen.line(f'return {expr}')
        gen.line()

    def _gen_doc(self, sig: Signature, gen: CodeGen):
        if sig.docs:
            for line in sig.docs.splitlines():
                gen.line(f'-- {line}'.rstrip())

    # --------------------------------------------------------
    # Objects
    # --------------------------------------------------------

    def _gen_object(self, obj: Object, gen: CodeGen):
        name = obj.name
        free = self.scaffolding.free(name)
        clone = self.scaffolding.clone(name)

        gen.line(f'-- {name}')
        with gen.block(f'function {name}._wrap(handle)', 'end'):
            gen.line("if handle == 0 then error(fault('raw handle value was null'), 0) end")
            gen.line(f'return setmetatable({{ _handle = handle }}, {name})')
        gen.line()
        with gen.block(f'function {name}._borrow(self)', 'end'):
            gen.line(f'if getmetatable(self) ~= {name} then')
            gen.line(f"    error(string.format('expected {name}, got %s', type(self)), 3)")
            gen.line('end')
            gen.line("local handle = rawget(self, '_handle')")
            gen.line(f"if handle == nil then error('{name} object has been closed', 3) end")
            gen.line('return handle')
        gen.line()
        with gen.block(f'function {name}.close(self)', 'end'):
            gen.line("local handle = rawget(self, '_handle')")
            gen.line('if handle == nil then return end')
            gen.line("rawset(self, '_handle', nil)")
            gen.line(f'check(ffi.{free.name}(handle))')
        gen.line(f'{name}.__gc = {name}.close')
        gen.line(f'{name}.__close = {name}.close')
        gen.line()
        with gen.block(f'function {name}.clone(self)', 'end'):
            gen.line(f'return {name}._wrap(check(ffi.{clone.name}({name}._borrow(self))))')
        gen.line()

        for cons in obj.constructors:
            fn = self.scaffolding.constructor(name, cons.name)
            if self._ignored(cons.name, fn.name):
                continue
            lua_name = safe_identifier(cons.name, LUA_KEYWORDS)
            self._gen_callable(f'function {name}.{lua_name}', cons, fn, gen, wrap=f'{name}._wrap')

        for method in obj.methods:
            fn = self.scaffolding.method(name, method.name)
            if self._ignored(method.name, fn.name):
                continue
            lua_name = safe_identifier(method.name, LUA_KEYWORDS)
            self._gen_callable(f'function {name}.{lua_name}', method, fn, gen, receiver='self')

        for binding in self.mapper.map_object(obj, 'lua'):
            method = safe_identifier(binding.method.name, LUA_KEYWORDS)
            if binding.method.arguments:
                with gen.block(f'{name}.{binding.hook} = function(a, b)', 'end'):
                    gen.line(f'if getmetatable(a) ~= {name} or getmetatable(b) ~= {name} then return false end')
                    if binding.adapter == 'lt':
                        gen.line(f'return a:{method}(b) < 0')
                    elif binding.adapter == 'le':
                        gen.line(f'return a:{method}(b) <= 0')
                    else:
                        gen.line(f'return a:{method}(b)')
            else:
                gen.line(f'{name}.{binding.hook} = function(self) return self:{method}() end')
        gen.line()

    # --------------------------------------------------------
    # Callback interfaces
    # --------------------------------------------------------

    def _gen_callback(self, callback: CallbackInterface, gen: CodeGen):
        name = callback.name
        init = self.scaffolding.init_callback(name)

        gen.line(f'-- {name}')
        gen.line(f'callbacks.{name} = {{ next = 1, items = {{}} }}')
        with gen.block(f'function callbacks.{name}.register(impl)', 'end'):
            gen.line(f'local arena = callbacks.{name}')
            gen.line('local handle = arena.next')
            gen.line('arena.next = handle + 1')
            gen.line('arena.items[handle] = impl')
            gen.line('return handle')
        gen.line()

        with gen.block(f'local function dispatch_{name}(handle, method, args)', 'end'):
            gen.line(f'local arena = callbacks.{name}')
            with gen.block('if method == 0 then', 'end'):
                gen.line('arena.items[handle] = nil')
                gen.line("return 0, ''")
            gen.line('local impl = arena.items[handle]')
            gen.line("if impl == nil then return 2, lower(W['string'], 'unknown callback handle') end")
            for index, method in callback_methods(callback):
                lua_method = safe_identifier(method.name, LUA_KEYWORDS)
                with gen.block(f'if method == {index} then', 'end'):
                    with gen.block('local ok, ret = pcall(function()', 'end)'):
                        gen.line('local r = Reader.new(args)')
                        names = []
                        for i, arg in enumerate(method.arguments):
                            names.append(f'a{i}')
                            gen.line(f'local a{i} = R[{c_string_literal(str(arg.type))}](r)')
                        gen.line('r:finish()')
                        call = f'impl:{lua_method}({", ".join(names)})'
                        if method.return_type is not None:
                            gen.line(f'return lower(W[{c_string_literal(str(method.return_type))}], {call})')
                        else:
                            gen.line(call)
                            gen.line("return ''")
                    gen.line('if ok then return 0, ret end')
                    if method.throws is not None:
                        gen.line(f"if getmetatable(ret) == Fault and ret.type == '{method.throws}' then")
                        gen.line(f'    return 1, lower(W[{c_string_literal(method.throws)}], ret)')
                        gen.line('end')
                    gen.line("return 2, lower(W['string'], tostring(ret))")
            gen.line("return 2, lower(W['string'], 'unknown callback method')")
        gen.line(f'check(ffi.{init.name}(dispatch_{name}))')
        gen.line()
