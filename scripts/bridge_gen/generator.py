"""
Main generator module

Runs the core once (validation, scaffolding synthesis, special-operation
mapping) and then every configured emitter over the shared model.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Optional

from .cheader import HeaderGenerator
from .ir import InterfaceDefinition
from .lua import LuaGenerator
from .luacats import LuaCATSGenerator
from .scaffolding import Scaffolding
from .special_ops import SpecialOperationMapper
from .types import TypeConverter, TypeHandler
from .validate import validate

logger = logging.getLogger(__name__)


class LanguageConfig:
    """Configuration for one output language"""

    def __init__(self, language: str):
        self.language = language
        self.module_name = ''
        self.ignores: set[str] = set()
        self.type_handlers: dict[str, TypeHandler] = {}


class GenerationContext:
    """Core results shared read-only by every emitter"""

    def __init__(self, ci: InterfaceDefinition):
        self.ci = ci
        self.scaffolding = Scaffolding.synthesize(ci)
        self.mapper = SpecialOperationMapper(ci, self.scaffolding)


Emitter = Callable[['Generator', GenerationContext], dict[str, str]]


class Generator:
    """Main binding generator"""

    def __init__(self, output_root: str):
        self.output_root = output_root
        self._languages: dict[str, LanguageConfig] = {}
        self._emitters: dict[str, Emitter] = {
            'lua': Generator._emit_lua,
            'luacats': Generator._emit_luacats,
        }

    def language(self, name: str) -> LanguageConfig:
        """Get or create language configuration"""
        if name not in self._emitters:
            raise ValueError(f'no emitter for language: {name}')
        if name not in self._languages:
            self._languages[name] = LanguageConfig(name)
        return self._languages[name]

    def languages(self) -> list[str]:
        return sorted(self._emitters)

    def type_handler(self, language: str, type_name: str):
        """Decorator to register a type handler"""
        def decorator(cls):
            config = self.language(language)
            config.type_handlers[type_name] = cls()
            return cls
        return decorator

    # ============================================================
    # Emitters
    # ============================================================

    def _config(self, name: str) -> LanguageConfig:
        return self._languages.get(name) or LanguageConfig(name)

    def _module_name(self, ctx: GenerationContext) -> str:
        return self._config('lua').module_name or ctx.ci.namespace

    def _emit_header(self, ctx: GenerationContext) -> dict[str, str]:
        name = f'{ctx.ci.namespace}_scaffolding.h'
        return {name: HeaderGenerator(ctx.ci, ctx.scaffolding).generate()}

    def _emit_lua(self, ctx: GenerationContext) -> dict[str, str]:
        config = self._config('lua')
        module_name = self._module_name(ctx)
        gen = LuaGenerator(ctx.ci, ctx.scaffolding, ctx.mapper, module_name, config.ignores)
        return {
            os.path.join('lua', f'{module_name}_ffi.c'): gen.generate_glue(),
            os.path.join('lua', f'{module_name}.lua'): gen.generate_module(),
        }

    def _emit_luacats(self, ctx: GenerationContext) -> dict[str, str]:
        config = self._config('luacats')
        module_name = config.module_name or self._module_name(ctx)
        type_conv = TypeConverter(ctx.ci, 'lua', module_name)
        for type_name, handler in config.type_handlers.items():
            type_conv.register(type_name, handler)
        gen = LuaCATSGenerator(ctx.ci, type_conv, module_name, config.ignores)
        return {os.path.join('types', f'{module_name}.lua'): gen.generate()}

    # ============================================================
    # Generation
    # ============================================================

    def generate(self, ci: InterfaceDefinition, languages: Optional[list[str]] = None,
                 jobs: Optional[int] = None) -> list[str]:
        """Generate every requested language; returns the written paths"""
        languages = list(languages) if languages is not None else self.languages()
        for name in languages:
            if name not in self._emitters:
                raise ValueError(f'no emitter for language: {name}')

        validate(ci)
        ctx = GenerationContext(ci)

        print('=== Generating bindings:')
        outputs = self._emit_header(ctx)
        with ThreadPoolExecutor(max_workers=jobs) as pool:
            futures = {pool.submit(self._emitters[name], self, ctx): name for name in languages}
            for future in as_completed(futures):
                logger.debug('emitter %s finished', futures[future])
                outputs.update(future.result())

        written = []
        for rel_path in sorted(outputs):
            path = os.path.join(self.output_root, rel_path)
            os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
            with open(path, 'w', newline='\n') as f:
                f.write(outputs[rel_path])
            print(f'  {rel_path}')
            written.append(path)
        return written
