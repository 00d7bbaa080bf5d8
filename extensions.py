"""Hook extensions for the BASIC interpreter.

An extension is a Python file defining ``basic_register(ext)``. It receives
an ``ExtensionAPI`` and attaches handlers to interpreter events or to every
N executed lines. A handler that raises a plain Python exception is reported
as a ``BasicRuntimeError`` naming the extension, so the program stops with a
normal traceback instead of an internal fault.
"""

from __future__ import annotations

import importlib.util
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from lexer import BasicError, BasicRuntimeError


EXTENSION_API_VERSION = 1

# Handler arguments after the interpreter:
#   program_start    -
#   before_statement line, text
#   after_statement  line, text
#   program_end      exit code
#   on_error         the BasicError
EVENTS = frozenset({
    "program_start",
    "before_statement",
    "after_statement",
    "program_end",
    "on_error",
})


class ExtensionError(Exception):
    pass


@dataclass(frozen=True)
class StepContext:
    step_index: int
    line: int
    statement: str


@dataclass(frozen=True)
class Hook:
    event: str
    handler: Callable[..., None]
    priority: int
    ext_name: str


@dataclass(frozen=True)
class StepRule:
    name: str
    every_n: int
    handler: Callable[[Any, StepContext], None]
    ext_name: str

    def due(self, ctx: StepContext) -> bool:
        return ctx.step_index % self.every_n == 0


@dataclass
class HookRegistry:
    hooks: Dict[str, List[Hook]] = field(default_factory=dict)
    step_rules: List[StepRule] = field(default_factory=list)

    def on_event(self, event: str, handler: Callable[..., None], *, priority: int, ext_name: str) -> None:
        if event not in EVENTS:
            raise ExtensionError(f"Unknown event '{event}' (known: {', '.join(sorted(EVENTS))})")
        hooks = self.hooks.setdefault(event, [])
        hooks.append(Hook(event=event, handler=handler, priority=priority, ext_name=ext_name))
        # Stable sort: equal priorities keep registration order.
        hooks.sort(key=lambda hook: -hook.priority)

    def emit(self, event: str, interpreter: Any, *args: Any) -> None:
        for hook in self.hooks.get(event, []):
            try:
                hook.handler(interpreter, *args)
            except BasicError:
                raise
            except Exception as exc:
                raise BasicRuntimeError(
                    f"Extension '{hook.ext_name}' failed in {event}: {exc}", rule="EXT"
                ) from exc

    def add_step_rule(self, *, name: str, every_n: int, handler: Callable[[Any, StepContext], None], ext_name: str) -> None:
        if every_n <= 0:
            raise ExtensionError(f"Step rule '{name}' of '{ext_name}': every_n_steps must be >= 1")
        self.step_rules.append(StepRule(name=name, every_n=every_n, handler=handler, ext_name=ext_name))

    def after_step(self, interpreter: Any, ctx: StepContext) -> None:
        for rule in self.step_rules:
            if not rule.due(ctx):
                continue
            try:
                rule.handler(interpreter, ctx)
            except BasicError:
                raise
            except Exception as exc:
                raise BasicRuntimeError(
                    f"Extension '{rule.ext_name}' step rule '{rule.name}' failed at line {ctx.line}: {exc}",
                    rule="EXT",
                ) from exc


@dataclass
class RuntimeServices:
    hook_registry: HookRegistry = field(default_factory=HookRegistry)
    loaded: List[str] = field(default_factory=list)


class ExtensionAPI:
    """What ``basic_register`` sees. Both methods work directly or as decorators."""

    def __init__(self, *, services: RuntimeServices, ext_name: str) -> None:
        self.services = services
        self.ext_name = ext_name

    def on_event(self, event: str, handler: Optional[Callable[..., None]] = None, *, priority: int = 0):
        def register(fn: Callable[..., None]) -> Callable[..., None]:
            self.services.hook_registry.on_event(event, fn, priority=priority, ext_name=self.ext_name)
            return fn
        return register if handler is None else register(handler)

    def every_n_steps(self, every_n: int, handler: Optional[Callable[[Any, StepContext], None]] = None, *, name: str = ""):
        def register(fn: Callable[[Any, StepContext], None]) -> Callable[[Any, StepContext], None]:
            self.services.hook_registry.add_step_rule(
                name=name or fn.__name__, every_n=every_n, handler=fn, ext_name=self.ext_name
            )
            return fn
        return register if handler is None else register(handler)


def build_default_services() -> RuntimeServices:
    return RuntimeServices()


def load_extension(path: str, services: RuntimeServices) -> str:
    """Import one extension file and let it register. Returns its name."""
    if not os.path.isfile(path):
        raise ExtensionError(f"Extension not found: {path}")
    stem = os.path.splitext(os.path.basename(path))[0]
    module_name = "basic_ext_" + "".join(ch if ch.isalnum() else "_" for ch in stem)
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ExtensionError(f"Extension {path} is not a Python module")
    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as exc:
        raise ExtensionError(f"Extension {path} failed to import: {exc}") from exc

    required = getattr(module, "BASIC_EXTENSION_API_VERSION", EXTENSION_API_VERSION)
    if required != EXTENSION_API_VERSION:
        raise ExtensionError(f"Extension {path} requires API {required}, host supports {EXTENSION_API_VERSION}")
    register = getattr(module, "basic_register", None)
    if not callable(register):
        raise ExtensionError(f"Extension {path} must define callable basic_register(ext)")

    ext_name = str(getattr(module, "BASIC_EXTENSION_NAME", stem))
    if ext_name in services.loaded:
        raise ExtensionError(f"Extension '{ext_name}' is already loaded")
    register(ExtensionAPI(services=services, ext_name=ext_name))
    services.loaded.append(ext_name)
    return ext_name


def load_runtime_services(paths: Sequence[str], services: Optional[RuntimeServices] = None) -> RuntimeServices:
    services = services or build_default_services()
    for path in paths:
        load_extension(os.path.abspath(path), services)
    return services
