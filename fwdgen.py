"""C++ forward declaration generator.

Reads a scheme of type descriptions (classes, structs and function pointer
signatures, each tagged with the header that defines them) and produces the
minimal block of #include directives and namespace-grouped forward
declarations needed to make a requested set of types usable.

Usage:
    python fwdgen.py --scheme scheme.xml --declare lib::func1 --include std::string
"""

import argparse
import sys
import xml.etree.ElementTree as ET
from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import NamedTuple

SCOPE_SEPARATOR = "::"

DEFAULT_FUNDAMENTALS = frozenset(
    {
        "void",
        "char",
        "int",
        "long",
        "long long",
        "unsigned",
        "size_t",
        "float",
        "double",
    }
)


# ===--- Errors ---=== #


VALID_CODEGEN_ERROR_CODES = {
    "KEY_NOT_FOUND",
    "DUPLICATE_KEY",
    "DUPLICATE_FORWARD",
    "MODULE_NOT_FOUND",
    "NAMESPACE_NESTING",
    "FORWARD_NOT_FOUND",
    "CYCLIC_DEPENDENCY",
    "INVALID_KEY_SYNTAX",
    "GENERIC_PARAMETER",
    "INVALID_SCHEME",
}

_ERROR_DESCRIPTIONS = {
    "KEY_NOT_FOUND": "not found key",
    "DUPLICATE_KEY": "duplicate key",
    "DUPLICATE_FORWARD": "duplicate forward",
    "MODULE_NOT_FOUND": "not found module",
    "NAMESPACE_NESTING": "namespace nesting error",
    "FORWARD_NOT_FOUND": "not found forward",
    "CYCLIC_DEPENDENCY": "cyclic dependency",
    "INVALID_KEY_SYNTAX": "invalid key syntax",
    "GENERIC_PARAMETER": "generic types are not supported as parameters",
    "INVALID_SCHEME": "invalid scheme",
}


class CodegenError(Exception):
    """Fatal failure of a single resolve, verify or render request.

    Attributes:
        code: One of VALID_CODEGEN_ERROR_CODES.
        key: Offending key (or module text / detail), None when the failure
            has no single subject (e.g. an unbalanced namespace close).
        message: Human-readable message, also used as str(err).
    """

    def __init__(self, code: str, key: str | None = None):
        if code not in VALID_CODEGEN_ERROR_CODES:
            raise ValueError(f"Unknown codegen error code: {code}")
        description = _ERROR_DESCRIPTIONS[code]
        message = description if key is None else f"{description}: {key}"
        super().__init__(message)
        self.code = code
        self.key = key
        self.message = message


# ===--- Keys ---=== #


def split_key(key: str) -> tuple[tuple[str, ...], str]:
    """Split a scoped key into its namespace path and leaf name.

    Args:
        key: Fully qualified key, e.g. "lib::inn::st1".

    Returns:
        Tuple of (namespace path, leaf), e.g. (("lib", "inn"), "st1").

    Raises:
        CodegenError: INVALID_KEY_SYNTAX when the key is empty, has an empty
            segment, or contains a lone ':'.
    """
    if not key:
        raise CodegenError("INVALID_KEY_SYNTAX", repr(key))
    segments = key.split(SCOPE_SEPARATOR)
    for segment in segments:
        if not segment or ":" in segment:
            raise CodegenError("INVALID_KEY_SYNTAX", key)
    return tuple(segments[:-1]), segments[-1]


def join_key(path: Iterable[str], leaf: str) -> str:
    return SCOPE_SEPARATOR.join([*path, leaf])


# ===--- Type descriptors ---=== #


@dataclass(frozen=True)
class ModuleName:
    """An includable header.

    System headers render as <name>, user headers as "name". System headers
    sort before user headers, then by name.
    """

    name: str
    system: bool = False

    @classmethod
    def parse(cls, text: str | None) -> "ModuleName | None":
        if not text:
            return None
        if len(text) >= 2 and text[0] == "<" and text[-1] == ">":
            return cls(text[1:-1], system=True) if len(text) > 2 else None
        if len(text) >= 2 and text[0] == '"' and text[-1] == '"':
            return cls(text[1:-1]) if len(text) > 2 else None
        return cls(text)

    @property
    def sort_key(self) -> tuple[bool, str]:
        return (not self.system, self.name)

    def view(self) -> str:
        return f"<{self.name}>" if self.system else f'"{self.name}"'


@dataclass(frozen=True)
class FunctionParam:
    key: str
    is_const: bool = False
    indirection: int = 0

    def __post_init__(self):
        if self.indirection < 0:
            raise ValueError(
                f"Parameter indirection must be non-negative, got {self.indirection}"
            )


@dataclass(frozen=True)
class _RecordType:
    module: ModuleName | None = None
    template_params: tuple[str, ...] = ()

    @property
    def is_external(self) -> bool:
        return self.module is not None

    @property
    def is_generic(self) -> bool:
        return bool(self.template_params)


@dataclass(frozen=True)
class ClassType(_RecordType):
    pass


@dataclass(frozen=True)
class StructType(_RecordType):
    pass


@dataclass(frozen=True)
class FunctionType:
    """Function pointer signature; params[0] is the return type.

    An empty parameter list is normalised to a single `void` return.
    Function types never carry template parameters.
    """

    module: ModuleName | None = None
    params: tuple[FunctionParam, ...] = ()
    template_params: tuple[str, ...] = field(default=(), init=False)

    def __post_init__(self):
        if not self.params:
            object.__setattr__(self, "params", (FunctionParam("void"),))
        else:
            object.__setattr__(self, "params", tuple(self.params))

    @property
    def is_external(self) -> bool:
        return self.module is not None

    @property
    def is_generic(self) -> bool:
        return False


TypeInfo = ClassType | StructType | FunctionType
TYPE_INFO_CLASSES = (ClassType, StructType, FunctionType)


def type_kind(info: TypeInfo) -> str:
    if isinstance(info, ClassType):
        return "class"
    if isinstance(info, StructType):
        return "struct"
    if isinstance(info, FunctionType):
        return "function"
    raise TypeError(f"Unsupported type descriptor: {type(info).__name__}")


def type_dependencies(info: TypeInfo) -> list[str]:
    """Return the keys a descriptor needs to be known before its declaration.

    Function parameter keys are returned in order, duplicates and
    self-references included.
    """
    if isinstance(info, (ClassType, StructType)):
        return []
    if isinstance(info, FunctionType):
        return [param.key for param in info.params]
    raise TypeError(f"Unsupported type descriptor: {type(info).__name__}")


def check_type(key: str, info: TypeInfo, scheme: Mapping[str, TypeInfo]) -> None:
    """Run descriptor-specific validation for `key`.

    Raises:
        CodegenError: GENERIC_PARAMETER when a function parameter refers to a
            generic descriptor.
    """
    if isinstance(info, (ClassType, StructType)):
        return
    if isinstance(info, FunctionType):
        for param in info.params:
            param_info = scheme.get(param.key)
            if param_info is not None and param_info.is_generic:
                raise CodegenError("GENERIC_PARAMETER", f"{key} ({param.key})")
        return
    raise TypeError(f"Unsupported type descriptor: {type(info).__name__}")


# ===--- Entity text ---=== #


def format_template_preamble(template_params: tuple[str, ...]) -> str:
    if not template_params:
        return ""
    params = ", ".join(f"typename {name}" for name in template_params)
    return f"template <{params}> "


def format_param(param: FunctionParam, prefix: str = "") -> str:
    """Render one function parameter type.

    The qualifying prefix of the enclosing namespace is stripped from the type
    key when the key starts with it and is longer than it.
    """
    type_name = param.key
    if prefix and len(prefix) < len(type_name) and type_name.startswith(prefix):
        type_name = type_name[len(prefix):]
    const = "const " if param.is_const else ""
    return f"{const}{type_name}{'*' * param.indirection}"


def render_declaration(info: TypeInfo, prefix: str, name: str) -> str:
    """Render a single forward declaration line (without indentation).

    Args:
        info: Descriptor being declared.
        prefix: Qualifying prefix of the enclosing namespace, e.g. "lib::".
            Empty at global scope.
        name: Local (leaf) name of the entity.

    Returns:
        Declaration text without a trailing newline.
    """
    if isinstance(info, ClassType):
        return f"{format_template_preamble(info.template_params)}class {name};"
    if isinstance(info, StructType):
        return f"{format_template_preamble(info.template_params)}struct {name};"
    if isinstance(info, FunctionType):
        result = format_param(info.params[0], prefix)
        args = ", ".join(format_param(param, prefix) for param in info.params[1:])
        return f"using {name} = {result} (*)({args});"
    raise TypeError(f"Unsupported type descriptor: {type(info).__name__}")


# ===--- Scheme ---=== #


def build_scheme(
    entries: Mapping[str, TypeInfo] | Iterable[tuple[str, TypeInfo]],
) -> Mapping[str, TypeInfo]:
    """Build a read-only key -> descriptor table.

    Args:
        entries: Mapping or iterable of (key, descriptor) pairs, in any order.

    Returns:
        Read-only mapping. Never mutated by resolve, verify or render.

    Raises:
        CodegenError: DUPLICATE_KEY on a repeated key, INVALID_SCHEME when a
            value is not a type descriptor.
    """
    items = entries.items() if isinstance(entries, Mapping) else entries
    table: dict[str, TypeInfo] = {}
    for key, info in items:
        if not isinstance(info, TYPE_INFO_CLASSES):
            raise CodegenError(
                "INVALID_SCHEME", f"{key} is not a type descriptor"
            )
        if key in table:
            raise CodegenError("DUPLICATE_KEY", key)
        table[key] = info
    return MappingProxyType(table)


# ===--- Dependency classification ---=== #

DEP_LOCAL = "local"
DEP_EXTERNAL = "external"
DEP_UNKNOWN = "unknown"


class DependencyClass(NamedTuple):
    kind: str
    module: ModuleName | None = None


def classify_dependency(
    scheme: Mapping[str, TypeInfo], key: str
) -> DependencyClass:
    """Classify a key as LOCAL (needs a declaration), EXTERNAL (satisfied by
    its module's include) or UNKNOWN (absent from the scheme).

    Shared by the scheduler and the verifier so both apply the same rule.
    """
    info = scheme.get(key)
    if info is None:
        return DependencyClass(DEP_UNKNOWN)
    if info.is_external:
        return DependencyClass(DEP_EXTERNAL, info.module)
    return DependencyClass(DEP_LOCAL)


def _lookup(scheme: Mapping[str, TypeInfo], key: str) -> TypeInfo:
    info = scheme.get(key)
    if info is None:
        raise CodegenError("KEY_NOT_FOUND", key)
    return info


# ===--- Intermediate program ---=== #

CMD_INCLUDE_MODULE = "include-module"
CMD_OPEN_NAMESPACE = "open-namespace"
CMD_DECLARE_FORWARD = "declare-forward"
CMD_CLOSE_NAMESPACE = "close-namespace"


class Command(NamedTuple):
    kind: str
    name: str = ""
    module: ModuleName | None = None


def is_includable(module: ModuleName | None) -> bool:
    """A module with no name renders as nothing and is never emitted."""
    return module is not None and bool(module.name)


class IntermediateProgram:
    """Ordered include / namespace / declaration commands.

    Built once by resolve_program (or by hand in tests) and read-only
    afterwards. Closing a namespace directly after opening it drops the
    open command instead, so empty namespaces never appear.
    """

    def __init__(self, commands: Iterable[Command] = ()):
        self._commands: list[Command] = list(commands)

    @property
    def commands(self) -> tuple[Command, ...]:
        return tuple(self._commands)

    def include_module(self, module: ModuleName | None) -> None:
        if is_includable(module):
            self._commands.append(Command(CMD_INCLUDE_MODULE, module=module))

    def open_namespace(self, name: str) -> None:
        self._commands.append(Command(CMD_OPEN_NAMESPACE, name))

    def declare_forward(self, name: str) -> None:
        self._commands.append(Command(CMD_DECLARE_FORWARD, name))

    def close_namespace(self) -> None:
        if self._commands and self._commands[-1].kind == CMD_OPEN_NAMESPACE:
            self._commands.pop()
        else:
            self._commands.append(Command(CMD_CLOSE_NAMESPACE))

    def __iter__(self):
        return iter(self._commands)

    def __len__(self) -> int:
        return len(self._commands)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, IntermediateProgram):
            return NotImplemented
        return self._commands == other._commands

    def __repr__(self) -> str:
        return f"IntermediateProgram({self._commands!r})"


# ===--- Namespace scheduler ---=== #


class NamespaceNode:
    """One namespace level of pending forward declarations."""

    def __init__(self):
        self.pending: set[str] = set()
        self.children: dict[str, NamespaceNode] = {}
        self.unresolved = 0

    def place(self, path: tuple[str, ...], leaf: str) -> bool:
        """Insert `leaf` under `path`, creating nodes as needed.

        Returns False when the name was already placed.
        """
        if path:
            child = self.children.setdefault(path[0], NamespaceNode())
            if not child.place(path[1:], leaf):
                return False
        else:
            if leaf in self.pending:
                return False
            self.pending.add(leaf)
        self.unresolved += 1
        return True

    def pending_keys(self, path: tuple[str, ...] = ()) -> list[str]:
        keys = [join_key(path, leaf) for leaf in self.pending]
        for child_name, child in self.children.items():
            keys.extend(child.pending_keys((*path, child_name)))
        return keys

    def resolve(
        self,
        program: IntermediateProgram,
        completed: set[str],
        forced_declare: frozenset[str],
        scheme: Mapping[str, TypeInfo],
        path: tuple[str, ...] = (),
    ) -> None:
        """Greedily emit every declaration of this subtree that is ready.

        Alternates a pass over this node's own pending names with a descent
        into each child that still has unresolved entries, until a full
        round makes no progress or the subtree is done.
        """
        while True:
            before = self.unresolved

            for leaf in sorted(self.pending):
                key = join_key(path, leaf)
                if key in completed:
                    continue
                info = _lookup(scheme, key)
                if _dependencies_ready(key, info, completed, forced_declare, scheme):
                    program.declare_forward(leaf)
                    completed.add(key)
                    self.pending.discard(leaf)
                    self.unresolved -= 1

            for child_name in sorted(self.children):
                child = self.children[child_name]
                if child.unresolved == 0:
                    continue
                program.open_namespace(child_name)
                child_before = child.unresolved
                child.resolve(
                    program, completed, forced_declare, scheme, (*path, child_name)
                )
                self.unresolved -= child_before - child.unresolved
                program.close_namespace()

            if self.unresolved == 0 or self.unresolved >= before:
                return


def _dependencies_ready(
    key: str,
    info: TypeInfo,
    completed: set[str],
    forced_declare: frozenset[str],
    scheme: Mapping[str, TypeInfo],
) -> bool:
    for dep in type_dependencies(info):
        if dep in completed or dep == key:
            continue
        if dep in forced_declare:
            return False
        dep_class = classify_dependency(scheme, dep)
        if dep_class.kind == DEP_UNKNOWN:
            raise CodegenError("KEY_NOT_FOUND", dep)
        if dep_class.kind == DEP_LOCAL:
            return False
    return True


def resolve_program(
    scheme: Mapping[str, TypeInfo],
    include_keys: Iterable[str],
    declare_keys: Iterable[str],
    fundamentals: frozenset[str] = DEFAULT_FUNDAMENTALS,
) -> IntermediateProgram:
    """Schedule the includes and forward declarations for one request.

    Expands `declare_keys` breadth-first over local (module-less)
    dependencies into a namespace tree, emits every required include in
    module order, then resolves the tree greedily.

    Args:
        scheme: Read-only key -> descriptor table.
        include_keys: Keys whose module must be included even though the
            key itself is not declared.
        declare_keys: Keys that must be forward-declared explicitly.
        fundamentals: Keys that are always known (built-in types).

    Returns:
        IntermediateProgram: all includes first, then balanced namespace
        blocks holding the declarations.

    Raises:
        CodegenError: KEY_NOT_FOUND, INVALID_KEY_SYNTAX, GENERIC_PARAMETER,
            MODULE_NOT_FOUND (include key without a module) or
            CYCLIC_DEPENDENCY.
    """
    include_keys = list(include_keys)
    declare_keys = list(declare_keys)
    fundamentals = frozenset(fundamentals)

    root = NamespaceNode()
    modules: set[ModuleName] = set()

    queue = deque(key for key in declare_keys if key not in fundamentals)
    while queue:
        key = queue.popleft()
        info = _lookup(scheme, key)
        path, leaf = split_key(key)
        if not root.place(path, leaf):
            continue
        if info.module is not None:
            modules.add(info.module)
        check_type(key, info, scheme)
        for dep in type_dependencies(info):
            if dep in fundamentals:
                continue
            dep_class = classify_dependency(scheme, dep)
            if dep_class.kind == DEP_UNKNOWN:
                raise CodegenError("KEY_NOT_FOUND", dep)
            if dep_class.kind == DEP_EXTERNAL:
                modules.add(dep_class.module)
            else:
                queue.append(dep)

    for key in include_keys:
        info = _lookup(scheme, key)
        if info.module is None:
            raise CodegenError("MODULE_NOT_FOUND", key)
        modules.add(info.module)

    program = IntermediateProgram()
    for module in sorted(modules, key=lambda m: m.sort_key):
        program.include_module(module)

    completed = set(fundamentals)
    forced_declare = frozenset(declare_keys)
    root.resolve(program, completed, forced_declare, scheme)
    if root.unresolved > 0:
        raise CodegenError("CYCLIC_DEPENDENCY", ", ".join(sorted(root.pending_keys())))

    return program


# ===--- Verifier ---=== #


def verify_program(
    program: IntermediateProgram,
    scheme: Mapping[str, TypeInfo],
    include_keys: Iterable[str],
    declare_keys: Iterable[str],
    known: Iterable[str] = DEFAULT_FUNDAMENTALS,
) -> None:
    """Replay a program against the scheme and the requested keys.

    Independent of the scheduler: any program, including hand-built ones,
    is checked from scratch. The first violation aborts verification.

    Args:
        program: Program to check.
        scheme: Read-only key -> descriptor table.
        include_keys: Keys whose module must end up included.
        declare_keys: Keys that must be declared, and may only be relied on
            after their own declaration.
        known: Keys treated as already declared (the fundamental set).

    Raises:
        CodegenError: KEY_NOT_FOUND, DUPLICATE_FORWARD, MODULE_NOT_FOUND,
            FORWARD_NOT_FOUND or NAMESPACE_NESTING.
    """
    declare_keys = list(declare_keys)
    completed: set[str] = set(known)
    forced_declare = frozenset(declare_keys)
    seen_modules: set[ModuleName] = set()
    path: list[str] = []

    for command in program:
        if command.kind == CMD_INCLUDE_MODULE:
            if is_includable(command.module):
                seen_modules.add(command.module)
        elif command.kind == CMD_OPEN_NAMESPACE:
            path.append(command.name)
        elif command.kind == CMD_CLOSE_NAMESPACE:
            if not path:
                raise CodegenError("NAMESPACE_NESTING")
            path.pop()
        elif command.kind == CMD_DECLARE_FORWARD:
            key = join_key(path, command.name)
            info = _lookup(scheme, key)
            if key in completed:
                raise CodegenError("DUPLICATE_FORWARD", key)
            if info.module is not None and info.module not in seen_modules:
                raise CodegenError("MODULE_NOT_FOUND", info.module.view())
            completed.add(key)
            for dep in type_dependencies(info):
                if dep in completed:
                    continue
                if dep in forced_declare:
                    raise CodegenError("FORWARD_NOT_FOUND", dep)
                dep_class = classify_dependency(scheme, dep)
                if dep_class.kind == DEP_UNKNOWN:
                    raise CodegenError("KEY_NOT_FOUND", dep)
                if dep_class.kind == DEP_LOCAL:
                    raise CodegenError("FORWARD_NOT_FOUND", dep)
                if dep_class.module not in seen_modules:
                    raise CodegenError("MODULE_NOT_FOUND", dep_class.module.view())
        else:
            raise ValueError(f"Unknown program command: {command.kind}")

    if path:
        raise CodegenError("NAMESPACE_NESTING", join_key(path[:-1], path[-1]))

    for key in include_keys:
        info = _lookup(scheme, key)
        if info.module is None:
            raise CodegenError("MODULE_NOT_FOUND", key)
        if info.module not in seen_modules:
            raise CodegenError("MODULE_NOT_FOUND", info.module.view())

    for key in declare_keys:
        if key not in completed:
            raise CodegenError("FORWARD_NOT_FOUND", key)


# ===--- Renderer ---=== #

INDENT = "\t"


def render_program(
    program: IntermediateProgram, scheme: Mapping[str, TypeInfo]
) -> str:
    """Render a program to C++ source text.

    Includes come out one per line; a single blank line separates the last
    include from the next non-include line. Namespaces open with
    `namespace name` / `{` and indent their contents by one tab.

    Raises:
        CodegenError: KEY_NOT_FOUND for a declaration missing from the scheme,
            NAMESPACE_NESTING for a close at global scope.
    """
    lines: list[str] = []
    prefixes: list[str] = [""]
    pending_blank = False

    def emit(text: str) -> None:
        nonlocal pending_blank
        if pending_blank:
            lines.append("")
            pending_blank = False
        lines.append(INDENT * (len(prefixes) - 1) + text)

    for command in program:
        if command.kind == CMD_INCLUDE_MODULE:
            if is_includable(command.module):
                lines.append(f"#include {command.module.view()}")
                pending_blank = True
        elif command.kind == CMD_OPEN_NAMESPACE:
            emit(f"namespace {command.name}")
            emit("{")
            prefixes.append(prefixes[-1] + command.name + SCOPE_SEPARATOR)
        elif command.kind == CMD_DECLARE_FORWARD:
            key = prefixes[-1] + command.name
            info = _lookup(scheme, key)
            emit(render_declaration(info, prefixes[-1], command.name))
        elif command.kind == CMD_CLOSE_NAMESPACE:
            if len(prefixes) == 1:
                raise CodegenError("NAMESPACE_NESTING")
            prefixes.pop()
            emit("}")
        else:
            raise ValueError(f"Unknown program command: {command.kind}")

    if not lines:
        return ""
    return "\n".join(lines) + "\n"


# ===--- Codegen facade ---=== #


class Codegen:
    """Scheme plus fundamental set, reusable across generation requests.

    Holds no per-request state; a single instance may be shared read-only.
    """

    def __init__(
        self,
        entries: Mapping[str, TypeInfo] | Iterable[tuple[str, TypeInfo]],
        fundamentals: Iterable[str] = DEFAULT_FUNDAMENTALS,
    ):
        self.scheme = build_scheme(entries)
        self.fundamentals = frozenset(fundamentals)

    def code(
        self, include_keys: Iterable[str], declare_keys: Iterable[str]
    ) -> IntermediateProgram:
        return resolve_program(
            self.scheme, include_keys, declare_keys, self.fundamentals
        )

    def generate(
        self, include_keys: Iterable[str], declare_keys: Iterable[str]
    ) -> str:
        return render_program(self.code(include_keys, declare_keys), self.scheme)

    def self_test(
        self, include_keys: Iterable[str], declare_keys: Iterable[str]
    ) -> bool:
        """Resolve the request and verify the result.

        Returns False when the verifier rejects the scheduled program.
        Errors raised while resolving propagate unchanged.
        """
        include_keys = list(include_keys)
        declare_keys = list(declare_keys)
        program = self.code(include_keys, declare_keys)
        try:
            verify_program(
                program, self.scheme, include_keys, declare_keys, self.fundamentals
            )
        except CodegenError:
            return False
        return True


# ===--- Scheme documents ---=== #

_TRUE_VALUES = {"true", "1", "yes"}
_FALSE_VALUES = {"false", "0", "no", ""}


@dataclass(frozen=True)
class SchemeDocument:
    """Parsed scheme XML.

    Attributes:
        entries: (key, descriptor) pairs in document order.
        fundamentals: Fundamental set declared by the document, or None to
            use DEFAULT_FUNDAMENTALS.
        include_keys: Default include request from <request>.
        declare_keys: Default declare request from <request>.
    """

    entries: tuple[tuple[str, TypeInfo], ...]
    fundamentals: frozenset[str] | None
    include_keys: tuple[str, ...]
    declare_keys: tuple[str, ...]


def _parse_bool(raw: str | None, where: str) -> bool:
    value = (raw or "").strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise CodegenError("INVALID_SCHEME", f"{where}: expected a boolean, got {raw!r}")


def _require_attr(element: ET.Element, attr: str, where: str) -> str:
    value = element.get(attr)
    if not value:
        raise CodegenError(
            "INVALID_SCHEME", f"{where}: <{element.tag}> requires a '{attr}' attribute"
        )
    return value


def parse_module_attr(element: ET.Element, where: str) -> ModuleName | None:
    module = ModuleName.parse(element.get("module", "").strip())
    if module is not None and _parse_bool(element.get("system"), where):
        module = ModuleName(module.name, system=True)
    return module


def parse_function_param(element: ET.Element, where: str) -> FunctionParam:
    key = _require_attr(element, "key", where)
    raw_pointer = element.get("pointer", "0").strip()
    try:
        indirection = int(raw_pointer)
    except ValueError:
        indirection = -1
    if indirection < 0:
        raise CodegenError(
            "INVALID_SCHEME",
            f"{where}: pointer must be a non-negative integer, got {raw_pointer!r}",
        )
    return FunctionParam(
        key=key,
        is_const=_parse_bool(element.get("const"), where),
        indirection=indirection,
    )


def parse_type_element(element: ET.Element) -> tuple[str, TypeInfo]:
    """Parse one <class>, <struct> or <function> element into a scheme entry."""
    key = _require_attr(element, "key", "types")
    module = parse_module_attr(element, key)

    if element.tag in ("class", "struct"):
        template_params = tuple(
            _require_attr(t, "name", key) for t in element.findall("template")
        )
        if element.tag == "class":
            return key, ClassType(module=module, template_params=template_params)
        return key, StructType(module=module, template_params=template_params)

    if element.tag == "function":
        if element.find("template") is not None:
            raise CodegenError(
                "INVALID_SCHEME", f"{key}: function types cannot be generic"
            )
        params = tuple(parse_function_param(p, key) for p in element.findall("param"))
        return key, FunctionType(module=module, params=params)

    raise CodegenError("INVALID_SCHEME", f"unknown type element <{element.tag}>")


def parse_scheme_document(root: ET.Element) -> SchemeDocument:
    """Build a SchemeDocument from a parsed <scheme> root element.

    Raises:
        CodegenError: INVALID_SCHEME on structural problems, DUPLICATE_KEY
            when a key is described twice.
    """
    if root.tag != "scheme":
        raise CodegenError(
            "INVALID_SCHEME", f"expected <scheme> root element, got <{root.tag}>"
        )

    entries: list[tuple[str, TypeInfo]] = []
    seen: set[str] = set()
    for types_el in root.findall("types"):
        for element in types_el:
            key, info = parse_type_element(element)
            if key in seen:
                raise CodegenError("DUPLICATE_KEY", key)
            seen.add(key)
            entries.append((key, info))

    fundamentals = None
    fundamentals_el = root.find("fundamentals")
    if fundamentals_el is not None:
        fundamentals = frozenset(
            _require_attr(t, "name", "fundamentals")
            for t in fundamentals_el.findall("type")
        )

    include_keys: tuple[str, ...] = ()
    declare_keys: tuple[str, ...] = ()
    request_el = root.find("request")
    if request_el is not None:
        include_keys = tuple(
            _require_attr(e, "key", "request") for e in request_el.findall("include")
        )
        declare_keys = tuple(
            _require_attr(e, "key", "request") for e in request_el.findall("declare")
        )

    return SchemeDocument(
        entries=tuple(entries),
        fundamentals=fundamentals,
        include_keys=include_keys,
        declare_keys=declare_keys,
    )


def load_scheme_document(path: Path) -> SchemeDocument:
    return parse_scheme_document(ET.parse(path).getroot())


def codegen_from_document(document: SchemeDocument) -> Codegen:
    if document.fundamentals is None:
        return Codegen(document.entries)
    return Codegen(document.entries, document.fundamentals)


# ===--- CLI config contracts ---=== #


@dataclass(frozen=True)
class GenerateConfig:
    scheme: Path
    include_keys: tuple[str, ...] | None
    declare_keys: tuple[str, ...] | None
    output: Path | None
    verify: bool


@dataclass(frozen=True)
class DiscoveryConfig:
    command: str
    filter_text: str | None
    scheme: Path


VALID_ERROR_CODES = {
    "PATH_NOT_FOUND",
    "CONFLICT_GENERATE_DISCOVERY",
    "FILTER_WITHOUT_LIST",
    "CONFLICT_VERIFY_OUTPUT",
    "INVALID_KEY",
}


class ConfigError(Exception):
    def __init__(self, code: str, message: str, suggestion: str | None = None):
        if code not in VALID_ERROR_CODES:
            raise ValueError(f"Unknown config error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion


def validate_key_argument(key: str, flag: str) -> str:
    try:
        split_key(key)
    except CodegenError as err:
        raise ConfigError(
            "INVALID_KEY",
            f"Invalid key for {flag}: {key!r}",
            "Keys are '::'-separated names, for example lib::inn::st1.",
        ) from err
    return key


def validate_path_exists(
    path: Path | None, flag: str, suggestion: str | None = None
) -> Path:
    if path is None:
        raise ConfigError(
            "PATH_NOT_FOUND",
            f"{flag} is required: no path provided.",
            suggestion or f"Pass the path explicitly: {flag} /path/to/resource",
        )
    if path.exists():
        return path
    raise ConfigError(
        "PATH_NOT_FOUND",
        f"Path for {flag} does not exist: {path}",
        suggestion or "Provide an existing path for this flag.",
    )


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate C++ forward declarations and includes from a type scheme"
    )

    parser.add_argument("--scheme", type=Path, default=None)
    parser.add_argument("--include", action="append", nargs="+", default=None)
    parser.add_argument("--declare", action="append", nargs="+", default=None)
    parser.add_argument("--output", type=Path, default=None)

    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument("--verify", action="store_true", default=False)
    mode_group.add_argument("--list-keys", action="store_true", default=False)

    parser.add_argument("--filter", type=str, default=None)

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_argument_parser()
    return parser.parse_args(argv)


def normalize_keys(raw_keys: list[list[str]] | None, flag: str) -> tuple[str, ...] | None:
    if raw_keys is None:
        return None
    keys: list[str] = []
    for group in raw_keys:
        for key in group:
            keys.append(validate_key_argument(key, flag))
    return tuple(keys)


def validate_config(args: argparse.Namespace) -> GenerateConfig | DiscoveryConfig:
    include_keys = normalize_keys(args.include, "--include")
    declare_keys = normalize_keys(args.declare, "--declare")
    has_generate_input = bool(
        include_keys or declare_keys or args.output or args.verify
    )

    if args.filter and not args.list_keys:
        raise ConfigError(
            "FILTER_WITHOUT_LIST",
            "--filter requires --list-keys.",
            "Add --list-keys or remove --filter.",
        )

    if args.list_keys and has_generate_input:
        raise ConfigError(
            "CONFLICT_GENERATE_DISCOVERY",
            "Generate flags cannot be combined with --list-keys.",
            "Choose either generate mode or --list-keys.",
        )

    if args.verify and args.output is not None:
        raise ConfigError(
            "CONFLICT_VERIFY_OUTPUT",
            "--verify does not write output; --output cannot be combined with it.",
            "Drop --output, or drop --verify to generate a file.",
        )

    scheme = validate_path_exists(
        args.scheme,
        "--scheme",
        "Pass a scheme XML file: --scheme /path/to/scheme.xml",
    )

    if args.list_keys:
        return DiscoveryConfig(
            command="list-keys",
            filter_text=args.filter,
            scheme=scheme,
        )

    # Absent flags mean "use the document's <request>".
    if include_keys is not None or declare_keys is not None:
        include_keys = include_keys or ()
        declare_keys = declare_keys or ()

    return GenerateConfig(
        scheme=scheme,
        include_keys=include_keys,
        declare_keys=declare_keys,
        output=args.output,
        verify=bool(args.verify),
    )


def build_config(argv: list[str] | None = None) -> GenerateConfig | DiscoveryConfig:
    return validate_config(parse_args(argv))


def request_keys(
    config: GenerateConfig, document: SchemeDocument
) -> tuple[tuple[str, ...], tuple[str, ...]]:
    """Return (include_keys, declare_keys) for a run.

    Command-line keys take precedence; when neither --include nor --declare
    was given, the document's <request> is used.
    """
    if config.include_keys is None and config.declare_keys is None:
        return document.include_keys, document.declare_keys
    return config.include_keys or (), config.declare_keys or ()


# ===--- Summary report ---=== #


@dataclass(frozen=True)
class ProgramSummary:
    """Counts derived from one intermediate program.

    Attributes:
        includes: Number of include-module commands.
        namespaces: Number of namespace blocks opened.
        declarations: Number of forward declarations.
        max_depth: Deepest namespace nesting reached (0 for global only).
    """

    includes: int
    namespaces: int
    declarations: int
    max_depth: int


def summarize_program(program: IntermediateProgram) -> ProgramSummary:
    includes = namespaces = declarations = depth = max_depth = 0
    for command in program:
        if command.kind == CMD_INCLUDE_MODULE:
            if is_includable(command.module):
                includes += 1
        elif command.kind == CMD_OPEN_NAMESPACE:
            namespaces += 1
            depth += 1
            max_depth = max(max_depth, depth)
        elif command.kind == CMD_CLOSE_NAMESPACE:
            depth -= 1
        elif command.kind == CMD_DECLARE_FORWARD:
            declarations += 1
    return ProgramSummary(
        includes=includes,
        namespaces=namespaces,
        declarations=declarations,
        max_depth=max_depth,
    )


@dataclass(frozen=True)
class FileWriteResult:
    path: Path
    line_count: int
    byte_count: int


def write_output(path: Path, text: str) -> FileWriteResult:
    """Write generated text, creating parent directories as needed.

    Raises:
        OSError: Propagated directly if the filesystem write fails.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    resolved = path.resolve()
    return FileWriteResult(
        path=resolved,
        line_count=text.count("\n"),
        byte_count=len(resolved.read_bytes()),
    )


def format_generation_summary(
    summary: ProgramSummary, source_label: str, result: FileWriteResult
) -> str:
    """Render the post-generation console report. Ends with one newline."""
    lines = [
        "Forward declarations generated:",
        "",
        f"  Source:     {source_label}",
        f"  Output:     {result.path}",
        "",
        f"    {'Includes:':<15}{summary.includes:>6}",
        f"    {'Namespaces:':<15}{summary.namespaces:>6}",
        f"    {'Declarations:':<15}{summary.declarations:>6}",
        f"    {'Max depth:':<15}{summary.max_depth:>6}",
        "",
        f"  Total: {result.line_count:,} lines, {result.byte_count:,} bytes",
        "",
    ]
    return "\n".join(lines)


def print_generation_summary(
    summary: ProgramSummary, source_label: str, result: FileWriteResult
) -> None:
    print(format_generation_summary(summary, source_label, result), end="")


# ===--- Discovery ---=== #


@dataclass(frozen=True)
class KeyEntry:
    key: str
    kind: str
    module: str
    generic: bool


def gather_key_entries(scheme: Mapping[str, TypeInfo]) -> list[KeyEntry]:
    return [
        KeyEntry(
            key=key,
            kind=type_kind(info),
            module=info.module.view() if info.module is not None else "",
            generic=info.is_generic,
        )
        for key, info in sorted(scheme.items())
    ]


def filter_key_entries(entries: list[KeyEntry], filter_text: str) -> list[KeyEntry]:
    needle = filter_text.lower()
    return [e for e in entries if needle in e.key.lower()]


def format_keys_table(entries: list[KeyEntry]) -> str:
    if not entries:
        return "No matching keys.\n"
    key_width = max(len("Key"), *(len(e.key) for e in entries))
    module_width = max(len("Module"), *(len(e.module) for e in entries))
    lines = [
        f"{'Key':<{key_width}}  {'Kind':<8}  {'Module':<{module_width}}  Generic",
        f"{'-' * key_width}  {'-' * 8}  {'-' * module_width}  -------",
    ]
    for e in entries:
        module = e.module or "-"
        generic = "yes" if e.generic else ""
        lines.append(
            f"{e.key:<{key_width}}  {e.kind:<8}  {module:<{module_width}}  {generic}".rstrip()
        )
    lines.append("")
    lines.append(f"{len(entries)} keys")
    return "\n".join(lines) + "\n"


def run_discovery(config: DiscoveryConfig) -> None:
    """Print the scheme's keys as a table, optionally filtered."""
    document = load_scheme_document(config.scheme)
    scheme = build_scheme(document.entries)
    entries = gather_key_entries(scheme)
    if config.filter_text is not None:
        entries = filter_key_entries(entries, config.filter_text)
    print(format_keys_table(entries), end="")


# ===--- Pipeline ---=== #


def run_generate(config: GenerateConfig) -> str:
    """Load the scheme, resolve the request, render, and emit the text.

    Without config.output the text goes to stdout and nothing else is
    printed. With it the text is written to that path and progress and a
    summary are printed.

    Returns:
        The generated text.

    Raises:
        OSError: Scheme not readable or output write failure.
        ET.ParseError: Malformed scheme XML.
        CodegenError: Any resolve or render failure.
    """
    quiet = config.output is None
    if not quiet:
        print(f"Parsing: {config.scheme}")
    document = load_scheme_document(config.scheme)
    codegen = codegen_from_document(document)
    include_keys, declare_keys = request_keys(config, document)
    if not quiet:
        print(f"  Scheme: {len(codegen.scheme)} types, {len(codegen.fundamentals)} fundamentals")
        print(f"  Request: {len(include_keys)} includes, {len(declare_keys)} declarations")

    program = codegen.code(include_keys, declare_keys)
    text = render_program(program, codegen.scheme)

    if quiet:
        print(text, end="")
        return text

    summary = summarize_program(program)
    print(
        f"  Resolved: {summary.includes} includes, {summary.declarations} "
        f"declarations in {summary.namespaces} namespaces"
    )
    result = write_output(config.output, text)
    print(f"  Written: {result.line_count} lines to {result.path}")
    print_generation_summary(summary, str(config.scheme), result)
    return text


def run_verify(config: GenerateConfig) -> bool:
    """Resolve the request and check the program with the verifier.

    Prints a one-line result; the verifier's complaint goes to stderr.
    Resolve errors propagate.
    """
    document = load_scheme_document(config.scheme)
    codegen = codegen_from_document(document)
    include_keys, declare_keys = request_keys(config, document)
    program = codegen.code(include_keys, declare_keys)
    try:
        verify_program(
            program, codegen.scheme, include_keys, declare_keys, codegen.fundamentals
        )
    except CodegenError as err:
        print(f"Verification failed [{err.code}]: {err.message}", file=sys.stderr)
        return False
    summary = summarize_program(program)
    print(
        f"Verified: {summary.declarations} declarations, "
        f"{summary.includes} includes"
    )
    return True


# ===--- Main ---=== #


def main(argv: list[str] | None = None):
    try:
        config = build_config(argv)
    except ConfigError as err:
        print(f"Config error [{err.code}]: {err.message}")
        if err.suggestion:
            print(f"Hint: {err.suggestion}")
        raise SystemExit(1) from err

    try:
        if isinstance(config, DiscoveryConfig):
            run_discovery(config)
        elif config.verify:
            if not run_verify(config):
                raise SystemExit(1)
        else:
            run_generate(config)
    except (OSError, ET.ParseError) as err:
        print(f"Error: {err}", file=sys.stderr)
        raise SystemExit(1) from err
    except CodegenError as err:
        print(f"Codegen error [{err.code}]: {err.message}", file=sys.stderr)
        raise SystemExit(1) from err


if __name__ == "__main__":
    main()
