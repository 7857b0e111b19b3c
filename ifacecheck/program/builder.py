"""
Go front-end: type-check declarations and lower function bodies of one package.

PackageBuilder runs in phases over all files of a package:

    1. imports          resolve every import spec to a Package through the importer
    2. type names       declare a Named for every package-level type spec
    3. type bodies      resolve aliases, then underlying types of named types
    4. functions        signatures of functions and methods (methods attach to their receiver)
    5. values           package-level vars and consts; var initializers are lowered
                        into a synthetic init function
    6. bodies           lower every function and method body with FunctionBuilder

FunctionBuilder keeps local variables in SSA form directly: a variable maps to
the value last assigned to it, if/switch joins insert Phi nodes for variables
whose values differ between paths, and loop headers insert Phi nodes for
variables assigned in the loop body.

break and continue end the current path and hand its state to the enclosing
loop, switch or select (or the labelled one): breaks join the statement's exit,
continues join the loop's back edge. Statements after a jump are not lowered up
to the next label. goto is not followed; instead every variable is made opaque
at a label that some goto names.

Implicit conversions of concrete values to interface types (declarations,
assignments, call arguments, returns, composite literal fields) become
MakeInterface instructions. Syntax outside the supported subset is lowered to
opaque constants and logged at DEBUG.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

from tree_sitter import Node as TSNode

from ifacecheck.context import FileContext, get_line_col
from ifacecheck.parser import node_text
from ifacecheck.program import types as gotypes
from ifacecheck.program.ssa import (
    Alloc,
    BasicBlock,
    BinOp,
    Builtin,
    Call,
    CallCommon,
    Const,
    Convert,
    Extract,
    Field,
    FieldAddr,
    FreeVar,
    Function,
    Global,
    Index,
    Instruction,
    Lookup,
    MakeClosure,
    MakeInterface,
    Package,
    Parameter,
    Phi,
    Position,
    Return,
    Slice,
    Store,
    TypeAssert,
    UnOp,
    Value,
)
from ifacecheck.program.types import (
    INVALID,
    UNTYPED_NIL,
    Basic,
    Interface,
    MethodDecl,
    Named,
    Pointer,
    Signature,
    Struct,
    StructField,
    Tuple,
    Type,
    TypeName,
    deref,
    deref_named,
    is_interface,
)

logger = logging.getLogger(__name__)

Importer = Callable[[str], Package]

_BASIC_NAMES = (
    "bool string int int8 int16 int32 int64 uint uint8 uint16 uint32 uint64 uintptr "
    "float32 float64 complex64 complex128 byte rune"
).split()

UNIVERSE_TYPES: dict[str, Type] = {name: Basic(name) for name in _BASIC_NAMES}
UNIVERSE_TYPES["any"] = Interface()
UNIVERSE_TYPES["comparable"] = Interface()
UNIVERSE_TYPES["error"] = Named(
    "error",
    None,
    base=Interface(methods={"Error": Signature(results=[UNIVERSE_TYPES["string"]])}),
)

BUILTIN_FUNCS = frozenset(
    "append cap clear close complex copy delete imag len make max min new panic print println real recover".split()
)

_LITERAL_TYPES = {
    "int_literal": "int",
    "float_literal": "float64",
    "imaginary_literal": "complex128",
    "rune_literal": "rune",
    "interpreted_string_literal": "string",
    "raw_string_literal": "string",
}

_TYPE_NODES = frozenset(
    {
        "type_identifier",
        "qualified_type",
        "pointer_type",
        "slice_type",
        "array_type",
        "implicit_length_array_type",
        "map_type",
        "channel_type",
        "struct_type",
        "interface_type",
        "function_type",
        "parenthesized_type",
        "generic_type",
    }
)

_COMPARISON_OPS = frozenset({"==", "!=", "<", "<=", ">", ">=", "&&", "||"})

_SKIPPED = frozenset({"comment", "\n", ";"})

ScopeObject = Union[TypeName, Function, Global, Const]


def _named(node: Optional[TSNode]) -> list[TSNode]:
    """Named children without comments."""
    if node is None:
        return []
    return [c for c in node.named_children if c.type != "comment"]


def _unparen(node: TSNode) -> TSNode:
    while node.type == "parenthesized_expression" and _named(node):
        node = _named(node)[0]
    return node


def _specs(node: TSNode, kind: str) -> list[TSNode]:
    """var_spec / const_spec / type_spec children, looking through *_spec_list wrappers."""
    out: list[TSNode] = []
    for child in _named(node):
        if child.type == kind or (kind == "type_spec" and child.type == "type_alias"):
            out.append(child)
        elif child.type.endswith("_list"):
            out.extend(_specs(child, kind))
    return out


def stub_package_name(path: str) -> str:
    """Best guess at the package name of an import path that could not be loaded."""
    parts = [p for p in path.split("/") if p]
    if not parts:
        return path
    last = parts[-1]
    if len(parts) > 1 and last.startswith("v") and last[1:].isdigit():
        last = parts[-2]
    if ".v" in last:
        last = last.split(".v", 1)[0]
    if last.startswith("go-"):
        last = last[3:]
    return last.replace("-", "_").replace(".", "_")


class PackageBuilder:
    """Builds the scope, types and functions of one Package from its parsed files."""

    def __init__(self, package: Package, files: list[FileContext], importer: Importer) -> None:
        self.package = package
        self.files = files
        self.importer = importer
        self.file_imports: dict[str, dict[str, Package]] = {}
        self.dot_imports: dict[str, list[Package]] = {}
        self._bodies: list[tuple[Function, TSNode, FileContext]] = []
        self._init: Optional[Function] = None

    def build(self) -> Package:
        self._resolve_imports()
        self._declare_type_names()
        self._resolve_type_bodies()
        self._declare_functions()
        self._declare_values()
        for fn, body, file in self._bodies:
            FunctionBuilder(self, fn, file).build(body)
        if self._init is not None and any(True for _ in self._init.instructions()):
            self.package.functions.append(self._init)
        logger.info(
            "Built %s: %d scope object(s), %d function(s), %d import(s)",
            self.package,
            len(self.package.scope),
            len(self.package.src_functions()),
            len(self.package.imports),
        )
        return self.package

    # imports

    def _resolve_imports(self) -> None:
        seen: set[str] = set()
        for file in self.files:
            names: dict[str, Package] = {}
            dots: list[Package] = []
            for spec in file.imports:
                imported = self.importer(spec.path)
                if spec.path not in seen:
                    seen.add(spec.path)
                    self.package.imports.append(imported)
                if spec.name == "_":
                    continue
                if spec.name == ".":
                    dots.append(imported)
                    continue
                names[spec.name or imported.name] = imported
            self.file_imports[str(file.path)] = names
            self.dot_imports[str(file.path)] = dots

    def imported(self, file: FileContext, name: str) -> Optional[Package]:
        return self.file_imports.get(str(file.path), {}).get(name)

    # types

    def _declare_type_names(self) -> None:
        for file in self.files:
            for decl in _named(file.root_node):
                if decl.type != "type_declaration":
                    continue
                for spec in _specs(decl, "type_spec"):
                    name = node_text(spec.child_by_field_name("name"))
                    if not name or name == "_":
                        continue
                    if spec.type == "type_alias":
                        tn = TypeName(name, INVALID, self.package.path)
                    else:
                        tn = TypeName(name, Named(name, self.package.path), self.package.path)
                    self._define(name, tn)

    def _resolve_type_bodies(self) -> None:
        pending: list[tuple[TypeName, TSNode, FileContext, bool]] = []
        for file in self.files:
            for decl in _named(file.root_node):
                if decl.type != "type_declaration":
                    continue
                for spec in _specs(decl, "type_spec"):
                    tn = self.package.lookup(node_text(spec.child_by_field_name("name")))
                    if isinstance(tn, TypeName):
                        pending.append((tn, spec, file, spec.type == "type_alias"))
        for tn, spec, file, alias in pending:
            if alias:
                tn.type = self.resolve_type(spec.child_by_field_name("type"), file)
        for tn, spec, file, alias in pending:
            if not alias and isinstance(tn.type, Named):
                tn.type.base = self.resolve_type(spec.child_by_field_name("type"), file)

    def lookup_type_name(self, name: str, file: FileContext) -> Optional[Type]:
        obj = self.package.lookup(name)
        if isinstance(obj, TypeName):
            return obj.type
        for pkg in self.dot_imports.get(str(file.path), []):
            obj = pkg.lookup(name)
            if isinstance(obj, TypeName):
                return obj.type
        return UNIVERSE_TYPES.get(name)

    def qualified_type(self, pkg: Package, name: str) -> Type:
        obj = pkg.lookup(name)
        if isinstance(obj, TypeName):
            return obj.type
        if pkg.stub:
            # Unknown type of an unloaded package: a named type with no known structure.
            tn = TypeName(name, Named(name, pkg.path, base=INVALID), pkg.path)
            pkg.scope[name] = tn
            return tn.type
        logger.debug("Package %s has no type %s", pkg.path, name)
        return INVALID

    def resolve_type(self, node: Optional[TSNode], file: FileContext) -> Type:
        """Type denoted by a type expression node."""
        if node is None:
            return INVALID
        kind = node.type
        if kind in ("type_identifier", "identifier"):
            found = self.lookup_type_name(node_text(node), file)
            if found is None:
                logger.debug("Unknown type %s in %s", node_text(node), file.path)
                return INVALID
            return found
        if kind == "qualified_type":
            pkg = self.imported(file, node_text(node.child_by_field_name("package")))
            name = node_text(node.child_by_field_name("name"))
            if pkg is None:
                logger.debug("Unknown package in type %s in %s", node_text(node), file.path)
                return INVALID
            return self.qualified_type(pkg, name)
        if kind == "selector_expression":
            pkg = self.imported(file, node_text(node.child_by_field_name("operand")))
            if pkg is None:
                return INVALID
            return self.qualified_type(pkg, node_text(node.child_by_field_name("field")))
        if kind in ("pointer_type", "parenthesized_type", "parenthesized_expression"):
            inner = _named(node)
            if not inner:
                return INVALID
            elem = self.resolve_type(inner[0], file)
            return Pointer(elem) if kind == "pointer_type" else elem
        if kind == "unary_expression" and node_text(node.child_by_field_name("operator")) == "*":
            return Pointer(self.resolve_type(node.child_by_field_name("operand"), file))
        if kind == "slice_type":
            return gotypes.Slice(self.resolve_type(node.child_by_field_name("element"), file))
        if kind == "array_type":
            return gotypes.Array(
                self.resolve_type(node.child_by_field_name("element"), file),
                node_text(node.child_by_field_name("length")),
            )
        if kind == "implicit_length_array_type":
            return gotypes.Array(self.resolve_type(node.child_by_field_name("element"), file), "...")
        if kind == "map_type":
            return gotypes.Map(
                self.resolve_type(node.child_by_field_name("key"), file),
                self.resolve_type(node.child_by_field_name("value"), file),
            )
        if kind == "channel_type":
            return gotypes.Chan(self.resolve_type(node.child_by_field_name("value"), file))
        if kind == "struct_type":
            return self._struct_type(node, file)
        if kind == "interface_type":
            return self._interface_type(node, file)
        if kind == "function_type":
            return self.signature(node.child_by_field_name("parameters"), node.child_by_field_name("result"), file)
        if kind == "generic_type":
            return self.resolve_type(node.child_by_field_name("type"), file)
        logger.debug("Unsupported type syntax %s in %s", kind, file.path)
        return INVALID

    def _struct_type(self, node: TSNode, file: FileContext) -> Struct:
        fields: list[StructField] = []
        for decl_list in _named(node):
            if decl_list.type != "field_declaration_list":
                continue
            for decl in _named(decl_list):
                if decl.type != "field_declaration":
                    continue
                ftype = self.resolve_type(decl.child_by_field_name("type"), file)
                names = decl.children_by_field_name("name")
                if names:
                    for name in names:
                        fields.append(StructField(node_text(name), ftype))
                    continue
                # Embedded field: named after its type, optionally through '*'.
                if any(c.type == "*" for c in decl.children):
                    ftype = Pointer(ftype)
                base = deref_named(ftype)
                fname = base.name if base is not None else node_text(decl.child_by_field_name("type"))
                fields.append(StructField(fname, ftype, embedded=True))
        return Struct(fields)

    def _interface_type(self, node: TSNode, file: FileContext) -> Interface:
        iface = Interface()
        for elem in _named(node):
            if elem.type in ("method_elem", "method_spec"):
                name = node_text(elem.child_by_field_name("name"))
                iface.methods[name] = self.signature(
                    elem.child_by_field_name("parameters"), elem.child_by_field_name("result"), file
                )
            elif elem.type in ("type_elem", "constraint_elem"):
                for sub in _named(elem):
                    iface.embedded.append(self.resolve_type(sub, file))
            elif elem.type in ("type_identifier", "qualified_type", "interface_type_name"):
                target = _named(elem)[0] if elem.type == "interface_type_name" else elem
                iface.embedded.append(self.resolve_type(target, file))
        return iface

    def _params(self, node: Optional[TSNode], file: FileContext) -> list[tuple[str, Type, bool]]:
        """(name, type, variadic) per parameter of a parameter_list; name is "" when omitted."""
        out: list[tuple[str, Type, bool]] = []
        for decl in _named(node):
            if decl.type not in ("parameter_declaration", "variadic_parameter_declaration"):
                continue
            variadic = decl.type == "variadic_parameter_declaration"
            ptype = self.resolve_type(decl.child_by_field_name("type"), file)
            if variadic:
                ptype = gotypes.Slice(ptype)
            names = decl.children_by_field_name("name")
            if names:
                out.extend((node_text(n), ptype, variadic) for n in names)
            else:
                out.append(("", ptype, variadic))
        return out

    def signature(self, params: Optional[TSNode], result: Optional[TSNode], file: FileContext) -> Signature:
        plist = self._params(params, file)
        sig = Signature(params=[t for _, t, _ in plist], variadic=any(v for _, _, v in plist))
        if result is not None:
            if result.type == "parameter_list":
                sig.results = [t for _, t, _ in self._params(result, file)]
            else:
                sig.results = [self.resolve_type(result, file)]
        return sig

    # functions and package-level values

    def _define(self, name: str, obj: ScopeObject) -> None:
        if name in self.package.scope:
            logger.debug("%s redeclared in %s", name, self.package.path)
        self.package.scope[name] = obj

    def position(self, node: TSNode, file: FileContext) -> Position:
        line, column = get_line_col(node)
        return Position(str(file.path), line, column)

    def _declare_functions(self) -> None:
        for file in self.files:
            for decl in _named(file.root_node):
                if decl.type == "function_declaration":
                    self._declare_function(decl, file)
                elif decl.type == "method_declaration":
                    self._declare_method(decl, file)

    def _declare_function(self, decl: TSNode, file: FileContext) -> None:
        name = node_text(decl.child_by_field_name("name"))
        sig = self.signature(decl.child_by_field_name("parameters"), decl.child_by_field_name("result"), file)
        fn = Function(name=name, signature=sig, package_path=self.package.path, pos=self.position(decl, file))
        if name not in ("init", "_"):
            self._define(name, fn)
        self.package.functions.append(fn)
        body = decl.child_by_field_name("body")
        if body is not None:
            self._bodies.append((fn, decl, file))

    def _declare_method(self, decl: TSNode, file: FileContext) -> None:
        name = node_text(decl.child_by_field_name("name"))
        sig = self.signature(decl.child_by_field_name("parameters"), decl.child_by_field_name("result"), file)
        receivers = self._params(decl.child_by_field_name("receiver"), file)
        recv_type = receivers[0][1] if receivers else INVALID
        fn = Function(
            name=name,
            signature=sig,
            package_path=self.package.path,
            pos=self.position(decl, file),
            receiver_type=recv_type,
        )
        named = deref_named(recv_type)
        if named is not None and named.package_path == self.package.path:
            named.methods[name] = MethodDecl(name, sig, isinstance(recv_type, Pointer), fn)
        else:
            logger.debug("Method %s has unresolved receiver %s", name, recv_type)
        self.package.functions.append(fn)
        if decl.child_by_field_name("body") is not None:
            self._bodies.append((fn, decl, file))

    def _declare_values(self) -> None:
        for file in self.files:
            for decl in _named(file.root_node):
                if decl.type == "const_declaration":
                    self._declare_consts(decl, file)
        for file in self.files:
            for decl in _named(file.root_node):
                if decl.type == "var_declaration":
                    for spec in _specs(decl, "var_spec"):
                        self._declare_globals(spec, file)

    def _declare_consts(self, decl: TSNode, file: FileContext) -> None:
        last_type: Type = Basic("int")
        for spec in _specs(decl, "const_spec"):
            tnode = spec.child_by_field_name("type")
            values = _named(spec.child_by_field_name("value"))
            if tnode is not None:
                last_type = self.resolve_type(tnode, file)
            elif values:
                last_type = UNIVERSE_TYPES.get(_LITERAL_TYPES.get(values[0].type, "int"), INVALID)
            for i, name_node in enumerate(spec.children_by_field_name("name")):
                name = node_text(name_node)
                if name == "_":
                    continue
                text = node_text(values[i]) if i < len(values) else None
                self._define(name, Const(text, last_type, self.position(name_node, file)))

    def _declare_globals(self, spec: TSNode, file: FileContext) -> None:
        if self._init is None:
            self._init = Function(
                name="init",
                signature=Signature(),
                package_path=self.package.path,
                synthetic="package initializer",
            )
            self._init.new_block("entry")
        names = [n for n in spec.children_by_field_name("name")]
        tnode = spec.child_by_field_name("type")
        declared = self.resolve_type(tnode, file) if tnode is not None else None
        builder = FunctionBuilder(self, self._init, file)
        builder.block = self._init.blocks[-1]
        values: list[Value] = []
        vnode = spec.child_by_field_name("value")
        if vnode is not None:
            values = builder.rhs_values(vnode, len(names))
        for i, name_node in enumerate(names):
            name = node_text(name_node)
            value = values[i] if i < len(values) else None
            vtype = declared if declared is not None else (value.type if value is not None else INVALID)
            glob = Global(name, Pointer(vtype), self.package.path, self.position(name_node, file))
            if name != "_":
                self._define(name, glob)
            if value is not None:
                builder.emit(Store(glob, builder.convert(value, vtype), glob.pos))


@dataclass(eq=False)
class _Variable:
    name: str
    type: Type


State = dict[_Variable, Value]

_JUMP_TARGETS = frozenset(
    {"for_statement", "expression_switch_statement", "type_switch_statement", "select_statement"}
)
_LABELS = frozenset({"labeled_statement", "empty_labeled_statement"})


@dataclass(eq=False)
class _Target:
    """A loop, switch or select that break (and, for loops, continue) can leave."""

    kind: str
    label: str = ""
    breaks: list[State] = field(default_factory=list)
    continues: list[State] = field(default_factory=list)


def _goto_labels(body: Optional[TSNode]) -> set[str]:
    """Labels named by goto statements in body, function literals excluded."""
    labels: set[str] = set()
    pending = [body] if body is not None else []
    while pending:
        current = pending.pop()
        if current.type == "func_literal":
            continue
        if current.type == "goto_statement":
            labels.update(node_text(c) for c in _named(current) if c.type == "label_name")
            continue
        pending.extend(current.named_children)
    return labels


class FunctionBuilder:
    """Lowers one function body; nested function literals get their own builder."""

    def __init__(
        self,
        pkg: PackageBuilder,
        fn: Function,
        file: FileContext,
        outer: Optional[FunctionBuilder] = None,
    ) -> None:
        self.pkg = pkg
        self.fn = fn
        self.file = file
        self.outer = outer
        self.scopes: list[dict[str, _Variable]] = [{}]
        self.current: State = {}
        self.free_vars: dict[str, FreeVar] = {}
        self.terminated = False
        self.block: Optional[BasicBlock] = None
        self.targets: list[_Target] = []
        self.goto_labels: set[str] = set()
        self.pending_label = ""
        self.fallthrough: Optional[State] = None

    # setup

    def build(self, decl: TSNode) -> Function:
        self.block = self.fn.new_block("entry")
        receivers = self.pkg._params(decl.child_by_field_name("receiver"), self.file)
        params = self.pkg._params(decl.child_by_field_name("parameters"), self.file)
        for name, ptype, _ in receivers + params:
            param = Parameter(name, ptype, self.fn.pos)
            self.fn.params.append(param)
            if name and name != "_":
                self.current[self.declare(name, ptype)] = param
        result = decl.child_by_field_name("result")
        if result is not None and result.type == "parameter_list":
            for name, rtype, _ in self.pkg._params(result, self.file):
                if name and name != "_":
                    self.current[self.declare(name, rtype)] = self.zero(rtype)
        body = decl.child_by_field_name("body")
        self.goto_labels = _goto_labels(body)
        self.stmts(body)
        logger.debug(
            "Lowered %s: %d block(s), %d instruction(s)",
            self.fn.full_name(),
            len(self.fn.blocks),
            sum(len(b.instrs) for b in self.fn.blocks),
        )
        return self.fn

    def pos(self, node: TSNode) -> Position:
        return self.pkg.position(node, self.file)

    def emit(self, instr: Instruction):
        assert self.block is not None
        return self.block.emit(instr)

    def declare(self, name: str, vtype: Type) -> _Variable:
        var = _Variable(name, vtype)
        self.scopes[-1][name] = var
        return var

    def lookup_var(self, name: str) -> Optional[_Variable]:
        for scope in reversed(self.scopes):
            if name in scope:
                return scope[name]
        return None

    def _outer_var(self, name: str) -> Optional[_Variable]:
        outer = self.outer
        while outer is not None:
            var = outer.lookup_var(name)
            if var is not None:
                return var
            outer = outer.outer
        return None

    def zero(self, vtype: Type) -> Const:
        return Const(None, vtype)

    def unsupported(self, node: TSNode, what: str) -> Const:
        logger.debug("Unsupported %s %s at %s", what, node.type, self.pos(node))
        return Const(node_text(node), INVALID, self.pos(node))

    # conversions

    def convert(self, value: Value, target: Optional[Type]) -> Value:
        """Implicit conversion of value for assignment to a location of type target."""
        if target is None or target is INVALID or not is_interface(target):
            return value
        if isinstance(value, Const) and value.type is UNTYPED_NIL:
            return Const(None, target, value.pos)
        if is_interface(value.type):
            if value.type is target:
                return value
            return self.emit(Convert(value, target, value.pos))
        return self.emit(MakeInterface(value, target, value.pos))

    def conversion(self, value: Value, target: Type, pos: Position) -> Value:
        """Explicit conversion T(x)."""
        if is_interface(target):
            if isinstance(value, Const) and value.type is UNTYPED_NIL:
                return Const(None, target, pos)
            if not is_interface(value.type):
                return self.emit(MakeInterface(value, target, pos))
        return self.emit(Convert(value, target, pos))

    # statements

    def stmts(self, container: Optional[TSNode]) -> None:
        self.stmt_list(_named(container))

    def stmt_list(self, children: list[TSNode]) -> None:
        for child in children:
            if child.type == "statement_list":
                self.stmts(child)
            elif self.terminated and not self._is_goto_target(child):
                # Unreachable: the path ended in return, break, continue or goto.
                continue
            else:
                self.stmt(child)

    def _is_goto_target(self, node: TSNode) -> bool:
        if node.type not in _LABELS:
            return False
        label = node.child_by_field_name("label")
        return label is not None and node_text(label) in self.goto_labels

    def stmt(self, node: TSNode) -> None:
        handler = getattr(self, f"_stmt_{node.type}", None)
        if handler is None:
            self.unsupported(node, "statement")
            return
        handler(node)

    def _stmt_block(self, node: TSNode) -> None:
        self.scopes.append({})
        self.stmts(node)
        self.scopes.pop()

    def _stmt_empty_statement(self, node: TSNode) -> None:
        pass

    # jumps

    def _jump_target(self, node: TSNode, loops_only: bool) -> Optional[_Target]:
        labels = [c for c in _named(node) if c.type == "label_name"]
        label = node_text(labels[0]) if labels else ""
        for target in reversed(self.targets):
            if label:
                if target.label == label:
                    return target
            elif not loops_only or target.kind == "loop":
                return target
        logger.debug("No enclosing statement for %s at %s", node.type, self.pos(node))
        return None

    def _stmt_break_statement(self, node: TSNode) -> None:
        target = self._jump_target(node, loops_only=False)
        if target is not None:
            target.breaks.append(dict(self.current))
        self.terminated = True

    def _stmt_continue_statement(self, node: TSNode) -> None:
        target = self._jump_target(node, loops_only=True)
        if target is not None:
            target.continues.append(dict(self.current))
        self.terminated = True

    def _stmt_goto_statement(self, node: TSNode) -> None:
        # Values carried by the jump are dropped at the label, see _stmt_labeled_statement.
        self.terminated = True

    def _stmt_fallthrough_statement(self, node: TSNode) -> None:
        self.fallthrough = dict(self.current)
        self.terminated = True

    def _take_label(self) -> str:
        label, self.pending_label = self.pending_label, ""
        return label

    def _forget_values(self, node: TSNode) -> None:
        """Make every variable opaque; a goto may arrive here with any values."""
        self.block = self.fn.new_block("label")
        self.terminated = False
        pos = self.pos(node)
        for var in list(self.current):
            self.current[var] = Const(var.name, var.type, pos)

    def _stmt_type_declaration(self, node: TSNode) -> None:
        self.unsupported(node, "local declaration")

    def _stmt_expression_statement(self, node: TSNode) -> None:
        for child in _named(node):
            self.expr(child)

    def _stmt_go_statement(self, node: TSNode) -> None:
        # The call is lowered like any other call; its goroutine is not modelled.
        for child in _named(node):
            self.expr(child)

    _stmt_defer_statement = _stmt_go_statement

    def _stmt_labeled_statement(self, node: TSNode) -> None:
        label = node.child_by_field_name("label")
        if self._is_goto_target(node):
            self._forget_values(node)
        for child in _named(node):
            if label is not None and child == label:
                continue
            if label is not None and child.type in _JUMP_TARGETS:
                self.pending_label = node_text(label)
            self.stmt(child)
            self.pending_label = ""

    _stmt_empty_labeled_statement = _stmt_labeled_statement

    def _stmt_send_statement(self, node: TSNode) -> None:
        self.expr(node.child_by_field_name("channel"))
        self.expr(node.child_by_field_name("value"))

    def _stmt_receive_statement(self, node: TSNode) -> None:
        right = node.child_by_field_name("right")
        left = node.child_by_field_name("left")
        value = self.expr(right)
        if left is not None:
            targets = _named(left)
            if targets:
                self._bind_or_assign(targets[0], value, define=any(c.type == ":=" for c in node.children))

    def _stmt_inc_statement(self, node: TSNode) -> None:
        target = _named(node)[0]
        value = self.expr(target)
        var = self.lookup_var(node_text(target)) if target.type == "identifier" else None
        if var is not None:
            self.current[var] = self.emit(BinOp("+", value, Const("1", value.type), value.type, self.pos(node)))

    _stmt_dec_statement = _stmt_inc_statement

    def _stmt_const_declaration(self, node: TSNode) -> None:
        for spec in _specs(node, "const_spec"):
            tnode = spec.child_by_field_name("type")
            values = _named(spec.child_by_field_name("value"))
            for i, name_node in enumerate(spec.children_by_field_name("name")):
                value = self.expr(values[i]) if i < len(values) else Const(None, INVALID)
                ctype = self.pkg.resolve_type(tnode, self.file) if tnode is not None else value.type
                text = node_text(values[i]) if i < len(values) else None
                self.current[self.declare(node_text(name_node), ctype)] = Const(text, ctype, self.pos(name_node))

    def _stmt_var_declaration(self, node: TSNode) -> None:
        for spec in _specs(node, "var_spec"):
            names = spec.children_by_field_name("name")
            tnode = spec.child_by_field_name("type")
            declared = self.pkg.resolve_type(tnode, self.file) if tnode is not None else None
            vnode = spec.child_by_field_name("value")
            values = self.rhs_values(vnode, len(names)) if vnode is not None else []
            for i, name_node in enumerate(names):
                name = node_text(name_node)
                if i < len(values):
                    value = self.convert(values[i], declared)
                else:
                    value = self.zero(declared or INVALID)
                if name == "_":
                    continue
                vtype = declared if declared is not None else value.type
                self.current[self.declare(name, vtype)] = value

    def _stmt_short_var_declaration(self, node: TSNode) -> None:
        left = _named(node.child_by_field_name("left"))
        values = self.rhs_values(node.child_by_field_name("right"), len(left))
        for target, value in zip(left, values):
            self._bind_or_assign(target, value, define=True)

    def _bind_or_assign(self, target: TSNode, value: Value, define: bool) -> None:
        name = node_text(target)
        if define and target.type == "identifier":
            if name == "_":
                return
            existing = self.scopes[-1].get(name)
            if existing is not None:
                self.current[existing] = self.convert(value, existing.type)
            else:
                self.current[self.declare(name, value.type)] = value
            return
        self.assign(target, value)

    def _stmt_assignment_statement(self, node: TSNode) -> None:
        op = node_text(node.child_by_field_name("operator"))
        left = _named(node.child_by_field_name("left"))
        right = node.child_by_field_name("right")
        if op == "=":
            for target, value in zip(left, self.rhs_values(right, len(left))):
                self.assign(target, value)
            return
        rhs = [self.expr(r) for r in _named(right)]
        for target, value in zip(left, rhs):
            current = self.expr(target)
            self.assign(target, self.emit(BinOp(op.rstrip("="), current, value, current.type, self.pos(node))))

    def assign(self, target: TSNode, value: Value) -> None:
        target = _unparen(target)
        if target.type == "identifier":
            name = node_text(target)
            if name == "_":
                return
            var = self.lookup_var(name)
            if var is not None:
                self.current[var] = self.convert(value, var.type)
                return
            obj = self.pkg.package.lookup(name)
            if isinstance(obj, Global):
                self.emit(Store(obj, self.convert(value, deref(obj.type)), self.pos(target)))
            else:
                logger.debug("Assignment to %s at %s not modelled", name, self.pos(target))
            return
        if target.type == "selector_expression":
            operand = target.child_by_field_name("operand")
            fname = node_text(target.child_by_field_name("field"))
            pkg = self.package_of(operand)
            if pkg is not None:
                obj = pkg.lookup(fname)
                if isinstance(obj, Global):
                    self.emit(Store(obj, self.convert(value, deref(obj.type)), self.pos(target)))
                return
            base = self.expr(operand)
            path = gotypes.embedded_path(base.type, fname)
            if path is None:
                logger.debug("Unknown field %s at %s", fname, self.pos(target))
                return
            for f in path[:-1]:
                base = self.field_of(base, f, self.pos(target))
            last = path[-1]
            addr = self.emit(FieldAddr(base, last.name, Pointer(last.type), self.pos(target)))
            self.emit(Store(addr, self.convert(value, last.type), self.pos(target)))
            return
        if target.type == "unary_expression" and node_text(target.child_by_field_name("operator")) == "*":
            addr = self.expr(target.child_by_field_name("operand"))
            elem = addr.type.elem if isinstance(addr.type, Pointer) else None
            self.emit(Store(addr, self.convert(value, elem), self.pos(target)))
            return
        # Element stores (m[k] = v, s[i] = v) only evaluate their operands.
        self.expr(target)

    def _stmt_return_statement(self, node: TSNode) -> None:
        results = self.fn.signature.results
        exprs = [c for c in _named(node)]
        values: list[Value] = []
        if exprs:
            values = self.rhs_values(exprs[0], len(results) or 1) if exprs[0].type == "expression_list" else [self.expr(e) for e in exprs]
        converted = [self.convert(v, results[i] if i < len(results) else None) for i, v in enumerate(values)]
        self.emit(Return(converted, self.pos(node)))
        self.terminated = True

    # control flow

    def branch(self, start: State, comment: str, lower: Callable[[], None]) -> Optional[State]:
        """Lower one path starting from start; returns its end state, or None if it returned."""
        self.current = dict(start)
        self.terminated = False
        self.block = self.fn.new_block(comment)
        self.scopes.append({})
        lower()
        self.scopes.pop()
        return None if self.terminated else self.current

    def merge(self, states: list[Optional[State]], comment: str) -> None:
        """Join paths: variables with differing values get a Phi in a new block."""
        live = [s for s in states if s is not None]
        self.block = self.fn.new_block(comment)
        if not live:
            self.terminated = True
            return
        merged: State = {}
        for var, first in live[0].items():
            if not all(var in s for s in live[1:]):
                continue
            edges = [s[var] for s in live]
            if all(e is first for e in edges):
                merged[var] = first
            else:
                merged[var] = self.emit(Phi(edges, var.type, var.name))
        self.current = merged
        self.terminated = False

    def _stmt_if_statement(self, node: TSNode) -> None:
        self.scopes.append({})
        init = node.child_by_field_name("initializer")
        if init is not None:
            self.stmt(init)
        self.expr(node.child_by_field_name("condition"))
        start = dict(self.current)
        consequence = node.child_by_field_name("consequence")
        alternative = node.child_by_field_name("alternative")
        then_state = self.branch(start, "if.then", lambda: self.stmts(consequence))
        if alternative is not None:
            else_state = self.branch(start, "if.else", lambda: self.stmt(alternative))
        else:
            else_state = start
        self.merge([then_state, else_state], "if.done")
        self.scopes.pop()

    def _case_body(self, case: TSNode, skip: list[TSNode]) -> Callable[[], None]:
        def lower() -> None:
            self.stmt_list([c for c in _named(case) if not any(c == s for s in skip)])

        return lower

    def _stmt_expression_switch_statement(self, node: TSNode) -> None:
        target = _Target("switch", self._take_label())
        self.scopes.append({})
        init = node.child_by_field_name("initializer")
        if init is not None:
            self.stmt(init)
        value = node.child_by_field_name("value")
        if value is not None:
            self.expr(value)
        start = dict(self.current)
        states: list[Optional[State]] = []
        has_default = False
        falling: Optional[State] = None
        self.targets.append(target)
        for case in _named(node):
            if case.type not in ("expression_case", "default_case"):
                continue
            values = case.child_by_field_name("value") if case.type == "expression_case" else None
            for v in _named(values):
                self.expr(v)
            has_default = has_default or case.type == "default_case"
            case_start = start
            if falling is not None:
                self.merge([start, falling], "switch.fallthrough")
                case_start = self.current
            self.fallthrough = None
            comment = "switch.default" if case.type == "default_case" else "switch.body"
            states.append(self.branch(case_start, comment, self._case_body(case, [values] if values else [])))
            falling, self.fallthrough = self.fallthrough, None
        self.targets.pop()
        if not has_default:
            states.append(start)
        self.merge(states + target.breaks, "switch.done")
        self.scopes.pop()

    def _stmt_type_switch_statement(self, node: TSNode) -> None:
        target = _Target("switch", self._take_label())
        self.scopes.append({})
        init = node.child_by_field_name("initializer")
        if init is not None:
            self.stmt(init)
        alias_node = node.child_by_field_name("alias")
        alias = node_text(_named(alias_node)[0]) if _named(alias_node) else ""
        subject = self.expr(node.child_by_field_name("value"))
        start = dict(self.current)
        states: list[Optional[State]] = []
        has_default = False
        self.targets.append(target)
        for case in _named(node):
            if case.type not in ("type_case", "default_case"):
                continue
            type_nodes = case.children_by_field_name("type") if case.type == "type_case" else []
            bound: Value = subject
            if len(type_nodes) == 1 and node_text(type_nodes[0]) != "nil":
                asserted = self.pkg.resolve_type(type_nodes[0], self.file)
                bound = self.emit(TypeAssert(subject, asserted, asserted, pos=self.pos(type_nodes[0])))
            has_default = has_default or case.type == "default_case"
            body = self._case_body(case, list(type_nodes))

            def lower(bound: Value = bound, body: Callable[[], None] = body) -> None:
                if alias and alias != "_":
                    self.current[self.declare(alias, bound.type)] = bound
                body()

            states.append(self.branch(start, "typeswitch.body", lower))
        self.targets.pop()
        if not has_default:
            states.append(start)
        self.merge(states + target.breaks, "typeswitch.done")
        self.scopes.pop()

    def _stmt_select_statement(self, node: TSNode) -> None:
        target = _Target("select", self._take_label())
        start = dict(self.current)
        states: list[Optional[State]] = []
        self.targets.append(target)
        for case in _named(node):
            if case.type not in ("communication_case", "default_case"):
                continue
            comm = case.child_by_field_name("communication")
            skip = [comm] if comm is not None else []

            def lower(comm: Optional[TSNode] = comm, body: Callable[[], None] = self._case_body(case, skip)) -> None:
                if comm is not None:
                    self.stmt(comm)
                body()

            states.append(self.branch(start, "select.body", lower))
        self.targets.pop()
        self.merge((states or [start]) + target.breaks, "select.done")

    def _assigned_names(self, node: Optional[TSNode]) -> set[str]:
        """Identifiers assigned with = or ++/-- anywhere under node, closures excluded."""
        names: set[str] = set()
        if node is None:
            return names
        pending = [node]
        while pending:
            current = pending.pop()
            if current.type == "func_literal":
                continue
            if current.type == "assignment_statement":
                for target in _named(current.child_by_field_name("left")):
                    if target.type == "identifier":
                        names.add(node_text(target))
            elif current.type in ("inc_statement", "dec_statement"):
                for target in _named(current):
                    if target.type == "identifier":
                        names.add(node_text(target))
            pending.extend(current.named_children)
        return names

    def _stmt_for_statement(self, node: TSNode) -> None:
        target = _Target("loop", self._take_label())
        self.scopes.append({})
        body = node.child_by_field_name("body")
        clause: Optional[TSNode] = None
        condition: Optional[TSNode] = None
        for child in _named(node):
            if body is not None and child == body:
                continue
            if child.type in ("for_clause", "range_clause"):
                clause = child
            else:
                condition = child
        update: Optional[TSNode] = None
        if clause is not None and clause.type == "for_clause":
            init = clause.child_by_field_name("initializer")
            if init is not None:
                self.stmt(init)
            condition = clause.child_by_field_name("condition")
            update = clause.child_by_field_name("update")
        elif clause is not None:
            self._range_clause(clause)
        ranged = clause is not None and clause.type == "range_clause"

        assigned = self._assigned_names(body) | self._assigned_names(update)
        self.block = self.fn.new_block("for.loop")
        phis: dict[_Variable, Phi] = {}
        for name in sorted(assigned):
            var = self.lookup_var(name)
            if var is None or var not in self.current or var in phis:
                continue
            phi = self.emit(Phi([self.current[var]], var.type, var.name))
            phis[var] = phi
            self.current[var] = phi
        if condition is not None:
            self.expr(condition)
        header = dict(self.current)

        self.targets.append(target)
        end = self.branch(header, "for.body", lambda: self.stmts(body))
        self.targets.pop()
        back = [s for s in [end, *target.continues] if s is not None]
        if back:
            self.merge(back, "for.post")
            if update is not None:
                self.stmt(update)
            for var, phi in phis.items():
                phi.edges.append(self.current.get(var, phi))
        # Without a condition or range clause the loop is left only through break.
        exits: list[Optional[State]] = [header if condition is not None or ranged else None]
        self.merge(exits + target.breaks, "for.done")
        self.scopes.pop()

    def _range_clause(self, clause: TSNode) -> None:
        subject = self.expr(clause.child_by_field_name("right"))
        under = deref(subject.type).underlying()
        if isinstance(under, gotypes.Map):
            kinds: list[Type] = [under.key, under.elem]
        elif isinstance(under, (gotypes.Slice, gotypes.Array)):
            kinds = [UNIVERSE_TYPES["int"], under.elem]
        elif isinstance(under, gotypes.Chan):
            kinds = [under.elem]
        elif isinstance(under, Basic) and under.name == "string":
            kinds = [UNIVERSE_TYPES["int"], UNIVERSE_TYPES["rune"]]
        else:
            kinds = [INVALID, INVALID]
        left = clause.child_by_field_name("left")
        if left is None:
            return
        define = any(c.type == ":=" for c in clause.children)
        for i, target in enumerate(_named(left)):
            vtype = kinds[i] if i < len(kinds) else INVALID
            element = self.emit(Index(subject, Const(None, INVALID), vtype, self.pos(target)))
            self._bind_or_assign(target, element, define)

    # expressions

    def rhs_values(self, node: Optional[TSNode], count: int) -> list[Value]:
        """Values of an expression list on the right of an assignment of count targets."""
        exprs = [node] if node is not None and node.type != "expression_list" else _named(node)
        if len(exprs) == 1 and count > 1:
            return self.multi_value(exprs[0], count)
        return [self.expr(e) for e in exprs]

    def multi_value(self, node: TSNode, count: int) -> list[Value]:
        """Results of a single expression assigned to several targets."""
        inner = _unparen(node)
        boolean = UNIVERSE_TYPES["bool"]
        if inner.type == "type_assertion_expression":
            x = self.expr(inner.child_by_field_name("operand"))
            asserted = self.pkg.resolve_type(inner.child_by_field_name("type"), self.file)
            tup = self.emit(TypeAssert(x, asserted, Tuple([asserted, boolean]), True, self.pos(inner)))
        elif inner.type == "index_expression":
            m = self.expr(inner.child_by_field_name("operand"))
            key = self.expr(inner.child_by_field_name("index"))
            under = m.type.underlying()
            elem = under.elem if isinstance(under, gotypes.Map) else INVALID
            tup = self.emit(Lookup(m, key, Tuple([elem, boolean]), True, self.pos(inner)))
        elif inner.type == "unary_expression" and node_text(inner.child_by_field_name("operator")) == "<-":
            ch = self.expr(inner.child_by_field_name("operand"))
            under = ch.type.underlying()
            elem = under.elem if isinstance(under, gotypes.Chan) else INVALID
            tup = self.emit(UnOp("<-", ch, Tuple([elem, boolean]), self.pos(inner)))
        else:
            tup = self.expr(node)
        types = tup.type.types if isinstance(tup.type, Tuple) else []
        return [
            self.emit(Extract(tup, i, types[i] if i < len(types) else INVALID, tup.pos))
            for i in range(count)
        ]

    def expr(self, node: Optional[TSNode]) -> Value:
        if node is None:
            return Const(None, INVALID)
        if node.type in _LITERAL_TYPES:
            return Const(node_text(node), UNIVERSE_TYPES[_LITERAL_TYPES[node.type]], self.pos(node))
        handler = getattr(self, f"_expr_{node.type}", None)
        if handler is None:
            return self.unsupported(node, "expression")
        return handler(node)

    def _expr_parenthesized_expression(self, node: TSNode) -> Value:
        inner = _named(node)
        return self.expr(inner[0]) if inner else Const(None, INVALID)

    def _expr_nil(self, node: TSNode) -> Value:
        return Const(None, UNTYPED_NIL, self.pos(node))

    def _expr_true(self, node: TSNode) -> Value:
        return Const(node_text(node), UNIVERSE_TYPES["bool"], self.pos(node))

    _expr_false = _expr_true

    def _expr_iota(self, node: TSNode) -> Value:
        return Const("iota", UNIVERSE_TYPES["int"], self.pos(node))

    def _expr_identifier(self, node: TSNode) -> Value:
        name = node_text(node)
        pos = self.pos(node)
        if name == "_":
            return Const(None, INVALID, pos)
        var = self.lookup_var(name)
        if var is not None:
            return self.current.get(var, self.zero(var.type))
        outer = self._outer_var(name)
        if outer is not None:
            if name not in self.free_vars:
                self.free_vars[name] = FreeVar(name, outer.type, pos)
            return self.free_vars[name]
        obj = self.pkg.package.lookup(name)
        if obj is None:
            for dotted in self.pkg.dot_imports.get(str(self.file.path), []):
                obj = dotted.lookup(name)
                if obj is not None:
                    break
        if obj is not None:
            return self.object_value(obj, pos)
        if name == "nil":
            return Const(None, UNTYPED_NIL, pos)
        if name in ("true", "false"):
            return Const(name, UNIVERSE_TYPES["bool"], pos)
        if name == "iota":
            return Const("iota", UNIVERSE_TYPES["int"], pos)
        if name in BUILTIN_FUNCS:
            return Builtin(name, INVALID, pos)
        logger.debug("Unresolved identifier %s at %s", name, pos)
        return Const(name, INVALID, pos)

    def object_value(self, obj: ScopeObject, pos: Position) -> Value:
        if isinstance(obj, Global):
            return self.emit(UnOp("*", obj, deref(obj.type), pos))
        if isinstance(obj, TypeName):
            logger.debug("Type %s used as a value at %s", obj.name, pos)
            return Const(obj.name, INVALID, pos)
        return obj

    def package_of(self, operand: Optional[TSNode]) -> Optional[Package]:
        """The imported package an operand names, unless a local shadows it."""
        if operand is None or operand.type != "identifier":
            return None
        name = node_text(operand)
        if self.lookup_var(name) is not None or self._outer_var(name) is not None:
            return None
        return self.pkg.imported(self.file, name)

    def package_member(self, pkg: Package, name: str, pos: Position) -> Value:
        obj = pkg.lookup(name)
        if obj is None:
            logger.debug("Unknown member %s.%s at %s", pkg.path, name, pos)
            return Const(f"{pkg.path}.{name}", INVALID, pos)
        return self.object_value(obj, pos)

    def field_of(self, base: Value, f: StructField, pos: Position) -> Value:
        """Read field f of base: Field for struct values, FieldAddr plus load through pointers."""
        if isinstance(base.type, Pointer):
            addr = self.emit(FieldAddr(base, f.name, Pointer(f.type), pos))
            return self.emit(UnOp("*", addr, f.type, pos))
        return self.emit(Field(base, f.name, f.type, pos))

    def _expr_selector_expression(self, node: TSNode) -> Value:
        operand = node.child_by_field_name("operand")
        name = node_text(node.child_by_field_name("field"))
        pos = self.pos(node)
        pkg = self.package_of(operand)
        if pkg is not None:
            return self.package_member(pkg, name, pos)
        base = self.expr(operand)
        path = gotypes.embedded_path(base.type, name)
        if path is not None:
            for f in path:
                base = self.field_of(base, f, pos)
            return base
        logger.debug("Method value %s.%s at %s lowered as opaque", base.type, name, pos)
        return Const(name, INVALID, pos)

    def denoted_type(self, node: Optional[TSNode]) -> Optional[Type]:
        """The type a node denotes when used where an expression may also appear, else None."""
        if node is None:
            return None
        if node.type in _TYPE_NODES:
            return self.pkg.resolve_type(node, self.file)
        if node.type == "identifier":
            name = node_text(node)
            if self.lookup_var(name) is not None or self._outer_var(name) is not None:
                return None
            obj = self.pkg.package.lookup(name)
            if obj is not None:
                return obj.type if isinstance(obj, TypeName) else None
            return self.pkg.lookup_type_name(name, self.file)
        if node.type == "selector_expression":
            pkg = self.package_of(node.child_by_field_name("operand"))
            if pkg is None:
                return None
            obj = pkg.lookup(node_text(node.child_by_field_name("field")))
            return obj.type if isinstance(obj, TypeName) else None
        if node.type == "parenthesized_expression":
            inner = _named(node)
            return self.denoted_type(inner[0]) if inner else None
        if node.type == "unary_expression" and node_text(node.child_by_field_name("operator")) == "*":
            elem = self.denoted_type(node.child_by_field_name("operand"))
            return Pointer(elem) if elem is not None else None
        return None

    def _expr_type_conversion_expression(self, node: TSNode) -> Value:
        target = self.pkg.resolve_type(node.child_by_field_name("type"), self.file)
        return self.conversion(self.expr(node.child_by_field_name("operand")), target, self.pos(node))

    def _call_args(self, arg_nodes: list[TSNode], sig: Optional[Signature], spread: bool) -> list[Value]:
        values = [self.expr(a) for a in arg_nodes]
        if len(values) == 1 and isinstance(values[0].type, Tuple) and len(values[0].type) > 1:
            # f(g()) with a multi-value g.
            tup = values[0]
            values = [self.emit(Extract(tup, i, t, tup.pos)) for i, t in enumerate(tup.type.types)]
        if sig is None:
            return values
        out: list[Value] = []
        for i, value in enumerate(values):
            ptype: Optional[Type] = None
            if sig.variadic and i >= len(sig.params) - 1 and not spread:
                last = sig.params[-1] if sig.params else None
                ptype = last.elem if isinstance(last, gotypes.Slice) else None
            elif i < len(sig.params):
                ptype = sig.params[i]
            out.append(self.convert(value, ptype))
        return out

    def _expr_call_expression(self, node: TSNode) -> Value:
        fnode = node.child_by_field_name("function")
        args_node = node.child_by_field_name("arguments")
        pos = self.pos(node)
        arg_nodes: list[TSNode] = []
        spread = False
        for arg in _named(args_node):
            if arg.type == "variadic_argument":
                spread = True
                arg = _named(arg)[0]
            arg_nodes.append(arg)
        if args_node is not None and any(c.type == "..." for c in args_node.children):
            spread = True

        target = self.denoted_type(fnode)
        if target is not None:
            if not arg_nodes:
                return Const(None, target, pos)
            return self.conversion(self.expr(arg_nodes[0]), target, pos)

        if fnode is not None and fnode.type == "identifier":
            name = node_text(fnode)
            if name in BUILTIN_FUNCS and self.lookup_var(name) is None and self.pkg.package.lookup(name) is None:
                return self._builtin_call(name, arg_nodes, pos)

        if fnode is not None and fnode.type == "selector_expression":
            operand = fnode.child_by_field_name("operand")
            if self.package_of(operand) is None:
                method = node_text(fnode.child_by_field_name("field"))
                return self._method_call(self.expr(operand), method, arg_nodes, spread, pos)

        callee = self.expr(fnode)
        sig = callee.type if isinstance(callee.type, Signature) else None
        args = self._call_args(arg_nodes, sig, spread)
        rtype = sig.result_type() if sig is not None else INVALID
        return self.emit(Call(CallCommon(callee, args, signature=sig), rtype, pos))

    def _method_call(
        self, recv: Value, method: str, arg_nodes: list[TSNode], spread: bool, pos: Position
    ) -> Value:
        """Lower recv.method(args): invoke through interfaces, static call on concrete types."""
        recv = self._method_receiver(recv, method, pos)
        if is_interface(recv.type):
            iface = recv.type.underlying()
            assert isinstance(iface, Interface)
            sig = iface.lookup(method)
            args = self._call_args(arg_nodes, sig, spread)
            rtype = sig.result_type() if sig is not None else INVALID
            return self.emit(Call(CallCommon(recv, args, method=method, signature=sig), rtype, pos))

        decl = gotypes.lookup_method(recv.type, method)
        if decl is not None:
            if decl.pointer_receiver and not isinstance(recv.type, Pointer):
                recv = self.emit(UnOp("&", recv, Pointer(recv.type), pos))
            elif not decl.pointer_receiver and isinstance(recv.type, Pointer):
                recv = self.emit(UnOp("*", recv, recv.type.elem, pos))
            target: Value = decl.function if decl.function is not None else Builtin(method, decl.signature, pos)
            args = [recv] + self._call_args(arg_nodes, decl.signature, spread)
            return self.emit(
                Call(CallCommon(target, args, signature=decl.signature), decl.signature.result_type(), pos)
            )

        path = gotypes.embedded_path(recv.type, method)
        if path is None:
            logger.debug("Unknown method %s on %s at %s", method, recv.type, pos)
            args = [recv] + self._call_args(arg_nodes, None, spread)
            return self.emit(Call(CallCommon(Const(method, INVALID, pos), args), INVALID, pos))

        # Call through a func-typed field.
        fn_value = recv
        for f in path:
            fn_value = self.field_of(fn_value, f, pos)
        under = fn_value.type.underlying()
        fn_sig = under if isinstance(under, Signature) else None
        args = self._call_args(arg_nodes, fn_sig, spread)
        rtype = fn_sig.result_type() if fn_sig is not None else INVALID
        return self.emit(Call(CallCommon(fn_value, args, signature=fn_sig), rtype, pos))

    def _method_receiver(self, recv: Value, method: str, pos: Position, depth: int = 0) -> Value:
        """Follow embedded fields to the value that actually declares method."""
        named = deref_named(recv.type)
        if is_interface(recv.type) or (named is not None and method in named.methods) or depth > 8:
            return recv
        under = deref(recv.type).underlying()
        if not isinstance(under, Struct):
            return recv
        for f in under.fields:
            if not f.embedded:
                continue
            if is_interface(f.type):
                iface = f.type.underlying()
                if isinstance(iface, Interface) and iface.lookup(method) is not None:
                    return self.field_of(recv, f, pos)
            elif method in gotypes.method_set(Pointer(deref(f.type))):
                return self._method_receiver(self.field_of(recv, f, pos), method, pos, depth + 1)
        return recv

    def _builtin_call(self, name: str, arg_nodes: list[TSNode], pos: Position) -> Value:
        if name == "new":
            elem = self.denoted_type(arg_nodes[0]) if arg_nodes else None
            return self.emit(Alloc(Pointer(elem or INVALID), "new", pos))
        args: list[Value] = []
        rtype: Type = Tuple([])
        if name == "make":
            rtype = (self.denoted_type(arg_nodes[0]) if arg_nodes else None) or INVALID
            args = [self.expr(a) for a in arg_nodes[1:]]
        else:
            args = [self.expr(a) for a in arg_nodes]
            if name in ("len", "cap", "copy"):
                rtype = UNIVERSE_TYPES["int"]
            elif name in ("append", "min", "max"):
                rtype = args[0].type if args else INVALID
            elif name in ("real", "imag"):
                rtype = UNIVERSE_TYPES["float64"]
            elif name == "complex":
                rtype = UNIVERSE_TYPES["complex128"]
            elif name == "recover":
                rtype = UNIVERSE_TYPES["any"]
        return self.emit(Call(CallCommon(Builtin(name, INVALID, pos), args), rtype, pos))

    def _expr_unary_expression(self, node: TSNode) -> Value:
        op = node_text(node.child_by_field_name("operator"))
        operand = node.child_by_field_name("operand")
        pos = self.pos(node)
        if op == "&" and operand is not None and _unparen(operand).type == "composite_literal":
            return self.composite(_unparen(operand), addressed=True)
        x = self.expr(operand)
        if op == "&":
            return self.emit(UnOp("&", x, Pointer(x.type), pos))
        if op == "*":
            rtype = x.type.elem if isinstance(x.type, Pointer) else INVALID
        elif op == "<-":
            under = x.type.underlying()
            rtype = under.elem if isinstance(under, gotypes.Chan) else INVALID
        else:
            rtype = x.type
        return self.emit(UnOp(op, x, rtype, pos))

    def _expr_binary_expression(self, node: TSNode) -> Value:
        op = node_text(node.child_by_field_name("operator"))
        x = self.expr(node.child_by_field_name("left"))
        y = self.expr(node.child_by_field_name("right"))
        rtype = UNIVERSE_TYPES["bool"] if op in _COMPARISON_OPS else x.type
        return self.emit(BinOp(op, x, y, rtype, self.pos(node)))

    def _expr_type_assertion_expression(self, node: TSNode) -> Value:
        x = self.expr(node.child_by_field_name("operand"))
        asserted = self.pkg.resolve_type(node.child_by_field_name("type"), self.file)
        return self.emit(TypeAssert(x, asserted, asserted, pos=self.pos(node)))

    def _expr_index_expression(self, node: TSNode) -> Value:
        x = self.expr(node.child_by_field_name("operand"))
        index = self.expr(node.child_by_field_name("index"))
        under = deref(x.type).underlying()
        pos = self.pos(node)
        if isinstance(under, gotypes.Map):
            return self.emit(Lookup(x, index, under.elem, pos=pos))
        if isinstance(under, (gotypes.Slice, gotypes.Array)):
            return self.emit(Index(x, index, under.elem, pos))
        if isinstance(under, Basic) and under.name == "string":
            return self.emit(Index(x, index, UNIVERSE_TYPES["byte"], pos))
        return self.emit(Index(x, index, INVALID, pos))

    def _expr_slice_expression(self, node: TSNode) -> Value:
        x = self.expr(node.child_by_field_name("operand"))
        under = deref(x.type).underlying()
        rtype = gotypes.Slice(under.elem) if isinstance(under, gotypes.Array) else x.type
        return self.emit(Slice(x, rtype, self.pos(node)))

    def _expr_composite_literal(self, node: TSNode) -> Value:
        return self.composite(node, addressed=False)

    def composite(self, node: TSNode, addressed: bool, implied: Optional[Type] = None) -> Value:
        """Composite literal: an Alloc with a store per element, loaded unless addressed."""
        tnode = node.child_by_field_name("type")
        ctype = self.pkg.resolve_type(tnode, self.file) if tnode is not None else (implied or INVALID)
        body = node.child_by_field_name("body") if node.type == "composite_literal" else node
        pos = self.pos(node)
        alloc = self.emit(Alloc(Pointer(ctype), "complit", pos))
        self._fill(alloc, ctype, body)
        if addressed:
            return alloc
        return self.emit(UnOp("*", alloc, ctype, pos))

    def _element(self, node: TSNode, expected: Type) -> Value:
        if node.type == "literal_element":
            inner = _named(node)
            if not inner:
                return Const(None, INVALID)
            node = inner[0]
        if node.type == "literal_value":
            # Elided element type: {..} stands for T{..} or &T{..}.
            if isinstance(expected, Pointer):
                return self.composite(node, addressed=True, implied=expected.elem)
            return self.composite(node, addressed=False, implied=expected)
        return self.convert(self.expr(node), expected)

    def _fill(self, alloc: Alloc, ctype: Type, body: Optional[TSNode]) -> None:
        under = ctype.underlying()
        elements = _named(body)
        for i, element in enumerate(elements):
            if element.type == "keyed_element":
                key = element.child_by_field_name("key")
                value = element.child_by_field_name("value")
                if key is None or value is None:
                    parts = _named(element)
                    if len(parts) < 2:
                        continue
                    key, value = parts[0], parts[1]
                if isinstance(under, Struct):
                    fname = node_text(_named(key)[0] if key.type == "literal_element" and _named(key) else key)
                    f = under.lookup(fname)
                    if f is None:
                        logger.debug("Unknown field %s in literal at %s", fname, self.pos(element))
                        continue
                    self._store_field(alloc, f, self._element(value, f.type), element)
                else:
                    if isinstance(under, gotypes.Map):
                        self._element(key, under.key)
                    self._element(value, self._element_type(under))
                continue
            if isinstance(under, Struct):
                if i < len(under.fields):
                    f = under.fields[i]
                    self._store_field(alloc, f, self._element(element, f.type), element)
                continue
            self._element(element, self._element_type(under))

    def _element_type(self, under: Type) -> Type:
        if isinstance(under, (gotypes.Slice, gotypes.Array, gotypes.Map)):
            return under.elem
        return INVALID

    def _store_field(self, alloc: Alloc, f: StructField, value: Value, node: TSNode) -> None:
        pos = self.pos(node)
        addr = self.emit(FieldAddr(alloc, f.name, Pointer(f.type), pos))
        self.emit(Store(addr, value, pos))

    def _expr_func_literal(self, node: TSNode) -> Value:
        sig = self.pkg.signature(node.child_by_field_name("parameters"), node.child_by_field_name("result"), self.file)
        anon = Function(
            name=f"func{len(self.fn.anon_funcs) + 1}",
            signature=sig,
            package_path=self.fn.package_path,
            pos=self.pos(node),
            parent=self.fn,
        )
        self.fn.anon_funcs.append(anon)
        FunctionBuilder(self.pkg, anon, self.file, outer=self).build(node)
        return self.emit(MakeClosure(anon, sig, self.pos(node)))
