from collections.abc import Callable
from dataclasses import FrozenInstanceError

import pytest

import fwdgen


def test_import_fwdgen_module_smoke() -> None:
    assert callable(fwdgen.main)


@pytest.mark.parametrize(
    ("text", "expected_name", "expected_system", "expected_view"),
    [
        ("<string>", "string", True, "<string>"),
        ("user1.h", "user1.h", False, '"user1.h"'),
        ('"user2.h"', "user2.h", False, '"user2.h"'),
    ],
)
def test_module_name_parse_and_view(
    text: str, expected_name: str, expected_system: bool, expected_view: str
) -> None:
    module = fwdgen.ModuleName.parse(text)

    assert module is not None
    assert module.name == expected_name
    assert module.system is expected_system
    assert module.view() == expected_view


@pytest.mark.parametrize("text", ["", None, "<>", '""'])
def test_module_name_parse_empty_means_no_module(text: str | None) -> None:
    assert fwdgen.ModuleName.parse(text) is None


def test_module_name_equality_is_by_name_and_kind() -> None:
    assert fwdgen.ModuleName.parse('"a.h"') == fwdgen.ModuleName.parse("a.h")
    assert fwdgen.ModuleName.parse("<a.h>") != fwdgen.ModuleName.parse("a.h")


def test_module_name_sort_key_puts_system_first_then_name() -> None:
    modules = [
        fwdgen.ModuleName("b.h"),
        fwdgen.ModuleName("vector", system=True),
        fwdgen.ModuleName("a.h"),
        fwdgen.ModuleName("string", system=True),
    ]

    ordered = sorted(modules, key=lambda m: m.sort_key)

    assert [m.view() for m in ordered] == ["<string>", "<vector>", '"a.h"', '"b.h"']


def test_descriptors_are_frozen() -> None:
    info = fwdgen.StructType(fwdgen.ModuleName("lib.h"))

    with pytest.raises(FrozenInstanceError):
        info.module = None  # type: ignore[misc]


@pytest.mark.parametrize(
    ("key", "path", "leaf"),
    [
        ("st1", (), "st1"),
        ("lib::st1", ("lib",), "st1"),
        ("lib::inn::inn::st1", ("lib", "inn", "inn"), "st1"),
        ("long long", (), "long long"),
    ],
)
def test_split_key_returns_namespace_path_and_leaf(
    key: str, path: tuple[str, ...], leaf: str
) -> None:
    assert fwdgen.split_key(key) == (path, leaf)
    assert fwdgen.join_key(path, leaf) == key


@pytest.mark.parametrize("key", ["", "lib::", "::st1", "lib:st1", "lib::::st1", "a:::b"])
def test_split_key_rejects_malformed_keys(key: str) -> None:
    with pytest.raises(fwdgen.CodegenError) as exc_info:
        fwdgen.split_key(key)

    assert exc_info.value.code == "INVALID_KEY_SYNTAX"


def test_codegen_error_rejects_unknown_code() -> None:
    with pytest.raises(ValueError):
        fwdgen.CodegenError("NOT_A_CODE", "x")


def test_codegen_error_message_names_key() -> None:
    err = fwdgen.CodegenError("KEY_NOT_FOUND", "lib::missing")

    assert err.key == "lib::missing"
    assert str(err) == "not found key: lib::missing"
    assert err.code in fwdgen.VALID_CODEGEN_ERROR_CODES


def test_function_type_empty_params_defaults_to_void_return() -> None:
    info = fwdgen.FunctionType()

    assert info.params == (fwdgen.FunctionParam("void"),)
    assert fwdgen.type_dependencies(info) == ["void"]


def test_function_param_rejects_negative_indirection() -> None:
    with pytest.raises(ValueError):
        fwdgen.FunctionParam("int", indirection=-1)


def test_function_dependencies_keep_order_duplicates_and_self(
    make_function: Callable[..., fwdgen.FunctionType],
) -> None:
    info = make_function("int", "lib::a", "lib::cb", "lib::a")

    assert fwdgen.type_dependencies(info) == ["int", "lib::a", "lib::cb", "lib::a"]


def test_class_and_struct_have_no_dependencies() -> None:
    assert fwdgen.type_dependencies(fwdgen.ClassType()) == []
    assert fwdgen.type_dependencies(fwdgen.StructType(template_params=("T",))) == []


def test_generic_and_external_flags() -> None:
    assert fwdgen.ClassType(template_params=("T",)).is_generic
    assert not fwdgen.ClassType().is_generic
    assert fwdgen.StructType(fwdgen.ModuleName("a.h")).is_external
    assert not fwdgen.FunctionType().is_external
    assert not fwdgen.FunctionType().is_generic


def test_check_type_rejects_generic_parameter(
    make_function: Callable[..., fwdgen.FunctionType],
) -> None:
    scheme = fwdgen.build_scheme(
        {
            "lib::box": fwdgen.StructType(template_params=("T",)),
            "lib::cb": make_function("void", "lib::box"),
        }
    )

    with pytest.raises(fwdgen.CodegenError) as exc_info:
        fwdgen.check_type("lib::cb", scheme["lib::cb"], scheme)

    assert exc_info.value.code == "GENERIC_PARAMETER"
    assert "lib::box" in exc_info.value.message


def test_check_type_accepts_plain_parameters(
    make_function: Callable[..., fwdgen.FunctionType],
) -> None:
    scheme = fwdgen.build_scheme(
        {"lib::st": fwdgen.StructType(), "lib::cb": make_function("void", "lib::st")}
    )

    fwdgen.check_type("lib::cb", scheme["lib::cb"], scheme)


def test_render_declaration_class_and_struct() -> None:
    assert fwdgen.render_declaration(fwdgen.ClassType(), "", "bar") == "class bar;"
    assert fwdgen.render_declaration(fwdgen.StructType(), "lib::", "st") == "struct st;"


def test_render_declaration_generic_preamble() -> None:
    info = fwdgen.StructType(template_params=("T1", "T2", "T3"))

    assert (
        fwdgen.render_declaration(info, "", "quick")
        == "template <typename T1, typename T2, typename T3> struct quick;"
    )


def test_render_declaration_function_strips_active_prefix(
    make_function: Callable[..., fwdgen.FunctionType],
) -> None:
    info = make_function(
        ("void", False, 1),
        "std::string",
        "lib::func1",
        ("lib::inn::st1", True, 1),
    )

    text = fwdgen.render_declaration(info, "lib::", "func1")

    assert text == "using func1 = void* (*)(std::string, func1, const inn::st1*);"


def test_render_declaration_function_without_arguments() -> None:
    info = fwdgen.FunctionType(params=(fwdgen.FunctionParam("int", True, 2),))

    assert fwdgen.render_declaration(info, "", "get") == "using get = const int** (*)();"


@pytest.mark.parametrize(
    ("key", "prefix", "expected"),
    [
        ("lib::st", "lib::", "st"),
        ("lib::st", "", "lib::st"),
        ("other::st", "lib::", "other::st"),
        ("lib::", "lib::", "lib::"),
    ],
)
def test_format_param_prefix_stripping(key: str, prefix: str, expected: str) -> None:
    assert fwdgen.format_param(fwdgen.FunctionParam(key), prefix) == expected


def test_type_kind_names_each_variant() -> None:
    assert fwdgen.type_kind(fwdgen.ClassType()) == "class"
    assert fwdgen.type_kind(fwdgen.StructType()) == "struct"
    assert fwdgen.type_kind(fwdgen.FunctionType()) == "function"


def test_class_and_struct_share_fields_but_stay_distinct() -> None:
    module = fwdgen.ModuleName("lib.h")

    class_info = fwdgen.ClassType(module, ("T",))
    struct_info = fwdgen.StructType(module, ("T",))

    assert class_info != struct_info
    assert fwdgen.type_kind(class_info) == "class"
    assert fwdgen.type_kind(struct_info) == "struct"
    for info in (class_info, struct_info):
        assert info.is_external is True
        assert info.is_generic is True
