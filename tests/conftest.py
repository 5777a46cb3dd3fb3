import argparse
import sys
import xml.etree.ElementTree as ET
from collections.abc import Callable
from pathlib import Path

import pytest

GENERATOR_DIR = Path(__file__).resolve().parent.parent
if str(GENERATOR_DIR) not in sys.path:
    sys.path.insert(0, str(GENERATOR_DIR))

import fwdgen  # noqa: E402

FIXTURES_DIR = Path(__file__).resolve().parent / "fixtures"


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES_DIR


@pytest.fixture
def sample_scheme_path() -> Path:
    return FIXTURES_DIR / "sample_scheme.xml"


@pytest.fixture
def sample_expected_text() -> str:
    return (FIXTURES_DIR / "sample_expected.h").read_text(encoding="utf-8")


@pytest.fixture
def existing_paths(tmp_path: Path) -> dict[str, Path]:
    scheme = tmp_path / "scheme.xml"
    scheme.write_text("<scheme />\n", encoding="utf-8")
    return {
        "scheme": scheme,
        "output": tmp_path / "out" / "forward.h",
    }


@pytest.fixture
def make_args(existing_paths: dict[str, Path]) -> Callable[..., argparse.Namespace]:
    def _make_args(**overrides: object) -> argparse.Namespace:
        base_args: dict[str, object] = {
            "scheme": existing_paths["scheme"],
            "include": None,
            "declare": None,
            "output": None,
            "verify": False,
            "list_keys": False,
            "filter": None,
        }
        base_args.update(overrides)
        return argparse.Namespace(**base_args)

    return _make_args


@pytest.fixture
def make_scheme_root() -> Callable[[str], ET.Element]:
    def _make_scheme_root(inner_xml: str) -> ET.Element:
        return ET.fromstring(f"<scheme>{inner_xml}</scheme>")

    return _make_scheme_root


@pytest.fixture
def make_function() -> Callable[..., fwdgen.FunctionType]:
    """Build a FunctionType from (key, is_const, indirection) tuples or bare keys."""

    def _make_function(*params: object, module: str = "") -> fwdgen.FunctionType:
        built: list[fwdgen.FunctionParam] = []
        for param in params:
            if isinstance(param, str):
                built.append(fwdgen.FunctionParam(param))
            else:
                built.append(fwdgen.FunctionParam(*param))
        return fwdgen.FunctionType(
            module=fwdgen.ModuleName.parse(module), params=tuple(built)
        )

    return _make_function


@pytest.fixture
def lib_entries(
    make_function: Callable[..., fwdgen.FunctionType],
) -> list[tuple[str, fwdgen.TypeInfo]]:
    """Two callbacks in `lib`, three structs in `lib::inn`, one system class."""
    lib_h = fwdgen.ModuleName.parse("lib.h")
    return [
        ("std::string", fwdgen.ClassType(fwdgen.ModuleName.parse("<string>"))),
        (
            "lib::func1",
            make_function(
                ("void", False, 1),
                "std::string",
                "lib::func1",
                ("lib::inn::st1", True, 1),
                module="funcs.h",
            ),
        ),
        (
            "lib::func2",
            make_function(
                ("void", False, 1),
                "std::string",
                "lib::func2",
                ("lib::inn::st2", True, 1),
                module="funcs.h",
            ),
        ),
        ("lib::inn::st3", fwdgen.StructType(lib_h)),
        ("lib::inn::st1", fwdgen.StructType(lib_h)),
        ("lib::inn::st2", fwdgen.StructType(lib_h)),
    ]


@pytest.fixture
def lib_codegen(lib_entries: list[tuple[str, fwdgen.TypeInfo]]) -> fwdgen.Codegen:
    return fwdgen.Codegen(lib_entries)


@pytest.fixture
def sample_codegen(sample_scheme_path: Path) -> fwdgen.Codegen:
    return fwdgen.codegen_from_document(
        fwdgen.load_scheme_document(sample_scheme_path)
    )
