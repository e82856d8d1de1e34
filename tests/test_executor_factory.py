"""Tests for executor selection."""

from judgecore.config import Config
from judgecore.executor_base import LanguageExecutor
from judgecore.executor_factory import create_executor
from judgecore.executor_native import NativeExecutor
from judgecore.executor_script import ScriptExecutor
from judgecore.models import Language


def test_script_language():
    executor = create_executor(Language.PYTHON, Config())
    assert isinstance(executor, ScriptExecutor)
    assert isinstance(executor, LanguageExecutor)


def test_native_languages():
    config = Config(c_compiler="clang", cpp_compiler="clang++")
    c = create_executor(Language.C, config)
    cpp = create_executor(Language.CPP, config)
    assert isinstance(c, NativeExecutor) and c.compiler == "clang"
    assert isinstance(cpp, NativeExecutor) and cpp.compiler == "clang++"
    assert isinstance(cpp, LanguageExecutor)
