"""
Test configuration for MinRuby tests
"""

import io
import sys
from pathlib import Path

import pytest

# Add the project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from interpreter import make_global_env, make_local_env
from stdlib import create_builtin_bridge


@pytest.fixture
def out():
  """Captures everything the printing builtins write"""
  return io.StringIO()


@pytest.fixture
def genv(out):
  """A fresh function table whose builtins print into `out`"""
  return make_global_env(create_builtin_bridge(out=out))


@pytest.fixture
def lenv():
  return make_local_env()


@pytest.fixture
def examples_dir():
  return project_root / "examples"
