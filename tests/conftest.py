import os
import sys

import pytest

# Make the package and the byte builder importable when run from a checkout
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from hprof_factory import HprofBuilder  # noqa: E402


@pytest.fixture
def hprof():
    """Builder for a dump with 4-byte identifiers."""
    return HprofBuilder(identifier_size=4)


@pytest.fixture(params=[4, 8], ids=["id4", "id8"])
def any_hprof(request):
    """Builder parametrized over both identifier sizes."""
    return HprofBuilder(identifier_size=request.param)
