# pylint: disable=redefined-outer-name
import pytest

from .helpers import create_model, importorskip

azb = importorskip("arviz_base")


@pytest.fixture(scope="session")
def centered_eight():
    """Fixture for centered_eight data."""
    return azb.load_arviz_data("centered_eight")


@pytest.fixture(scope="session")
def non_centered_eight():
    """Fixture for non_centered_eight data."""
    return azb.load_arviz_data("non_centered_eight")


@pytest.fixture(scope="module")
def models():
    """Fixture containing 2 mock inference data instances for testing."""
    # blank line to keep black and pydocstyle happy

    class Models:
        model_1 = create_model(seed=10)
        model_2 = create_model(seed=11, transpose=True)

    return Models()

