import pytest
from loguru import logger


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "slow: marks test as slow running test")
    config.addinivalue_line(
        "markers", "hardware: marks test that require physical hardware"
    )


@pytest.fixture(autouse=True, scope="function")
def log(request):
    logger.warning("STARTED Test '{}'".format(request.node.originalname))

    def fin():
        logger.warning("COMPLETED Test '{}' \n".format(request.node.originalname))

    request.addfinalizer(fin)
