"""
Root conftest for all tests.

Unit tests (tests/unit/) replace language server processes with in-memory
fakes, so the suite runs without any language server installed.
"""


def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests (no external dependencies)"
    )
    config.addinivalue_line(
        "markers",
        "integration: marks tests that spawn a real language server process",
    )
