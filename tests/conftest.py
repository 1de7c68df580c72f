"""
Pytest configuration and fixtures for nyumba tests.

Markers:
    @pytest.mark.cache - Cache tier and store tests
    @pytest.mark.search - Search structure tests
    @pytest.mark.cli - Command-line tests
    @pytest.mark.slow - Tests that take longer to run

Usage:
    pytest -m cache              # Run only cache tests
    pytest -m "not slow"         # Skip slow tests
"""

import pytest
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "cache: Cache tier and store tests")
    config.addinivalue_line("markers", "search: Search structure tests")
    config.addinivalue_line("markers", "cli: Command-line tests")
    config.addinivalue_line("markers", "slow: Slow-running tests")


def pytest_collection_modifyitems(config, items):
    """Auto-apply markers based on test file names and test names."""
    for item in items:
        basename = item.fspath.basename
        if "cache" in basename:
            item.add_marker(pytest.mark.cache)
        if "search" in basename:
            item.add_marker(pytest.mark.search)
        if "cli" in basename:
            item.add_marker(pytest.mark.cli)

        test_name = item.name.lower()
        if "large" in test_name or "stress" in test_name or "thread" in test_name:
            item.add_marker(pytest.mark.slow)


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    """Provide a controllable millisecond clock."""
    return FakeClock()


@pytest.fixture
def sample_listings():
    """Provide a handful of listings in the shape the API returns."""
    return [
        {
            "id": "p1",
            "title": "Modern House",
            "city": "Mbeya",
            "amenities": ["Parking", "Garden"],
            "location": {"latitude": -8.9094, "longitude": 33.4608},
        },
        {
            "id": "p2",
            "title": "Cozy Apartment",
            "city": "Dar es Salaam",
            "amenities": ["Wifi"],
            "location": {"latitude": -6.7924, "longitude": 39.2083},
        },
        {
            "id": "p3",
            "title": "Modest Bungalow",
            "location": {"city": "Dodoma", "latitude": -6.1630, "longitude": 35.7516},
            "amenities": ["Parking"],
        },
        {
            "id": "p4",
            "title": "Sea View Studio",
            "city": "Dar es Salaam",
            "amenities": [],
            "lat": -6.7950,
            "lng": 39.2100,
        },
    ]
