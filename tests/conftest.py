import pytest

from tests.fakes import FakeBuildClient, FakeClock, FakeFirewallClient


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def poll_options(clock):
    return {"clock": clock, "wait": clock.wait}


@pytest.fixture
def build_client():
    return FakeBuildClient()


@pytest.fixture
def firewall_client():
    return FakeFirewallClient()


@pytest.fixture
def build_properties():
    return {
        "project_name": "api-initial-build",
        "source_owner": "acme",
        "source_repo": "api",
        "source_branch": "main",
        "image_repository_name": "acme-api",
    }


@pytest.fixture
def firewall_properties():
    return {
        "app_id": "d1a2b3c4",
        "allowed_cidrs": ["10.0.0.1/32", "203.0.113.0/24"],
    }
