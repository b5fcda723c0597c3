"""
Pytest configuration and shared fixtures for rcptd tests.

Provides:
- A temporary mail system (home directories, delivery map, static users)
- A loaded Config Store and Decision Engine over that mail system
- Custom pytest markers for test categorization
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import pytest
import yaml

from rcptd.resolver import (
    ConfigStore,
    DecisionEngine,
    DeliveryConfig,
    ResolverConfig,
    StaticUserConfig,
    StaticUserSource,
)


# ============================================================================
# Logging Configuration
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_logging() -> None:
    """Configure logging for tests."""
    logging.basicConfig(level=logging.DEBUG)


# ============================================================================
# Mail System Fixtures
# ============================================================================


DEFAULT_MAP: dict[str, Any] = {
    "local_domains": ["example.com"],
    "virtual_domains": {"example.net": "vhost"},
    "relay_domains": ["relay.example"],
    "accept_unknown_domains": False,
    "contexts": {
        "tenant-a": {"virtual_domains": {"customer.example": "tenant"}},
    },
}

DEFAULT_USERS = ("alice", "bob", "alias", "vhost", "tenant")


class MailSystem:
    """A throwaway qmail-like mail system rooted in a temporary directory."""

    def __init__(self, root: Path, users: tuple[str, ...], domain_map: dict[str, Any]) -> None:
        self.root = root
        self.homes: dict[str, Path] = {}
        for name in users:
            home = root / "home" / name
            home.mkdir(parents=True)
            self.homes[name] = home
        self.map_file = root / "map.yaml"
        self.write_map(domain_map)
        self.users = StaticUserSource(
            {name: StaticUserConfig(home=home) for name, home in self.homes.items()}
        )

    def write_map(self, domain_map: dict[str, Any]) -> None:
        self.map_file.write_text(yaml.safe_dump(domain_map))

    def dotfile(self, owner: str, filename: str, content: str = "") -> Path:
        path = self.homes[owner] / filename
        path.write_text(content)
        return path

    def delivery_config(self) -> DeliveryConfig:
        return DeliveryConfig(map_file=self.map_file)

    def store(self) -> ConfigStore:
        store = ConfigStore(self.delivery_config(), users=self.users)
        store.load()
        return store

    def engine(self, config: ResolverConfig | None = None, **kwargs: Any) -> DecisionEngine:
        return DecisionEngine(self.store(), config=config or ResolverConfig(**kwargs))


@pytest.fixture
def mail(tmp_path: Path) -> MailSystem:
    """Homes for alice, bob, alias, vhost and tenant plus the default map."""
    return MailSystem(tmp_path, DEFAULT_USERS, DEFAULT_MAP)


@pytest.fixture
def store(mail: MailSystem) -> ConfigStore:
    """A loaded Config Store over the ``mail`` fixture."""
    return mail.store()


@pytest.fixture
def engine(mail: MailSystem) -> DecisionEngine:
    """A Decision Engine with default settings over the ``mail`` fixture."""
    return mail.engine()


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: marks tests as unit tests (no external dependencies)")
    config.addinivalue_line("markers", "slow: marks tests as slow running")


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
