"""Unit tests for deployment naming patterns."""

from __future__ import annotations

import pytest

from devfleet.deploy.naming import NamingPattern
from devfleet.lib.errors import ConfigError


class TestNamingPattern:
    """Tests for NamingPattern."""

    def test_default_pattern(self) -> None:
        naming = NamingPattern("myapp")

        assert naming.format(1) == "myapp-1"
        assert naming.format(12) == "myapp-12"

    def test_zero_padded_index(self) -> None:
        """{index:03} pads to three digits."""
        naming = NamingPattern("myapp", "{service}-{index:03}")

        assert naming.format(7) == "myapp-007"
        assert naming.index_of("myapp-007") == 7

    def test_custom_layout(self) -> None:
        naming = NamingPattern("api", "dev.{index}.{service}")

        assert naming.format(2) == "dev.2.api"
        assert naming.index_of("dev.2.api") == 2
        assert naming.index_of("dev.2.web") is None

    def test_service_with_regex_metacharacters(self) -> None:
        """Dots in the service name are matched literally."""
        naming = NamingPattern("my.app")

        assert naming.index_of("my.app-3") == 3
        assert naming.index_of("myXapp-3") is None

    @pytest.mark.parametrize(
        "name",
        ["myapp", "myapp-", "myapp-x", "other-1", "myapp-1-extra"],
    )
    def test_index_of_non_matching(self, name: str) -> None:
        assert NamingPattern("myapp").index_of(name) is None

    def test_owns(self) -> None:
        """A service owns names that follow its pattern or carry its prefix."""
        naming = NamingPattern("myapp")

        assert naming.owns("myapp-1")
        assert naming.owns("myapp-old")
        assert not naming.owns("myapp2-1")
        assert not naming.owns("other-1")

    def test_next_index_skips_gaps(self) -> None:
        """Gaps are not refilled; numbering continues after the highest index."""
        naming = NamingPattern("svc")

        assert naming.next_index([]) == 1
        assert naming.next_index(["svc-1", "svc-3"]) == 4
        assert naming.next_index(["other-9", "svc-2"]) == 3

    def test_invalid_rendered_name(self) -> None:
        """A pattern that renders an invalid Docker name is rejected."""
        naming = NamingPattern("svc", "-{service}-{index}")

        with pytest.raises(ConfigError) as exc_info:
            naming.format(1)

        assert exc_info.value.field == "naming.pattern"
