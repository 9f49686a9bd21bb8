"""Fixtures shared by the template engine tests."""

from typing import Any

import pytest

from fakes import FakeGuild, populated_guild, template_document


@pytest.fixture
def guild() -> FakeGuild:
    return FakeGuild()


@pytest.fixture
def source_guild() -> FakeGuild:
    return populated_guild()


@pytest.fixture
def template_doc() -> dict[str, Any]:
    return template_document()
