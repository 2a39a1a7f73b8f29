from datetime import date

import pytest

from contribmirror import (
    Config,
    ContributionCalendar,
    Identity,
    RepositoryError,
)


class FakeRepository:
    """Records commits and fails on a chosen call number."""

    def __init__(self, fail_on_call=None):
        self.fail_on_call = fail_on_call
        self.calls = 0
        self.commits = []

    def commit(self, message, author, committer, allow_empty=True):
        self.calls += 1
        if self.fail_on_call is not None and self.calls == self.fail_on_call:
            raise RepositoryError("git commit failed: disk full")
        self.commits.append((message, author, committer, allow_empty))
        return f"{self.calls:040x}"


class FakeCalendarClient:
    """Returns a fixed calendar and remembers its queries."""

    def __init__(self, calendar):
        self.calendar = calendar
        self.queries = []

    def fetch(self, login, start, end):
        self.queries.append((login, start, end))
        return self.calendar


@pytest.fixture
def identity():
    return Identity(name="Jane Doe", email="jane@example.com")


@pytest.fixture
def fake_repository():
    return FakeRepository


@pytest.fixture
def sample_calendar():
    """Calendar with activity on Jan 1 and Jan 3 only."""
    return ContributionCalendar(
        weeks=[
            [("2021-01-01", 3), ("2021-01-02", 0)],
            [("2021-01-03", 2)],
        ],
        total_contributions=5,
    )


@pytest.fixture
def calendar_client():
    return FakeCalendarClient


@pytest.fixture
def fake_client(sample_calendar):
    return FakeCalendarClient(sample_calendar)


@pytest.fixture
def config(tmp_path):
    return Config(
        token="ghp_test",
        login="octocat",
        start_date=date(2021, 1, 1),
        end_date=date(2021, 1, 3),
        user_name="Jane Doe",
        user_email="jane@example.com",
        repo_path=tmp_path / "repo.octocat",
        branch="main",
        dry_run=False,
    )
