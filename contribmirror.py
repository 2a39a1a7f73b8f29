#!/usr/bin/env python3
"""
Contribmirror: replay a GitHub contribution calendar as backdated commits
"""

import argparse
import json
import os
import secrets
import subprocess
import sys
from dataclasses import dataclass, asdict, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple

import requests
from dotenv import load_dotenv

GITHUB_GRAPHQL = "https://api.github.com/graphql"
DATE_FORMAT = "%Y-%m-%d"
COMMIT_MESSAGE = "Private contribution"

# Working hours window: 08:00:00 - 19:59:59 UTC
WORK_START_HOUR = 8
WORK_HOURS = 12

# Stand-in for dates the calendar source sent in an unparseable form.
# Git timestamps cannot go earlier than the Unix epoch.
PLACEHOLDER_DATE = date(1970, 1, 1)
GIT_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

CONTRIBUTIONS_QUERY = """
query($login: String!, $from: DateTime!, $to: DateTime!) {
  user(login: $login) {
    contributionsCollection(from: $from, to: $to) {
      contributionCalendar {
        totalContributions
        weeks {
          contributionDays {
            contributionCount
            date
          }
        }
      }
    }
  }
}
"""


class CalendarFetchError(Exception):
    """Raised when the contribution calendar cannot be retrieved."""


class RepositoryError(Exception):
    """Raised when a Git operation fails."""


@dataclass(frozen=True)
class ContributionDay:
    """A calendar date with a non-zero contribution count."""

    date: date
    count: int


@dataclass(frozen=True)
class Signature:
    name: str
    email: str
    when: datetime


@dataclass(frozen=True)
class Identity:
    """Name and email used for both author and committer."""

    name: str
    email: str

    def sign(self, when: datetime) -> Signature:
        return Signature(name=self.name, email=self.email, when=when)


@dataclass
class Commit:
    """A single commit with timestamp and message."""

    timestamp: datetime
    message: str


@dataclass
class ContributionCalendar:
    """Contribution counts as returned by GitHub, grouped by week."""

    weeks: List[List[Tuple[str, int]]]
    total_contributions: int

    def entries(self) -> List[Tuple[str, int]]:
        """Flatten weeks into (date, count) pairs in source order."""
        return [entry for week in self.weeks for entry in week]


@dataclass
class DayResult:
    day: ContributionDay
    commits_made: int
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RunReport:
    """Outcome of replaying a list of contribution days."""

    results: List[DayResult] = field(default_factory=list)

    @property
    def total_commits(self) -> int:
        return sum(result.commits_made for result in self.results)

    @property
    def failed_days(self) -> List[DayResult]:
        return [result for result in self.results if not result.ok]


@dataclass
class Config:
    """Configuration for mirroring a contribution calendar."""

    # GitHub access
    token: str
    login: str

    # Inclusive date range
    start_date: date
    end_date: date

    # Git settings
    user_name: str
    user_email: str
    repo_path: Optional[Path]
    branch: str

    # Runtime options
    dry_run: bool

    def validate(self) -> None:
        """Validate all configuration parameters."""
        errors = []

        if not self.token:
            errors.append("token must be non-empty (use --token or GITHUB_TOKEN)")

        if not self.login:
            errors.append("login must be non-empty")

        if not self.user_name:
            errors.append("user_name must be non-empty")

        if not self.user_email:
            errors.append("user_email must be non-empty")

        if self.start_date > self.end_date:
            errors.append("start_date must be <= end_date")
        elif self.end_date >= _one_year_after(self.start_date):
            # GitHub rejects contributionsCollection ranges longer than a year
            errors.append("date range must span less than one year")

        if errors:
            raise ValueError(
                "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            )

    @property
    def identity(self) -> Identity:
        return Identity(name=self.user_name, email=self.user_email)

    @property
    def resolved_repo_path(self) -> Path:
        """Repository location, defaulting to ./repo.<login>."""
        if self.repo_path is not None:
            return self.repo_path
        return Path(f"repo.{self.login}")

    @staticmethod
    def deserialize(data: dict) -> "Config":
        """Load Config from dictionary with type conversions."""
        data = data.copy()

        for key in ["start_date", "end_date"]:
            if isinstance(data.get(key), str):
                data[key] = parse_date(data[key])

        if isinstance(data.get("repo_path"), str):
            data["repo_path"] = Path(data["repo_path"])

        return Config(**data)

    def serialize(self) -> dict:
        """Save Config to dictionary. The token is never written out."""
        data = asdict(self)
        del data["token"]
        data["start_date"] = self.start_date.strftime(DATE_FORMAT)
        data["end_date"] = self.end_date.strftime(DATE_FORMAT)
        data["repo_path"] = str(self.repo_path) if self.repo_path else None
        return data


class TimestampSampler:
    """Draws commit times inside the working hours window."""

    def __init__(self, randbelow: Callable[[int], int] = secrets.randbelow):
        self.randbelow = randbelow

    def sample(self, day: date) -> Tuple[datetime, bool]:
        """Return a UTC timestamp on ``day`` and whether any draw fell back.

        A failing random source never aborts sampling: the affected
        component is set to 0 instead.
        """
        hour_offset, hour_ok = self._draw(WORK_HOURS, "hour")
        minute, minute_ok = self._draw(60, "minute")
        second, second_ok = self._draw(60, "second")

        timestamp = datetime(
            day.year,
            day.month,
            day.day,
            WORK_START_HOUR + hour_offset,
            minute,
            second,
            tzinfo=timezone.utc,
        )
        return timestamp, not (hour_ok and minute_ok and second_ok)

    def _draw(self, upper: int, label: str) -> Tuple[int, bool]:
        try:
            return self.randbelow(upper), True
        except (OSError, NotImplementedError) as e:
            print(f"Failed to generate random {label}: {e}", file=sys.stderr)
            return 0, False


class CommitGenerator:
    """Turns contribution days into ordered commit timestamps."""

    def __init__(self, sampler: Optional[TimestampSampler] = None):
        self.sampler = sampler or TimestampSampler()
        self.degraded_slots = 0

    def schedule_day(self, day: date, count: int) -> List[datetime]:
        """Sample ``count`` timestamps on ``day``, oldest first."""
        timestamps = []
        for _ in range(count):
            timestamp, fell_back = self.sampler.sample(day)
            if fell_back:
                self.degraded_slots += 1
            timestamps.append(timestamp)

        return sorted(timestamps)

    def generate_schedule(self, days: Iterable[ContributionDay]) -> List[Commit]:
        """Generate the complete commit schedule without touching Git."""
        schedule = []
        for day in days:
            schedule.extend(
                Commit(timestamp=ts, message=COMMIT_MESSAGE)
                for ts in self.schedule_day(day.date, day.count)
            )

        return sorted(schedule, key=lambda c: c.timestamp)


def filter_calendar(
    entries: Iterable[Tuple[str, int]]
) -> Tuple[List[ContributionDay], List[str]]:
    """Keep days with activity, preserving order.

    Unparseable dates are kept with PLACEHOLDER_DATE and reported in the
    returned warnings so that no non-zero day is silently lost.
    """
    days = []
    warnings = []

    for date_str, count in entries:
        if count <= 0:
            continue

        try:
            day = parse_date(date_str)
        except (TypeError, ValueError):
            warnings.append(f"Failed to parse date {date_str!r}")
            day = PLACEHOLDER_DATE

        days.append(ContributionDay(date=day, count=count))

    return days, warnings


class CalendarClient:
    """Reads contribution calendars from the GitHub GraphQL API."""

    def __init__(
        self,
        token: str,
        session: Optional[requests.Session] = None,
        url: str = GITHUB_GRAPHQL,
        timeout: int = 30,
    ):
        self.token = token
        self.session = session or requests.Session()
        self.url = url
        self.timeout = timeout

    def fetch(self, login: str, start: date, end: date) -> ContributionCalendar:
        """Fetch the calendar for ``login`` between two dates, inclusive."""
        variables = {
            "login": login,
            "from": f"{start.strftime(DATE_FORMAT)}T00:00:00Z",
            "to": f"{end.strftime(DATE_FORMAT)}T23:59:59Z",
        }

        try:
            resp = self.session.post(
                self.url,
                json={"query": CONTRIBUTIONS_QUERY, "variables": variables},
                headers={"Authorization": f"Bearer {self.token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise CalendarFetchError(f"Failed to get contributions: {e}") from e

        if resp.status_code == 401:
            raise CalendarFetchError(
                "GitHub API returned 401. Check that your token has "
                "the 'read:user' scope."
            )
        if resp.status_code != 200:
            raise CalendarFetchError(
                f"GitHub API returned {resp.status_code}: {resp.text}"
            )

        payload = resp.json()
        if payload.get("errors"):
            raise CalendarFetchError(f"GraphQL errors: {payload['errors']}")

        user = (payload.get("data") or {}).get("user")
        if user is None:
            raise CalendarFetchError(f"GitHub user {login!r} not found")

        calendar = user["contributionsCollection"]["contributionCalendar"]
        weeks = [
            [(day["date"], int(day["contributionCount"])) for day in week["contributionDays"]]
            for week in calendar["weeks"]
        ]

        return ContributionCalendar(
            weeks=weeks, total_contributions=int(calendar["totalContributions"])
        )


class GitRepository:
    """Minimal Git working copy driven through the git executable."""

    def __init__(self, path: Path, branch: str = "main"):
        self.path = path
        self.branch = branch

    @classmethod
    def init_or_open(cls, path: Path, branch: str = "main") -> "GitRepository":
        """Open the repository at ``path``, creating it if absent."""
        repo = cls(path, branch)

        if (path / ".git").exists():
            repo._run_git(["git", "rev-parse", "--git-dir"])
            print(f"Opened repository {path}")
            count = repo.commit_count()
            if count > 0:
                print(f"  Current commits: {count}")
            repo.checkout_branch()
            return repo

        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise RepositoryError(f"Failed to create {path}: {e}") from e

        repo._run_git(["git", "init"])
        repo._run_git(["git", "symbolic-ref", "HEAD", f"refs/heads/{branch}"])
        print(f"Initialized repository {path}")
        return repo

    def commit(
        self,
        message: str,
        author: Signature,
        committer: Signature,
        allow_empty: bool = True,
    ) -> str:
        """Create a commit and return its hash."""
        env = os.environ.copy()
        env.update(
            {
                "GIT_AUTHOR_NAME": author.name,
                "GIT_AUTHOR_EMAIL": author.email,
                "GIT_AUTHOR_DATE": _git_date(author.when),
                "GIT_COMMITTER_NAME": committer.name,
                "GIT_COMMITTER_EMAIL": committer.email,
                "GIT_COMMITTER_DATE": _git_date(committer.when),
            }
        )

        cmd = ["git", "commit", "--no-gpg-sign", "-m", message]
        if allow_empty:
            cmd.insert(2, "--allow-empty")

        self._run_git(cmd, env=env)

        # The commit exists at this point; the hash is informational
        try:
            return self._run_git(["git", "rev-parse", "HEAD"]).strip()
        except RepositoryError as e:
            print(f"Committed but failed to read HEAD: {e}", file=sys.stderr)
            return ""

    def current_branch(self) -> Optional[str]:
        """Branch HEAD points at, or None when detached."""
        try:
            return self._run_git(["git", "symbolic-ref", "--short", "HEAD"]).strip()
        except RepositoryError:
            return None

    def checkout_branch(self) -> None:
        """Point HEAD at the configured branch, creating it from HEAD if needed."""
        if self.current_branch() == self.branch:
            return

        try:
            self._run_git(
                ["git", "rev-parse", "--verify", "--quiet", f"refs/heads/{self.branch}"]
            )
        except RepositoryError:
            self._run_git(["git", "checkout", "-b", self.branch])
        else:
            self._run_git(["git", "checkout", self.branch])
        print(f"Switched to branch {self.branch}")

    def commit_count(self) -> int:
        """Number of commits reachable from HEAD (0 for an unborn branch)."""
        try:
            output = self._run_git(["git", "rev-list", "--count", "HEAD"])
        except RepositoryError:
            return 0
        return int(output.strip())

    def _run_git(self, cmd: List[str], env: dict = None) -> str:
        """Run a Git command in the repository directory."""
        try:
            result = subprocess.run(
                cmd,
                cwd=self.path,
                env=env,
                check=True,
                capture_output=True,
                text=True,
            )
        except subprocess.CalledProcessError as e:
            raise RepositoryError(
                f"{' '.join(cmd[:2])} failed: {e.stderr.strip()}"
            ) from e
        except OSError as e:
            raise RepositoryError(f"{' '.join(cmd[:2])} failed: {e}") from e

        return result.stdout


class GitCommitter:
    """Writes contribution days into a repository as empty commits."""

    def __init__(
        self,
        repository: GitRepository,
        identity: Identity,
        generator: Optional[CommitGenerator] = None,
    ):
        self.repository = repository
        self.identity = identity
        self.generator = generator or CommitGenerator()

    def emit(self, day: ContributionDay) -> Tuple[int, Optional[RepositoryError]]:
        """Commit one day's activity.

        Stops at the first failing commit and returns the number of
        commits already made together with the error. Commits made before
        the failure are kept.
        """
        made = 0
        for when in self.generator.schedule_day(day.date, day.count):
            signature = self.identity.sign(when)
            try:
                self.repository.commit(
                    COMMIT_MESSAGE,
                    author=signature,
                    committer=signature,
                    allow_empty=True,
                )
            except RepositoryError as e:
                return made, e

            made += 1
            print(f"Committed {made}/{day.count} for {day.date} at {when.isoformat()}")

        return made, None

    def run(self, days: Iterable[ContributionDay]) -> RunReport:
        """Commit every day in order, carrying on past failed days."""
        report = RunReport()

        for day in days:
            made, error = self.emit(day)
            report.results.append(DayResult(day=day, commits_made=made, error=error))
            if error is not None:
                print(
                    f"Failed to make commits for day {day.date}: {error}",
                    file=sys.stderr,
                )

        return report


def summarize_schedule(schedule: List[Commit]) -> List[str]:
    """Render commit statistics for a dry run."""
    per_day = {}
    for commit in schedule:
        day = commit.timestamp.date()
        per_day[day] = per_day.get(day, 0) + 1

    active_days = len(per_day)
    avg_commits = len(schedule) / max(active_days, 1)

    lines = [
        "Statistics",
        f"  Total commits: {len(schedule)}",
        f"  Days with commits: {active_days}",
        f"  Average per active day: {avg_commits:.1f}",
        f"  Max commits in a day: {max(per_day.values(), default=0)}",
    ]
    if schedule:
        lines.append(f"  First commit: {schedule[0].timestamp.isoformat()}")
        lines.append(f"  Last commit: {schedule[-1].timestamp.isoformat()}")

    return lines


def run_backfill(
    config: Config,
    client: Optional[CalendarClient] = None,
    generator: Optional[CommitGenerator] = None,
) -> Optional[RunReport]:
    """Fetch the calendar and replay it into the configured repository.

    Returns None for a dry run. Fetch and repository setup failures
    propagate; per-day commit failures are collected in the report.
    """
    client = client or CalendarClient(config.token)
    generator = generator or CommitGenerator()

    calendar = client.fetch(config.login, config.start_date, config.end_date)
    print(
        f"Total contributions for user {config.login!r} between "
        f"{config.start_date} and {config.end_date}: {calendar.total_contributions}"
    )

    days, warnings = filter_calendar(calendar.entries())
    for warning in warnings:
        print(f"Warning: {warning}", file=sys.stderr)
    print(f"Days contributed: {len(days)}")

    if config.dry_run:
        schedule = generator.generate_schedule(days)
        print("\n" + "\n".join(summarize_schedule(schedule)))
        return None

    repository = GitRepository.init_or_open(config.resolved_repo_path, config.branch)
    committer = GitCommitter(repository, config.identity, generator)
    report = committer.run(days)

    print(f"\nSuccessfully created {report.total_commits} commits")
    if report.failed_days:
        print(f"Days with failures: {len(report.failed_days)}", file=sys.stderr)
    if generator.degraded_slots:
        print(
            f"Timestamps drawn with fallback values: {generator.degraded_slots}",
            file=sys.stderr,
        )
    print(f"Repository location: {repository.path}")

    return report


def create_default_config() -> Config:
    """Create default configuration covering the previous calendar year."""
    last_year = date.today().year - 1
    return Config(
        token=os.environ.get("GITHUB_TOKEN", ""),
        login="",
        start_date=date(last_year, 1, 1),
        end_date=date(last_year, 12, 31),
        user_name="",
        user_email="",
        repo_path=None,
        branch="main",
        dry_run=False,
    )


def parse_date(date_str: str) -> date:
    """Parse a YYYY-MM-DD date."""
    return datetime.strptime(date_str, DATE_FORMAT).date()


def _one_year_after(day: date) -> date:
    try:
        return day.replace(year=day.year + 1)
    except ValueError:
        # Feb 29 has no counterpart next year
        return date(day.year + 1, 3, 1)


def _git_date(when: datetime) -> str:
    """Format ``when`` in Git's internal "<seconds> <offset>" form."""
    if when < GIT_EPOCH:
        raise RepositoryError(f"Cannot record a commit dated before 1970: {when}")
    return f"{int(when.timestamp())} {when.strftime('%z')}"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="contribmirror",
        description="Contribmirror: replay a GitHub contribution calendar as backdated commits",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    # GitHub arguments
    parser.add_argument("--token", help="GitHub access token (default: $GITHUB_TOKEN)")
    parser.add_argument("--login", help="GitHub login whose calendar is mirrored")

    # Date arguments
    parser.add_argument("--start-date", help="Start date (YYYY-MM-DD)")
    parser.add_argument("--end-date", help="End date, inclusive (YYYY-MM-DD)")

    # Git arguments
    parser.add_argument("--user-name", help='Commit author name, "Name Surname"')
    parser.add_argument("--user-email", help="Commit author email")
    parser.add_argument(
        "--repo-path", type=Path, help="Path to Git repository (default: ./repo.LOGIN)"
    )
    parser.add_argument("--branch", help="Git branch name (default: main)")

    # Configuration file
    parser.add_argument("--config", type=Path, help="Load configuration from JSON")
    parser.add_argument("--save-config", type=Path, help="Save configuration to JSON")

    # Runtime options
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Fetch and schedule without making commits",
    )

    return parser


def load_config(args: argparse.Namespace) -> Config:
    """Load configuration from file or create default."""
    if args.config:
        with open(args.config) as f:
            config_dict = json.load(f)

        # Merge with defaults for missing fields
        default = create_default_config()
        default_dict = default.serialize()
        default_dict["token"] = default.token
        default_dict.update(config_dict)

        return Config.deserialize(default_dict)

    return create_default_config()


def apply_cli_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Apply command-line argument overrides to config."""
    if args.token:
        config.token = args.token

    if args.login:
        config.login = args.login

    if args.start_date:
        config.start_date = parse_date(args.start_date)

    if args.end_date:
        config.end_date = parse_date(args.end_date)

    if args.user_name:
        config.user_name = args.user_name

    if args.user_email:
        config.user_email = args.user_email

    if args.repo_path:
        config.repo_path = args.repo_path

    if args.branch:
        config.branch = args.branch

    if args.dry_run:
        config.dry_run = True

    return config


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()

    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = apply_cli_overrides(load_config(args), args)
        config.validate()
    except (OSError, TypeError, ValueError) as e:
        parser.error(str(e))

    if args.save_config:
        try:
            with open(args.save_config, "w") as f:
                json.dump(config.serialize(), f, indent=2)
        except OSError as e:
            parser.error(f"cannot save configuration: {e}")
        print(f"Configuration saved to {args.save_config}")

    try:
        run_backfill(config)
    except (CalendarFetchError, RepositoryError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
