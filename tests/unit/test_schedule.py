from datetime import date, timezone
from itertools import cycle

import pytest

from contribmirror import CommitGenerator, ContributionDay, TimestampSampler


def failing_randbelow(upper):
    raise OSError("entropy source unavailable")


class TestTimestampSampler:
    """Test TimestampSampler class."""

    def test_sample_within_working_hours(self):
        sampler = TimestampSampler()
        day = date(2021, 6, 15)

        for _ in range(500):
            timestamp, fell_back = sampler.sample(day)
            assert not fell_back
            assert timestamp.date() == day
            assert 8 <= timestamp.hour <= 19
            assert 0 <= timestamp.minute <= 59
            assert 0 <= timestamp.second <= 59
            assert timestamp.microsecond == 0
            assert timestamp.tzinfo == timezone.utc

    def test_sample_extremes(self):
        low, _ = TimestampSampler(randbelow=lambda upper: 0).sample(date(2021, 1, 1))
        high, _ = TimestampSampler(randbelow=lambda upper: upper - 1).sample(
            date(2021, 1, 1)
        )

        assert (low.hour, low.minute, low.second) == (8, 0, 0)
        assert (high.hour, high.minute, high.second) == (19, 59, 59)

    def test_draw_bounds(self):
        requested = []

        def recording_randbelow(upper):
            requested.append(upper)
            return 0

        TimestampSampler(randbelow=recording_randbelow).sample(date(2021, 1, 1))

        assert requested == [12, 60, 60]

    def test_failed_draws_fall_back_to_zero(self, capsys):
        sampler = TimestampSampler(randbelow=failing_randbelow)

        timestamp, fell_back = sampler.sample(date(2021, 3, 4))

        assert fell_back
        assert timestamp.date() == date(2021, 3, 4)
        assert (timestamp.hour, timestamp.minute, timestamp.second) == (8, 0, 0)
        assert "Failed to generate random hour" in capsys.readouterr().err

    def test_single_failed_draw_keeps_others(self):
        def flaky_randbelow(upper):
            if upper == 12:
                raise NotImplementedError("no urandom")
            return 30

        timestamp, fell_back = TimestampSampler(randbelow=flaky_randbelow).sample(
            date(2021, 3, 4)
        )

        assert fell_back
        assert (timestamp.hour, timestamp.minute, timestamp.second) == (8, 30, 30)


class TestCommitGenerator:
    """Test CommitGenerator scheduling."""

    @pytest.mark.parametrize("count", [1, 2, 7, 40])
    def test_schedule_day_length_date_and_order(self, count):
        generator = CommitGenerator()
        day = date(2020, 2, 29)

        timestamps = generator.schedule_day(day, count)

        assert len(timestamps) == count
        assert all(ts.date() == day for ts in timestamps)
        assert timestamps == sorted(timestamps)

    def test_schedule_day_sorts_unordered_draws(self):
        # hour, minute, second draws for three samples
        draws = iter([11, 0, 0, 0, 0, 0, 5, 30, 0])
        sampler = TimestampSampler(randbelow=lambda upper: next(draws))

        timestamps = CommitGenerator(sampler).schedule_day(date(2021, 1, 1), 3)

        assert [ts.hour for ts in timestamps] == [8, 13, 19]

    def test_schedule_day_keeps_duplicates(self):
        sampler = TimestampSampler(randbelow=lambda upper: 1)

        timestamps = CommitGenerator(sampler).schedule_day(date(2021, 1, 1), 4)

        assert len(timestamps) == 4
        assert len(set(timestamps)) == 1

    def test_degraded_slots_counted(self):
        generator = CommitGenerator(TimestampSampler(randbelow=failing_randbelow))

        timestamps = generator.schedule_day(date(2021, 1, 1), 3)

        assert len(timestamps) == 3
        assert generator.degraded_slots == 3

    def test_generate_schedule(self):
        values = cycle([3, 17, 42])
        sampler = TimestampSampler(randbelow=lambda upper: next(values) % upper)
        generator = CommitGenerator(sampler)
        days = [
            ContributionDay(date(2021, 1, 3), 2),
            ContributionDay(date(2021, 1, 1), 3),
        ]

        schedule = generator.generate_schedule(days)

        assert len(schedule) == 5
        timestamps = [commit.timestamp for commit in schedule]
        assert timestamps == sorted(timestamps)
        assert [ts.date() for ts in timestamps].count(date(2021, 1, 1)) == 3
        assert all(commit.message == "Private contribution" for commit in schedule)
