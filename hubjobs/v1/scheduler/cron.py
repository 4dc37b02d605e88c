"""
Five-field cron expressions evaluated against UTC wall-clock time.
"""

from datetime import UTC, datetime

from croniter import CroniterError, croniter

from hubjobs.v1.core.exceptions import InvalidCronExpressionError

# How far ahead next_after() searches before declaring the expression dead
SEARCH_HORIZON_YEARS = 5


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class CronExpression:
    """
    A validated cron expression.

    Standard 5-field syntax (minute hour day_of_month month day_of_week) with
    lists, ranges, steps, three-letter names and 0/7 for Sunday. When both day
    fields are restricted a time matches if either of them does.
    """

    def __init__(self, expression: str):
        self.expression = " ".join(expression.split())

        # croniter also takes a seconds field and @-aliases; only 5 fields are allowed here
        if len(self.expression.split(" ")) != 5 or not croniter.is_valid(self.expression):
            raise InvalidCronExpressionError(
                f"Invalid cron expression: {expression!r}. "
                "Expected 5 fields (minute hour day month weekday)",
                {"expression": expression},
            )

    def next_after(self, after: datetime | None = None) -> datetime:
        """First fire time strictly after ``after`` (UTC, naive treated as UTC)."""
        start = _as_utc(after) if after is not None else datetime.now(UTC)
        try:
            fire_at = croniter(
                self.expression, start, max_years_between_matches=SEARCH_HORIZON_YEARS
            ).get_next(datetime)
        except CroniterError as e:
            raise InvalidCronExpressionError(
                f"Cron expression {self.expression!r} never fires",
                {"expression": self.expression},
            ) from e
        return _as_utc(fire_at)

    def __repr__(self) -> str:
        return f"CronExpression({self.expression!r})"


def validate_cron_expression(expression: str) -> CronExpression:
    """Parse an expression and make sure it fires at least once."""
    cron = CronExpression(expression)
    cron.next_after(datetime(2000, 1, 1, tzinfo=UTC))
    return cron
