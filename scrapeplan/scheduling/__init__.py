from scrapeplan.scheduling.cron import (
    calculate_next_run,
    is_valid_cron_expression,
    is_valid_cron_field,
    matches_cron_field,
)

__all__ = [
    "calculate_next_run",
    "is_valid_cron_expression",
    "is_valid_cron_field",
    "matches_cron_field",
]
