from .scheduler import next_month_start, next_run_at, run_monthly_scheduler

__all__ = ["next_month_start", "next_run_at", "run_monthly_scheduler"]
