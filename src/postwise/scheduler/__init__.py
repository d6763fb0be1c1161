"""定时任务调度."""

from postwise.scheduler.tasks import SingleFlight, TaskScheduler, create_scheduler

__all__ = ["SingleFlight", "TaskScheduler", "create_scheduler"]
