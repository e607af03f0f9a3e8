"""Background workers."""

from visionlight.workers.job_sweep_worker import PollScheduler, run_job_sweep_worker, sweep_once

__all__ = ["PollScheduler", "run_job_sweep_worker", "sweep_once"]
