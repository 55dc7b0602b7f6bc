"""Container execution: images, credentials proxy, updater and job runner."""

from depsync.runner.job_runner import JobRunner, JobRunnerImagingError, JobRunnerUpdaterError, run_job

__all__ = ["JobRunner", "JobRunnerImagingError", "JobRunnerUpdaterError", "run_job"]
