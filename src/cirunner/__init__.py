from .dsl import job, sh, checkout, restore_cache, save_cache
from .engine import PipelineEngine
from .model import Job, Checkout, RunCommand, RestoreCache, SaveCache, JobResult
from .workflow import load_job, job_from_dict, job_to_dict

__all__ = [
    "job",
    "sh",
    "checkout",
    "restore_cache",
    "save_cache",
    "PipelineEngine",
    "Job",
    "Checkout",
    "RunCommand",
    "RestoreCache",
    "SaveCache",
    "JobResult",
    "load_job",
    "job_from_dict",
    "job_to_dict",
]
