"""
Orchestration clients for Kubernetes job execution.
"""

from event_jobs.execution.executors.base import ConfigStore, JobExecutor
from event_jobs.execution.executors.k8s import K8sExecutor

__all__ = ["ConfigStore", "JobExecutor", "K8sExecutor"]
