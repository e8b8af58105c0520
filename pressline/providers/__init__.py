"""External collaborators: generation providers, WordPress, Slack and the podcast host."""

from .base import (
    ApprovalRequest,
    GenerationProvider,
    JobKind,
    JobSpec,
    JobState,
    JobStatus,
    MessagingChannel,
    PodcastEpisode,
    PodcastHost,
    PostDraft,
    PublishingTarget,
    RemotePost,
    await_job,
)

__all__ = [
    "ApprovalRequest",
    "GenerationProvider",
    "JobKind",
    "JobSpec",
    "JobState",
    "JobStatus",
    "MessagingChannel",
    "PodcastEpisode",
    "PodcastHost",
    "PostDraft",
    "PublishingTarget",
    "RemotePost",
    "await_job",
]
