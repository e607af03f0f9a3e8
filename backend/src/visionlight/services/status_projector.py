"""Derive a user-facing progress value and phase label for a job.

Pure functions; nothing here reads or writes storage.
"""

import random
from dataclasses import dataclass
from datetime import datetime, timedelta

from visionlight.core.timezone import utcnow
from visionlight.models.job import JobStatus, MediaKind

MAX_IN_FLIGHT_PROGRESS = 95
JITTER_SPAN = 2.5

ESTIMATED_DURATION: dict[MediaKind, timedelta] = {
    MediaKind.VIDEO: timedelta(minutes=10),
    MediaKind.IMAGE: timedelta(seconds=90),
    MediaKind.CAROUSEL: timedelta(minutes=2),
}

# (threshold, label), ascending
PHASES: dict[MediaKind, tuple[tuple[int, str], ...]] = {
    MediaKind.VIDEO: (
        (0, "Analyzing your prompt..."),
        (10, "Setting up scene composition..."),
        (25, "Generating visual elements..."),
        (45, "Adding lighting and effects..."),
        (65, "Rendering video frames..."),
        (80, "Finalizing cinematic details..."),
        (90, "Almost ready..."),
    ),
    MediaKind.IMAGE: (
        (0, "Understanding your vision..."),
        (15, "Sketching composition..."),
        (40, "Adding colors and textures..."),
        (65, "Enhancing details..."),
        (85, "Final touches..."),
    ),
    MediaKind.CAROUSEL: (
        (0, "Planning your story..."),
        (20, "Designing slides..."),
        (50, "Adding visual consistency..."),
        (80, "Final review..."),
    ),
}

TERMINAL_LABELS = {
    JobStatus.READY: "Generation complete",
    JobStatus.FAILED: "Generation failed",
    JobStatus.CANCELLED: "Generation cancelled",
}


@dataclass(frozen=True)
class ProjectedStatus:
    progress: int
    phase_label: str


def estimate_completion(media_kind: MediaKind, started_at: datetime) -> datetime:
    """Estimated completion instant for a job of this kind started at `started_at`."""
    return started_at + ESTIMATED_DURATION.get(media_kind, ESTIMATED_DURATION[MediaKind.VIDEO])


def random_jitter() -> float:
    """Uniform value in [-2.5, 2.5) for callers that want a livelier progress bar."""
    return random.uniform(-JITTER_SPAN, JITTER_SPAN)


def phase_for(progress: int, media_kind: MediaKind) -> str:
    """Label of the highest phase whose threshold does not exceed `progress`."""
    phases = PHASES.get(media_kind, PHASES[MediaKind.VIDEO])
    label = phases[0][1]
    for threshold, phase_label in phases:
        if progress >= threshold:
            label = phase_label
    return label


def project_status(
    started_at: datetime,
    estimated_completion_at: datetime,
    last_known_progress: int,
    media_kind: MediaKind,
    status: JobStatus = JobStatus.PROCESSING,
    now: datetime | None = None,
    jitter: float = 0.0,
) -> ProjectedStatus:
    """Project progress and phase label for display.

    While a job is in flight, progress follows elapsed time over the
    estimated duration, never drops below the last persisted value and
    never reaches 100 before the job is actually ready.

    Args:
        started_at: When the job started
        estimated_completion_at: When it is expected to finish
        last_known_progress: Progress persisted by the poller
        media_kind: Kind of media, selects the phase table
        status: Current job status
        now: Clock override (defaults to current UTC time)
        jitter: Added to the time-based estimate before clamping

    Returns:
        ProjectedStatus with progress in [0, 100]
    """
    if status == JobStatus.READY:
        return ProjectedStatus(100, TERMINAL_LABELS[status])
    if status in (JobStatus.FAILED, JobStatus.CANCELLED):
        return ProjectedStatus(max(0, min(100, last_known_progress)), TERMINAL_LABELS[status])

    current = now or utcnow()
    total = (estimated_completion_at - started_at).total_seconds()
    elapsed = max(0.0, (current - started_at).total_seconds())
    estimate = (elapsed / total * 100) if total > 0 else MAX_IN_FLIGHT_PROGRESS
    estimate = min(MAX_IN_FLIGHT_PROGRESS, estimate + jitter)

    progress = max(last_known_progress, estimate)
    progress = int(max(0, min(MAX_IN_FLIGHT_PROGRESS, progress)))
    return ProjectedStatus(progress, phase_for(progress, media_kind))
