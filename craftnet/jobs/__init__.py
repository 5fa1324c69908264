"""Job requests, applications and delivered work."""

from .lifecycle import (
    VALID_TRANSITIONS,
    apply_for_job,
    atomic_update_job_status,
    can_transition,
    complete_job,
    create_job_request,
    delete_job_request,
    find_job,
    get_apprentice_active_jobs,
    get_apprentice_applications,
    get_client_job_requests,
    get_job_applications,
    get_job_request,
    get_jobs_pending_review,
    list_open_jobs,
    pay_apprentice,
    review_job,
    update_application_status,
    update_job_progress,
)
from .submissions import (
    auto_acknowledge_progress_updates,
    auto_acknowledge_updates,
    get_final_submissions,
    get_job_updates,
    get_pending_final_submissions,
    get_pending_progress_updates,
    get_progress_updates,
    get_updates_pending_review,
    review_final_submission,
    submit_final_submission_feedback,
    submit_final_work,
    submit_job_feedback,
    submit_job_update,
    submit_progress_update,
    submit_progress_update_feedback,
)

__all__ = [
    # Lifecycle
    "VALID_TRANSITIONS",
    "can_transition",
    "atomic_update_job_status",
    "find_job",
    "get_job_request",
    "create_job_request",
    "apply_for_job",
    "update_application_status",
    "update_job_progress",
    "complete_job",
    "pay_apprentice",
    "review_job",
    "delete_job_request",
    # Reads
    "list_open_jobs",
    "get_client_job_requests",
    "get_job_applications",
    "get_apprentice_applications",
    "get_jobs_pending_review",
    "get_apprentice_active_jobs",
    # Submissions
    "submit_job_update",
    "get_job_updates",
    "submit_job_feedback",
    "get_updates_pending_review",
    "auto_acknowledge_updates",
    "submit_progress_update",
    "submit_progress_update_feedback",
    "get_progress_updates",
    "get_pending_progress_updates",
    "auto_acknowledge_progress_updates",
    "submit_final_work",
    "get_final_submissions",
    "get_pending_final_submissions",
    "submit_final_submission_feedback",
    "review_final_submission",
]
