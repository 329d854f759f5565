"""Report status workflow."""

from reportforge.pipeline.models import ReportStatus

REPORT_STATUS_FLOW: tuple[str, ...] = tuple(status.value for status in ReportStatus)

GENERATION_STATUSES = frozenset({ReportStatus.FINAL_REVIEW.value, ReportStatus.SUBMITTED.value})


def is_valid_next_status(current: str | None, next_status: str | None) -> bool:
    """Whether a report may move from ``current`` to ``next_status``.

    Staying put is always allowed, unknown targets never are, and
    otherwise only a single step forward is permitted. A missing current
    status counts as Draft.
    """
    if not next_status or current == next_status:
        return True
    if next_status not in REPORT_STATUS_FLOW:
        return False
    current = current or ReportStatus.DRAFT.value
    current_index = REPORT_STATUS_FLOW.index(current) if current in REPORT_STATUS_FLOW else -1
    return REPORT_STATUS_FLOW.index(next_status) == current_index + 1


def can_generate(status: str | None) -> bool:
    """Final documents are only produced from Final Review or Submitted."""
    return status in GENERATION_STATUSES


def can_delete(status: str | None) -> bool:
    return status != ReportStatus.SUBMITTED.value
