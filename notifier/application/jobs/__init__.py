"""Background producers emitting notification requests."""

from .graduation import GraduationJobReport, GraduationWorker, build_graduation_email

__all__ = ["GraduationJobReport", "GraduationWorker", "build_graduation_email"]
