"""
Structured proctoring log lines: ``[PROCTOR] session=<id> event=<name> key=value ...``
"""

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger("examproctor.proctor")


def log_proctor_event(
    session_id: Any,
    event_type: str,
    details: Optional[Dict[str, Any]] = None,
    level: str = "info"
):
    message = f"[PROCTOR] session={session_id} event={event_type}"

    if details:
        detail_str = " ".join(f"{k}={v}" for k, v in details.items())
        message += f" {detail_str}"

    if level == "debug":
        logger.debug(message)
    elif level == "warning":
        logger.warning(message)
    elif level == "error":
        logger.error(message)
    else:
        logger.info(message)


def log_session_start(session_id: Any, exam_id: Any, student_id: Any, resumed: bool = False):
    log_proctor_event(
        session_id,
        "session_resume" if resumed else "session_start",
        {"exam_id": exam_id, "student_id": student_id},
    )


def log_violation(session_id: Any, violation_type: str, warning_count: int, threshold: int):
    log_proctor_event(
        session_id,
        "violation",
        {"type": violation_type, "warnings": f"{warning_count}/{threshold}"},
        level="warning",
    )


def log_session_end(session_id: Any, status: str, score: float, result: str):
    log_proctor_event(
        session_id,
        "session_end",
        {"status": status, "score": score, "result": result},
    )
