import json
from datetime import datetime, timezone
from inference_worker.core.logger import logger

def log_job_result(
    user_id: str,
    query: str,
    response: str,
    context_turns: int = 0,
    persisted: bool = True
) -> None:
    """
    One structured log line per published result.
    """
    log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event": "job_result",
        "user_id": user_id,
        "query": query[:500],  # Truncate long queries
        "response_preview": response[:500],  # Truncate long responses
        "response_length": len(response),
        "context_turns": context_turns,
        "persisted": persisted
    }

    # Published, but the turn is missing from stored history
    if not persisted:
        log_data["event"] = "job_result_unpersisted"
        logger.warning(json.dumps(log_data))
    else:
        logger.info(json.dumps(log_data))
