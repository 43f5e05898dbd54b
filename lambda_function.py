import json
import logging
import time

from attendance_watcher.config import Settings, configure_logging
from attendance_watcher.errors import ConfigError
from attendance_watcher.models import CycleStatus
from attendance_watcher.runner import build_poller

log = logging.getLogger("lambda_function")

# Built on the first invocation and reused while the container stays warm,
# so the portal session survives between scheduled runs.
_poller = None


def _get_poller():
    global _poller
    if _poller is None:
        settings = Settings.from_env()  # load_dotenv() + os.environ
        configure_logging(settings.log_level)
        _poller = build_poller(settings)
    return _poller


# --- Lambda Handler ---
def lambda_handler(event, context):
    """AWS Lambda entry point. One gated poll cycle per invocation."""
    start_time = time.time()
    event = event or {}
    try:
        poller = _get_poller()
    except ConfigError as e:
        configure_logging()
        log.error("Configuration error: %s", e)
        return {'statusCode': 500, 'body': json.dumps(f'Configuration error: {e}')}

    result = poller.run_cycle(force=bool(event.get("force")))

    duration = time.time() - start_time
    log.info("Cycle %s in %.2fs (%d event(s), %d notification(s))",
             result.status.value, duration, len(result.events), result.notified)
    status_code = 200 if result.ok else (409 if result.status == CycleStatus.OVERLAP else 500)
    return {
        'statusCode': status_code,
        'body': json.dumps({
            'status': result.status.value,
            'events': [{'course': e.code, 'kind': e.kind.value} for e in result.events],
            'notified': result.notified,
            'detail': result.detail,
            'duration': round(duration, 2),
        }),
    }


# --- Local execution block ---
if __name__ == "__main__":
    print("Running one cycle locally (working-hours gate bypassed)...")
    print(json.dumps(lambda_handler({"force": True}, None), indent=2))
