# cleanup.py
# Daily removal of quiz submission images past the retention window.
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

DEFAULT_RETENTION_DAYS = 7
SWEEP_HOUR = 2


def sweep_quiz_images(store, blobs, retention_days: int = DEFAULT_RETENTION_DAYS,
                      now: Optional[datetime] = None) -> Dict[str, int]:
    """
    Delete the images of every submission older than the window.
    A failed delete is logged and its path kept on the row, so the next run retries it;
    it never stops the sweep.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=retention_days)
    rows = store.submissions_with_images_before(cutoff)
    print(f"[cleanup] {len(rows)} submissions with images before {cutoff.isoformat()}")

    deleted = failed = 0
    for row in rows:
        kept = []
        for path in row.get("image_paths") or []:
            try:
                blobs.delete(path)
                deleted += 1
            except Exception as e:
                failed += 1
                kept.append(path)
                print(f"[cleanup] could not delete {path}: {e}")
        try:
            store.set_submission_images(row["id"], kept or None)
        except Exception as e:
            print(f"[cleanup] could not update submission {row['id']}: {e}")

    print(f"[cleanup] done: submissions={len(rows)} deleted={deleted} failed={failed}")
    return {"submissions": len(rows), "deleted": deleted, "failed": failed}


def purge_reset_tokens(store) -> int:
    """Drop used and expired password reset tokens."""
    removed = store.delete_expired_reset_tokens()
    print(f"[cleanup] reset tokens removed={removed}")
    return removed


def seconds_until(hour: int, now: Optional[datetime] = None) -> float:
    now = now or datetime.now()
    target = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


def start_daily_sweep(run: Callable[[], object], hour: int = SWEEP_HOUR) -> threading.Event:
    """
    Run `run` every day at `hour` (local time) on a daemon thread. Set the returned event to stop.
    Each process that calls this starts its own thread: enable it in one process only, or
    schedule `flask cleanup-quiz-images` from cron instead.
    """
    stop = threading.Event()

    def _loop():
        while not stop.wait(seconds_until(hour)):
            try:
                run()
            except Exception as e:
                print(f"[cleanup] scheduled sweep failed: {e}")

    threading.Thread(target=_loop, name="quiz-image-sweep", daemon=True).start()
    print(f"[cleanup] daily sweep scheduled at {hour:02d}:00")
    return stop
