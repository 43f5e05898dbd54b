"""
attendance_watcher: CyberVidya attendance poller
=================================================

  config.py    → Settings from env/.env, logging setup
  errors.py    → Error taxonomy
  models.py    → CourseCounter, Session, LoginAttemptLedger, event/result types
  attendance.py→ classify() / advise() / message formatting
  session.py   → SessionManager (login slots, backoff, cooldown, renewal)
  portal.py    → CyberVidya HTTP client
  store.py     → S3 + local file snapshot store, git backup of the local file
  notifier.py  → Telegram / Discord sinks
  schedule.py  → Working-hours gate, APScheduler cron job
  poller.py    → AttendancePoller (one cycle)
  runner.py    → Wiring, scheduler lifecycle, CLI
"""

__version__ = "1.0.0"
