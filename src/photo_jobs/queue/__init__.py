"""Database-backed background queue for photo processing tasks.

Why not Celery / RQ / Dramatiq?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Tasks are few, slow and externally fulfilled: each one is a single blocking
call to an image vendor that takes seconds to minutes. What matters is the
durable lifecycle around that call:

- Every attempt is counted and persisted before the vendor is contacted.
- Vendor errors are classified into transient, policy-block and programmer
  errors that drive a fixed backoff table.
- A successful task debits the user's balance exactly once, keyed by the
  task id, and the user is notified through Telegram.

A broker would add an operational dependency to a single-process service
that already owns a SQLite database, while all of the above would still
live in custom task code. The tick -> select -> admit -> execute -> persist
loop in ``scheduler.py`` and ``executor.py`` is the whole runtime.
"""
