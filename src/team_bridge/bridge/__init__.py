"""Worker bridge daemon coordinated through plain files.

Why plain files and not a broker?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Workers run next to the lead on one machine, each hosted in its own terminal
session and wrapping an external CLI agent (codex, gemini).  The lead already
speaks in files: it writes task JSON, appends to inbox logs and reads outbox
logs.  Everything the daemon needs from a queue can be had from the
filesystem alone:

- Atomic task updates via temp file + ``os.replace``.
- Exactly-once, in-order inbox delivery via a persisted byte cursor.
- Bounded outbox growth via rotation with hysteresis.
- Liveness via an overwrite-only heartbeat file.

The one compound operation that is not atomic is the scan-then-claim of a
task; it is guarded by an optimistic re-read instead of a lock.
"""
