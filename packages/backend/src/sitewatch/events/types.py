"""Broadcast event tags.

Learn: Centralizing event tags as constants prevents typos and makes it
easy to discover every tag that crosses the wire. These strings are the
contract with browsers and bridges, so they never change spelling.
"""

# ─── Alarm fanout ────────────────────────────────────────

ALARM_INSERT = "alarm-insert"
ALARM_UPDATE = "alarm-update"
ALARM_DELETE = "alarm-delete"
NEW_ALARM = "new-alarm"

# ─── System channel ──────────────────────────────────────

SYSTEM_EVENT = "system-event"
SYSTEM_STATUS = "system-status"

# ─── User activity channel ───────────────────────────────

USER_ACTION = "user-action"
USER_PRESENCE = "user-presence"

# ─── Row-change operations ───────────────────────────────

ROW_INSERT = "INSERT"
ROW_UPDATE = "UPDATE"
ROW_DELETE = "DELETE"
ROW_ANY = "*"

# Matches every broadcast event on a channel
ANY_EVENT = "*"
