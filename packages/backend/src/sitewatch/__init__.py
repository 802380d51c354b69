"""SiteWatch — realtime core for a multi-site monitoring dashboard.

Sends commands to remote bridge devices and awaits their correlated
replies, fans out alarm/system/user-activity events over pub/sub
channels, and keeps a process-wide cache of alarms and unread counts.
"""

__version__ = "0.1.0"
