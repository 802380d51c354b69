"""Realtime infrastructure — channels, transports, and the WebSocket bridge.

Learn: Everything realtime flows through named channels:
1. Services → Transport.publish() (Redis PUBLISH in production)
2. Transport → Channel callbacks (stores, feeds, correlators)
3. Channel → WebSocket → browser (public channels only)

Row changes come in separately from PostgreSQL LISTEN/NOTIFY and are
routed to the channels that registered for them.
"""
