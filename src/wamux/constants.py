from __future__ import annotations

S_WHATSAPP_NET = "s.whatsapp.net"
GROUP_SERVER = "g.us"
NEWSLETTER_SERVER = "newsletter"

# Pseudo-address the transport uses for status/story updates.
STATUS_BROADCAST_JID = "status@broadcast"

# Close status reported by the transport when the linked device was removed
# (mirrors Baileys `DisconnectReason.loggedOut`).
LOGGED_OUT_STATUS = 401

# Only live traffic is forwarded; history-sync batches use other kinds.
NOTIFY_UPSERT = "notify"

DEFAULT_SENDER_NAME = "Unknown"
QUOTED_PLACEHOLDER = "No text content"

COLLECTOR_SUCCESS_STATUS = "success"

CREDS_FILENAME = "creds.json"
DEFAULT_AUTH_FOLDER = "./auth_info"
