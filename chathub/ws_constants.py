"""WebSocket protocol constants: event types and close codes.

Pure data module -- no imports, no logic. Safe to import from any chathub
module without risk of circular dependencies.
"""

# ── Client -> Server event types ──────────────────────────────────────

MSG_AUTH = "auth"
MSG_MESSAGE = "message"
MSG_DM_MESSAGE = "dm_message"
MSG_TYPING_START = "typing_start"
MSG_TYPING_STOP = "typing_stop"

# ── Server -> Client event types ──────────────────────────────────────

MSG_USERS_ONLINE = "users_online"
MSG_USER_STATUS = "user_status"
MSG_CHANNEL_CREATED = "channel_created"
MSG_FRIEND_REQUEST = "friend_request"
MSG_FRIEND_ACCEPTED = "friend_accepted"
MSG_AVATAR_UPDATED = "avatar_updated"
MSG_ERROR = "error"
# MSG_MESSAGE, MSG_DM_MESSAGE, MSG_TYPING_START and MSG_TYPING_STOP are
# also sent server -> client with the same names.

# ── Close codes ───────────────────────────────────────────────────────

CLOSE_UNAUTHORIZED = 4001

# ── Presence states ───────────────────────────────────────────────────

STATUS_ONLINE = "online"
STATUS_AWAY = "away"
STATUS_BUSY = "busy"
STATUS_OFFLINE = "offline"
