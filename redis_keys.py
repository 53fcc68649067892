REDIS_ROOM_CHANNEL = "room:channel:{slug}" # room name - pub/sub channel name
REDIS_ROOM_CHANNEL_PATTERN = "room:channel:*" # every room channel, for psubscribe
REDIS_ROOM_CHANNEL_PREFIX = "room:channel:"

# **Pub/Sub message body**
# - JSON object: {"type": event, "payload": data, "origin": instance id,
#   "recipients": connection ids, "exclude": connection id or null}
# - `recipients` is the publishing instance's room membership at broadcast
#   time; the publishing instance delivers only to those. Other instances
#   deliver to their own room members, minus `exclude`.
# - Only room broadcasts travel over redis; private sends stay on the instance
#   that owns the connection.
