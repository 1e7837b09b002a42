REDIS_ROOM_META_KEY = "room:meta:{code}" # room code - hash of room fields
REDIS_ROOM_MEMBERS_KEY = "room:members:{code}" # room code - set of user IDs
REDIS_ROOMS_INDEX = "rooms:index" # sorted set, room code scored by created_at epoch
REDIS_USER_KEY = "user:{user_id}" # user id - hash of user fields
REDIS_USERNAME_KEY = "user:username:{username}" # username -> user id
REDIS_EMAIL_KEY = "user:email:{email}" # email -> user id

# **Example `room:meta:{code}` hash fields**
# - `code` = `{CODE}` (uppercase, trimmed)
# - `room_name` = display name
# - `creator` = user id
# - `canvas_data` = last persisted snapshot ("" when cleared)
# - `created_at` = ISO timestamp

# **Example `user:{id}` hash fields**
# - `id`, `username`, `email`
# - `password` = bcrypt hash
# - `is_active` = "1" / "0"
# - `last_login` = ISO timestamp or ""
# - `created_at` = ISO timestamp
