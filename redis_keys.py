REDIS_MEETING_KEY = "meeting:{meeting_id}" # meeting id - hash owned by the meeting service

# **Example `meeting:{id}` hash fields**
# - `id` = `{meetingId}`
# - `creator_id` = userId of the host
# - `status` = `active` | `ended`
# - `created_at` = ISO timestamp
