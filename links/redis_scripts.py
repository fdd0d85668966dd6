"""
Redis Lua scripts for download tokens.

Scripts run inside Redis as a single step, so no other client can observe or
change the record between the allowance check and the decrement.
"""

EXHAUSTED_REPLY = "NODL"

# KEYS[1] = download:<token>
# Returns nil when the record is missing or expired,
# 'NODL' when downloads_left <= 0,
# otherwise { storage_key, downloads_left_after_decrement }.
# storage_key comes back as nil if the hash lost its mapping.
CONSUME_TOKEN_SCRIPT = """
local key = KEYS[1]
if redis.call('EXISTS', key) == 0 then
    return nil
end

local downloads_left = tonumber(redis.call('HGET', key, 'downloads_left') or '0')
if downloads_left <= 0 then
    return 'NODL'
end

local remaining = redis.call('HINCRBY', key, 'downloads_left', -1)
local storage_key = redis.call('HGET', key, 'storage_key')
return { storage_key, remaining }
"""
