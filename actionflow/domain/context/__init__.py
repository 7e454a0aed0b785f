# Session context
#
#   memory/  conversation history and the TTL key-value store
#   state/   pending action persistence on top of the store
