"""Constants for memory graph operations."""

# Storage
DEFAULT_MEMORY_DIR = "./memory"
RECORD_SUFFIX = ".json"
FORBIDDEN_USER_ID_CHARS = ("/", "\\", "\x00")

# Session
FALLBACK_SESSION_ID = "stateless"
SESSION_ID_HEADER = "mcp-session-id"
SESSION_ID_QUERY_PARAM = "sessionId"
SESSION_CAPACITY = 100
EVICTION_INTERVAL_SECONDS = 60

# HTTP
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8765

# Tool names
TOOL_ADD = "memory.add"
TOOL_QUERY = "memory.query"
TOOL_SUMMARIZE = "memory.summarize"
TOOLS = (TOOL_ADD, TOOL_QUERY, TOOL_SUMMARIZE)
