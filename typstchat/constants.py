"""Default values shared across typstchat modules."""

DEFAULT_MODEL = "anthropic:claude-sonnet-4-20250514"
DEFAULT_MAX_TOKENS = 4096
DEFAULT_CONTINUATION_MAX_TOKENS = 1024

DEFAULT_LIST_LIMIT = 50
TITLE_MAX_LENGTH = 60

RENDER_TOOL_NAME = "render_typst"
