"""
Tool definitions for model function calling.

Each tool schema defines what the model can call and what parameters it
needs. Which tools a session gets is controlled by the name lists at the
bottom of this module; handlers live in ``attache/tool_handlers/``.

Two catalogues exist because ``create_download`` differs between them:
agents may copy a file from disk, the main assistant may not.
"""

AGENT_TOOLS = [
    # ---- Utility ----
    {
        "name": "send_to_main",
        "description": "Sends a message back to the main context. Use this to communicate your findings, results, or ask the user questions through the main assistant.",
        "parameters": {
            "type": "object",
            "properties": {
                "message": {"type": "string", "description": "The message to send to the main context"},
            },
            "required": ["message"],
        },
    },
    {
        "name": "wait",
        "description": "Waits/sleeps for a specified number of seconds. Useful for debugging and testing agent behavior.",
        "parameters": {
            "type": "object",
            "properties": {
                "seconds": {"type": "number", "description": "The number of seconds to wait"},
            },
            "required": ["seconds"],
        },
    },
    {
        "name": "create_download",
        "description": """Creates a file available for download and returns a URL. Use this when the user asks you to generate or provide a file for download.

You can either pass file content directly via 'content', or copy an existing file from disk via 'file'. Include the returned URL as a markdown link in your message to main, e.g. [Download filename](url).""",
        "parameters": {
            "type": "object",
            "properties": {
                "filename": {"type": "string", "description": "The filename including extension (e.g. 'data.csv', 'script.py')"},
                "content": {"type": "string", "description": "The file content as text. Use this for generated content."},
                "file": {"type": "string", "description": "Absolute path to an existing file on disk to make available for download. Use this instead of content when the file already exists."},
            },
            "required": ["filename"],
        },
    },
    # ---- Settings ----
    {
        "name": "get_config",
        "description": "Reads the current configuration including assistant name, model settings, and server configuration.",
        "parameters": {"type": "object", "properties": {}},
    },
    {
        "name": "update_config",
        "description": "Updates the configuration. You can change assistant settings and model settings. Server settings cannot be modified. Only provide the fields you want to update.",
        "parameters": {
            "type": "object",
            "properties": {
                "assistant": {
                    "type": "object",
                    "properties": {"name": {"type": "string", "description": "The new name for the assistant"}},
                },
                "models": {
                    "type": "object",
                    "properties": {
                        "default": {"type": "string", "description": "The default provider name to use"},
                        "providers": {"type": "object", "description": "Provider configurations keyed by name."},
                    },
                },
            },
        },
    },
    {
        "name": "get_user_profile",
        "description": "Reads the current user profile from USER.md. Returns the markdown content or empty string if no profile exists yet.",
        "parameters": {"type": "object", "properties": {}},
    },
    {
        "name": "save_user_profile",
        "description": "Saves the user profile as a markdown document to USER.md. IMPORTANT: Always call get_user_profile first to read the existing profile so you can merge new information instead of overwriting it.",
        "parameters": {
            "type": "object",
            "properties": {
                "content": {"type": "string", "description": "The full markdown content of the user profile"},
            },
            "required": ["content"],
        },
    },
    {
        "name": "complete_first_run",
        "description": "Marks the first-run setup as complete. Call this after the onboarding quiz is finished and the user profile has been saved.",
        "parameters": {"type": "object", "properties": {}},
    },
    # ---- Web ----
    {
        "name": "brave_search",
        "description": "Searches the web using Brave Search API. Returns top results with titles, URLs, and descriptions. Use this to look up current information, answer questions about recent events, or research topics.",
        "parameters": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "The search query to perform"},
                "count": {"type": "number", "description": "Number of results to return (1-20, default 5)"},
            },
            "required": ["query"],
        },
    },
    {
        "name": "web_fetch",
        "description": "Fetches content from a URL and returns the text. Useful for reading web pages, API responses, or downloading text content found via brave_search.",
        "parameters": {
            "type": "object",
            "properties": {
                "url": {"type": "string", "description": "The URL to fetch content from"},
                "max_length": {"type": "number", "description": "Maximum number of characters to return (default 50000)"},
            },
            "required": ["url"],
        },
    },
    # ---- Memory ----
    {
        "name": "save_memory",
        "description": "Saves a piece of information to long-term memory. Use this to store important user preferences, facts, decisions, or anything worth remembering for future conversations.",
        "parameters": {
            "type": "object",
            "properties": {
                "title": {"type": "string", "description": "A short, descriptive title for the memory"},
                "content": {"type": "string", "description": "The content/details of the memory"},
                "tags": {"type": "array", "items": {"type": "string"}, "description": "Optional tags to categorize the memory"},
            },
            "required": ["title", "content"],
        },
    },
    {
        "name": "search_memories",
        "description": "Searches long-term memory for relevant information. Use this to recall previously saved facts, preferences, or context about the user.",
        "parameters": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "The search query to find relevant memories"},
            },
            "required": ["query"],
        },
    },
    # ---- Filesystem ----
    {
        "name": "list_directory",
        "description": "Lists files and directories at the given path. Returns names, types (file/directory), and sizes.",
        "parameters": {
            "type": "object",
            "properties": {"path": {"type": "string", "description": "The directory path to list"}},
            "required": ["path"],
        },
    },
    {
        "name": "read_file",
        "description": """Reads the contents of a file and returns it as text.

Use from_line/to_line to read specific line ranges instead of the entire file - this saves context. After using grep to find matches, use this with a line range to read the surrounding code.""",
        "parameters": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "The file path to read"},
                "from_line": {"type": "number", "description": "Start reading from this line number (1-based, inclusive). Omit to start from beginning."},
                "to_line": {"type": "number", "description": "Stop reading at this line number (1-based, inclusive). Omit to read to end."},
            },
            "required": ["path"],
        },
    },
    {
        "name": "write_file",
        "description": "Writes content to a file. Creates the file if it doesn't exist, overwrites if it does. If the file already exists, you MUST read it with read_file first before writing.",
        "parameters": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "The file path to write to"},
                "content": {"type": "string", "description": "The content to write to the file"},
            },
            "required": ["path", "content"],
        },
    },
    {
        "name": "create_directory",
        "description": "Creates a directory (and any necessary parent directories).",
        "parameters": {
            "type": "object",
            "properties": {"path": {"type": "string", "description": "The directory path to create"}},
            "required": ["path"],
        },
    },
    {
        "name": "delete_path",
        "description": "Deletes a file or directory (recursively).",
        "parameters": {
            "type": "object",
            "properties": {"path": {"type": "string", "description": "The file or directory path to delete"}},
            "required": ["path"],
        },
    },
    {
        "name": "move_path",
        "description": "Moves or renames a file or directory.",
        "parameters": {
            "type": "object",
            "properties": {
                "source": {"type": "string", "description": "The source path"},
                "destination": {"type": "string", "description": "The destination path"},
            },
            "required": ["source", "destination"],
        },
    },
    {
        "name": "grep",
        "description": """Searches file contents for a regex pattern. Returns an array of compact matches (file path, line number, and a short snippet around the match).

Use this to locate code, then use read_file with from_line/to_line to read the surrounding context.""",
        "parameters": {
            "type": "object",
            "properties": {
                "pattern": {"type": "string", "description": "The regex pattern to search for"},
                "path": {"type": "string", "description": "Directory or file to search in (defaults to working directory)"},
                "glob": {"type": "string", "description": "Glob pattern to filter files, e.g. '*.py' or '*.{js,tsx}'"},
                "ignore_case": {"type": "boolean", "description": "Case-insensitive search (default: false)"},
                "max_results": {"type": "number", "description": "Maximum number of matches to return (default: 50)"},
            },
            "required": ["pattern"],
        },
    },
    {
        "name": "edit_file",
        "description": "Makes a targeted edit to a file by replacing an exact string match. Much more efficient than read_file + write_file for small changes. The old_string must appear exactly once in the file to avoid ambiguous edits. You must have read the file with read_file first.",
        "parameters": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "The file path to edit"},
                "old_string": {"type": "string", "description": "The exact string to find and replace (must be unique in the file)"},
                "new_string": {"type": "string", "description": "The replacement string"},
            },
            "required": ["path", "old_string", "new_string"],
        },
    },
    {
        "name": "find_files",
        "description": "Finds files matching a glob pattern. Returns an array of file paths. Use this to quickly locate files by name instead of recursively calling list_directory. Supports patterns like '*.py', '**/*.vue', 'src/**/test_*.py'.",
        "parameters": {
            "type": "object",
            "properties": {
                "pattern": {"type": "string", "description": "Glob pattern to match, e.g. '*.py', '**/*.vue', 'src/components/*.tsx'"},
                "path": {"type": "string", "description": "Base directory to search in (defaults to working directory)"},
                "max_results": {"type": "number", "description": "Maximum number of files to return (default: 100)"},
            },
            "required": ["pattern"],
        },
    },
    {
        "name": "file_info",
        "description": "Gets information about a file or directory without reading its contents. Returns existence, type (file/directory), size, and last modified time.",
        "parameters": {
            "type": "object",
            "properties": {"path": {"type": "string", "description": "The file or directory path to check"}},
            "required": ["path"],
        },
    },
    # ---- Terminal ----
    {
        "name": "run_command",
        "description": "Executes a shell command and returns stdout, stderr, and exit code. Commands run with a 60-second timeout.",
        "parameters": {
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "The shell command to execute"},
                "cwd": {"type": "string", "description": "Working directory to run the command in (optional, defaults to the working directory)"},
            },
            "required": ["command"],
        },
    },
]

MAIN_TOOLS = [
    {
        "name": "get_active_agents",
        "description": "Gets a list of all currently active agents (both running and recently completed). Use this BEFORE starting a new agent to check if an agent with a similar task already exists. If a similar agent exists, use send_to_agent instead of creating a duplicate - completed agents are automatically resumed.",
        "parameters": {"type": "object", "properties": {}},
    },
    {
        "name": "start_agent",
        "description": "Starts a specialized sub-agent to handle complex tasks that require system access. IMPORTANT: Always call get_active_agents first to avoid creating duplicate agents. Always CHECK the result - if it returns an error, report it honestly to the user. The agent runs in the background and will automatically callback with its results when done - you do NOT need to poll or check for completion.",
        "parameters": {
            "type": "object",
            "properties": {
                "task": {"type": "string", "description": "The task description for the agent to complete"},
            },
            "required": ["task"],
        },
    },
    {
        "name": "send_to_agent",
        "description": "Sends a message to a sub-agent. For running agents, the message is delivered immediately. For completed agents, the agent is automatically resumed with your message.",
        "parameters": {
            "type": "object",
            "properties": {
                "agent_id": {"type": "string", "description": "The ID of the agent to send the message to"},
                "message": {"type": "string", "description": "The message to send to the agent"},
            },
            "required": ["agent_id", "message"],
        },
    },
    {
        "name": "kill_agent",
        "description": "Kills a running sub-agent immediately. Use this when the user wants to stop an agent, or when an agent is stuck or no longer needed.",
        "parameters": {
            "type": "object",
            "properties": {
                "agent_id": {"type": "string", "description": "The ID of the agent to kill"},
            },
            "required": ["agent_id"],
        },
    },
    {
        "name": "create_download",
        "description": "Creates a file available for download and returns a URL. Use this when the user asks you to generate a file (CSV, JSON, text, code, etc.) for download. Include the returned URL as a markdown link in your response, e.g. [Download filename](url).",
        "parameters": {
            "type": "object",
            "properties": {
                "filename": {"type": "string", "description": "The filename including extension (e.g. 'data.csv', 'script.py')"},
                "content": {"type": "string", "description": "The file content as text"},
            },
            "required": ["filename", "content"],
        },
    },
]

# ---------------------------------------------------------------------------
# Tool groups
# ---------------------------------------------------------------------------

UTILITY_TOOLS = ["send_to_main", "wait", "create_download"]
SETTINGS_TOOLS = ["get_config", "update_config", "get_user_profile", "save_user_profile", "complete_first_run"]
WEB_TOOLS = ["brave_search", "web_fetch"]
MEMORY_TOOLS = ["save_memory", "search_memories"]
FILESYSTEM_TOOLS = [
    "list_directory", "read_file", "write_file", "create_directory", "delete_path",
    "move_path", "grep", "edit_file", "find_files", "file_info",
]
TERMINAL_TOOLS = ["run_command"]

MAIN_TOOL_NAMES = ["get_active_agents", "start_agent", "send_to_agent", "kill_agent", "create_download"]
MAIN_MEMORY_TOOLS = ["save_memory"]


def get_tool_schemas(names: list[str], catalogue: list[dict] | None = None) -> list[dict]:
    """Return catalogue schemas for *names*, in the order given.

    ``save_memory`` is looked up in the agent catalogue when missing from
    *catalogue*.

    Raises:
        KeyError: a name has no schema (catches typos).
    """
    catalogue = AGENT_TOOLS if catalogue is None else catalogue
    by_name = {t["name"]: t for t in AGENT_TOOLS if t["name"] in MEMORY_TOOLS}
    by_name.update({t["name"]: t for t in catalogue})
    return [by_name[name] for name in names]


def agent_tool_names(settings) -> list[str]:
    """Static agent tool names enabled by a ``ToolSettings`` snapshot."""
    names = UTILITY_TOOLS + SETTINGS_TOOLS + WEB_TOOLS
    if settings.memory:
        names = names + MEMORY_TOOLS
    if settings.filesystem:
        names = names + FILESYSTEM_TOOLS
    if settings.terminal:
        names = names + TERMINAL_TOOLS
    return names


def main_tool_names(settings) -> list[str]:
    names = list(MAIN_TOOL_NAMES)
    if settings.memory:
        names += MAIN_MEMORY_TOOLS
    return names
