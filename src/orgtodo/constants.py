"""orgtodo constants: keyword cycle, archive policy and defaults."""

from __future__ import annotations

import re

DEFAULT_TODO_STATE_CYCLE = ("TODO", "|", "DONE")
DONE_SEPARATOR = "|"
DEFAULT_HIGHEST_PRIORITY = "A"
DEFAULT_LOWEST_PRIORITY = "C"
EFFORT_PROPERTY = "Effort"

CONFIG_DIRNAME = ".orgtodo"
CONFIG_FILENAME = "config.yaml"
DEFAULT_STORAGE_PATH = "todo.org"
DEFAULT_LOG_FILE = ".orgtodo/logs/orgtodo.log"

# org-mode archive location syntax: FILE::HEADING, %s expands to the file name.
DEFAULT_ARCHIVE_LOCATION = "%s_archive::"
ARCHIVE_TIME_PROPERTY = "ARCHIVE_TIME"
ARCHIVE_FILE_PROPERTY = "ARCHIVE_FILE"
ARCHIVE_OLPATH_PROPERTY = "ARCHIVE_OLPATH"
SAME_FILE_ARCHIVE_HEADING = "Archive"
SAME_FILE_ARCHIVE_TAG = "ARCHIVE"

IN_BUFFER_TODO_DIRECTIVES = ("#+TODO:", "#+SEQ_TODO:", "#+TYP_TODO:")

TAG_PATTERN = re.compile(r"^[\w@#%]+$")
KEYWORD_PATTERN = re.compile(r"^\S+$")

ACTION_KINDS = (
    "toggle",
    "archive",
    "setPriority",
    "setTags",
    "setEffort",
    "setProperty",
    "refile",
    "visit",
    "insert",
)
ACTION_ALIASES = {
    "set_priority": "setPriority",
    "set_tags": "setTags",
    "set_effort": "setEffort",
    "set_property": "setProperty",
    "set-priority": "setPriority",
    "set-tags": "setTags",
    "set-effort": "setEffort",
    "set-property": "setProperty",
    "set_state": "setState",
    "set-state": "setState",
}

LIST_NAME_ENV_VAR = "ORGTODO_LIST"
