"""Process exit codes used by CLI commands."""

GENERAL_ERROR = 1
USAGE_ERROR = 2
EXECUTION_FAILURE = 3
