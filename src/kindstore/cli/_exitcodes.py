"""Process exit codes for kindstore commands."""

SUCCESS = 0
GENERAL_ERROR = 1
USAGE_ERROR = 2
STORE_ERROR = 3
EXECUTION_FAILURE = 4
CONFLICT = 5
