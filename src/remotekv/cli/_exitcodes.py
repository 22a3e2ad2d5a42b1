"""Process exit codes used by rkv commands."""

SUCCESS = 0
BACKEND_ERROR = 1
USAGE_ERROR = 2
PERMISSION_ERROR = 3
LOCK_TIMEOUT = 4
