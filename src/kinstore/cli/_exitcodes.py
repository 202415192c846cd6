"""Process exit codes for the kin CLI."""

OK = 0
USAGE_ERROR = 1
DATA_ERROR = 1
DATABASE_ERROR = 2
