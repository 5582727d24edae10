import os

# rich falls back to 80 columns when output is not a terminal, which truncates
# table cells that the CLI tests look for
os.environ.setdefault("COLUMNS", "200")
