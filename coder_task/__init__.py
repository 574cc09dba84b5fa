"""coder-task: start or resume Coder tasks from GitHub issues."""
