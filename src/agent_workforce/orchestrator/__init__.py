"""Task and execution orchestration for LLM agent workers.

Workers come in two kinds. Modules run on a frequency and keep one runtime
session plus one workspace across runs. Agents run when an approved task is
assigned to them, each time in a throwaway workspace.

Everything lives in one SQLite database: tasks with their transition
history, worker configs, execution records and their logs. Status changes
are single conditional UPDATE statements guarded on the expected current
status, so two writers racing on the same row cannot both win. The
scheduler and dispatcher are single-process; the per-worker lock is an
in-memory set.
"""
