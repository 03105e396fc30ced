"""Human-readable texts sent back to the chat."""

from __future__ import annotations

from collections.abc import Sequence

from teleshell.executor.models import Classification, CommandSpec, ExecutionReport

STDOUT_PREVIEW_CHARS = 500
STDERR_PREVIEW_CHARS = 300

STATUS_ICONS = {
    Classification.SUCCEEDED: "✅",
    Classification.FAILED: "❌",
    Classification.TIMED_OUT: "⏱",
    Classification.SPAWN_ERROR: "⚠️",
}
STATUS_LABELS = {
    Classification.SUCCEEDED: "succeeded",
    Classification.FAILED: "failed",
    Classification.TIMED_OUT: "timed out",
    Classification.SPAWN_ERROR: "could not start",
}

ACKNOWLEDGEMENT = "🔄 Analyzing the request..."
NOTHING_TO_RUN = "ℹ️ Nothing to run for this message."


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit]}...(truncated)"


def _fenced(text: str) -> list[str]:
    # Captured output is sent verbatim, never as markdown.
    return ["```", text, "```"]


def format_plan(commands: Sequence[CommandSpec]) -> str:
    lines = ["📝 Execution plan:"]
    for index, spec in enumerate(commands, start=1):
        lines.append(f"{index}. {spec.description or spec.command} → `{spec.command}`")
    return "\n".join(lines)


def format_report(report: ExecutionReport) -> str:
    """Render one execution report, truncating captured output."""
    if report.requested == 0:
        return NOTHING_TO_RUN

    lines = [
        f"📋 Execution report: {STATUS_LABELS[report.classification]} "
        f"({report.succeeded_count}/{report.requested} succeeded)",
        "",
    ]
    for outcome in report.outcomes:
        exit_code = "-" if outcome.exit_code is None else str(outcome.exit_code)
        lines.append(f"{STATUS_ICONS[outcome.classification]} {outcome.description or outcome.command}")
        lines.append(f"  command: `{outcome.command}`")
        lines.append(
            f"  status: {STATUS_LABELS[outcome.classification]}, exit={exit_code}, {outcome.duration:.1f}s"
        )
        stdout = outcome.stdout.strip()
        if stdout:
            lines.append("  output:")
            lines.extend(_fenced(truncate(stdout, STDOUT_PREVIEW_CHARS)))
        stderr = outcome.stderr.strip()
        if stderr:
            lines.append("  errors:")
            lines.extend(_fenced(truncate(stderr, STDERR_PREVIEW_CHARS)))
        lines.append("")

    skipped = report.requested - report.attempted
    if skipped > 0:
        lines.append(f"⛔ Stopped at command {report.attempted} of {report.requested}; {skipped} not run.")
    return "\n".join(lines).rstrip()


def format_tool_error(error: Exception) -> str:
    return f"❌ Tool call failed: {error}"
