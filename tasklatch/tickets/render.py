"""Compact markdown board for the ticket tables."""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from tasklatch.tickets.model import TICKET_STATES, Criterion, Evidence, Ticket


def render_board(
    tickets: Sequence[Ticket],
    criteria: Sequence[Criterion],
    evidence: Sequence[Evidence],
    *,
    owners: Mapping[str, str] | None = None,
    generated_at: str = "",
) -> str:
    owners = owners or {}
    criteria_by_task: dict[str, list[Criterion]] = {}
    for criterion in criteria:
        criteria_by_task.setdefault(criterion.task_id, []).append(criterion)
    evidence_count: dict[str, int] = {}
    for item in evidence:
        evidence_count[item.task_id] = evidence_count.get(item.task_id, 0) + 1

    counts = {state: 0 for state in TICKET_STATES}
    for ticket in tickets:
        counts[ticket.state] = counts.get(ticket.state, 0) + 1

    lines = ["# Task Board", ""]
    if generated_at:
        lines.extend([f"_generated {generated_at}_", ""])
    lines.append(" | ".join(f"{state}: {count}" for state, count in counts.items()))

    ordered_states = [*TICKET_STATES, *sorted(set(counts) - set(TICKET_STATES))]
    for state in ordered_states:
        group = sorted((t for t in tickets if t.state == state), key=lambda t: t.id)
        if not group:
            continue
        lines.extend(
            [
                "",
                f"## {state}",
                "",
                "| id | title | criteria | evidence | deps | claimed_by |",
                "|----|-------|----------|----------|------|------------|",
            ]
        )
        for ticket in group:
            task_criteria = criteria_by_task.get(ticket.id, [])
            checked = sum(1 for criterion in task_criteria if criterion.checked)
            progress = f"{checked}/{len(task_criteria)}" if task_criteria else "-"
            lines.append(
                "| "
                + " | ".join(
                    [
                        ticket.id,
                        ticket.title.replace("|", "/"),
                        progress,
                        str(evidence_count.get(ticket.id, 0)),
                        ",".join(ticket.deps) or "-",
                        owners.get(ticket.id, "") or "-",
                    ]
                )
                + " |"
            )
    return "\n".join(lines) + "\n"
