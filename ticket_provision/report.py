"""Plain-text completion report for a provisioning run."""
from __future__ import annotations

from typing import List

from .models import ProvisioningResult, UserRecord

_OK = "[ OK ]"
_FAIL = "[FAIL]"


def _marker(succeeded: bool) -> str:
    return _OK if succeeded else _FAIL


def render_report(record: UserRecord, result: ProvisioningResult) -> str:
    lines: List[str] = []
    if result.is_empty:
        lines.append(f"No account was created for {record.display_name}.")
        return "\n".join(lines)

    lines.append("Account created")
    lines.append(f"  Display name:   {result.display_name}")
    lines.append(f"  Principal name: {result.user_principal_name}")
    lines.append(f"  Object ID:      {result.directory_id}")
    if result.office_location:
        lines.append(f"  Office:         {result.office_location}")
    if record.title:
        lines.append(f"  Title:          {record.title}")
    if record.department:
        lines.append(f"  Department:     {record.department}")

    if result.step_outcomes:
        lines.append("")
        lines.append("Steps")
        for step in result.step_outcomes:
            detail = f" ({step.detail})" if step.detail else ""
            lines.append(f"  {_marker(step.succeeded)} {step.step}{detail}")

    lines.append("")
    lines.append("Groups")
    if not result.group_outcomes:
        lines.append("  (none requested)")
    for group in result.group_outcomes:
        reason = f" - {group.reason}" if group.reason else ""
        lines.append(f"  {_marker(group.succeeded)} {group.group_name}{reason}")

    lines.append("")
    lines.append("Licenses")
    if result.license_policy_matched is False:
        lines.append(f"  {_FAIL} No license policy matched; assign a license manually.")
    for license_outcome in result.license_outcomes:
        reason = f" - {license_outcome.reason}" if license_outcome.reason else ""
        lines.append(f"  {_marker(license_outcome.succeeded)} {license_outcome.sku_label}{reason}")

    failures = result.failures
    lines.append("")
    if failures:
        lines.append(f"{len(failures)} item(s) need manual follow-up.")
    else:
        lines.append("All steps completed.")

    if record.additional_notes:
        lines.append("")
        lines.append("Additional notes")
        lines.extend(f"  {line}" for line in record.additional_notes.splitlines())
    return "\n".join(lines)


__all__ = ["render_report"]
