"""违规修复建议文本生成"""

from .models import DriftIssue
from .pr_refs import parse_pr_url


def generate_remediation(task_id: str, issue: DriftIssue, pr_url: str | None = None) -> str:
    """根据问题类型生成可直接执行的修复建议

    Args:
        task_id: 任务 ID
        issue: 问题分类
        pr_url: 关联的 PR URL（可选）

    Returns:
        多行修复建议文本
    """
    match issue:
        case DriftIssue.STALE_VALIDATING:
            target = f" at {pr_url}" if pr_url else ""
            return (
                "Reviewer needs to act. Remediation:\n"
                f"  1. Review the PR{target}\n"
                f'  2. Then: PATCH /tasks/{task_id} {{"metadata": {{"reviewer_approved": true}}}}'
            )
        case DriftIssue.PR_MERGED_NOT_CLOSED:
            return (
                "PR merged but task still validating. Remediation:\n"
                f'  PATCH /tasks/{task_id} {{"status": "done", "metadata": {{"reviewer_approved": true}}}}'
            )
        case DriftIssue.ORPHAN_PR:
            ref = parse_pr_url(pr_url) if pr_url else None
            if ref is None:
                return "PR may still be open after task completion. Close or merge it manually."
            return (
                "PR may still be open after task completion. Remediation:\n"
                f"  gh pr merge {ref.number} --repo {ref.repo} --squash\n"
                f"  Or: gh pr close {ref.number} --repo {ref.repo}"
            )
        case DriftIssue.NO_PR_LINKED:
            return (
                "No PR URL in task metadata. Remediation:\n"
                f'  PATCH /tasks/{task_id} {{"metadata": {{"pr_url": "https://github.com/OWNER/REPO/pull/NUM"}}}}'
            )
        case _:
            return "No automated remediation available"
