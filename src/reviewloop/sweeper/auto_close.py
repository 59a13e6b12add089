"""Auto-Close 判定 -- 纯谓词，无副作用

validating 任务满足以下全部条件时可免人工关闭：
1. metadata.reconciled 为真（来自对账流程，而非新代码）
2. 评审已通过（reviewer_approved is True 或 review_state == "approved"）
3. 没有 PR 引用，或 PR 已合并（pr_merged is True 或存在 merge_commit）
"""

from typing import Any

from reviewloop.core.models import Task

from .pr_refs import extract_pr_url, is_valid_pr_url


def is_review_approved(metadata: dict[str, Any]) -> bool:
    return metadata.get("reviewer_approved") is True or metadata.get("review_state") == "approved"


def is_pr_merged(metadata: dict[str, Any]) -> bool:
    return metadata.get("pr_merged") is True or bool(metadata.get("merge_commit"))


def is_auto_closable(task: Task, metadata: dict[str, Any]) -> bool:
    """判断 validating 任务是否可自动关闭

    Args:
        task: 任务（保留给调用方一致的签名，判定只依赖 metadata）
        metadata: 任务 metadata

    Returns:
        True 表示满足自动关闭契约
    """
    if not metadata.get("reconciled"):
        return False

    if not is_review_approved(metadata):
        return False

    if extract_pr_url(metadata) and not is_pr_merged(metadata):
        return False

    return True


def has_required_artifacts(metadata: dict[str, Any]) -> bool:
    """validating 任务是否带有必需产物（PR 链接或 qa_bundle 证据）

    doc_only / config_only 与 reconciled 任务豁免。
    """
    review_handoff = metadata.get("review_handoff")
    if isinstance(review_handoff, dict) and (
        review_handoff.get("doc_only") or review_handoff.get("config_only")
    ):
        return True

    if metadata.get("reconciled") is True:
        return True

    if extract_pr_url(metadata):
        return True

    qa_bundle = metadata.get("qa_bundle")
    if isinstance(qa_bundle, dict):
        pr_link = qa_bundle.get("pr_link")
        if isinstance(pr_link, str) and is_valid_pr_url(pr_link):
            return True
        if qa_bundle.get("test_results") or qa_bundle.get("deployment_url"):
            return True

    artifacts = metadata.get("artifacts")
    if isinstance(artifacts, list):
        return any(
            isinstance(a, str) and a and not a.startswith("duplicate:") for a in artifacts
        )

    return False
