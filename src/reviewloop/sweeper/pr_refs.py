"""PR 引用解析 -- 从任务 metadata 中提取唯一的规范 PR URL

候选来源按优先级：
    pr_url > qa_bundle.pr_link > review_handoff.pr_url > artifacts[] 中第一个 PR 链接
doc_only / config_only 任务不携带可评审变更，直接返回 None。
"""

import re
from typing import Any, NamedTuple

_PR_NUMBER_RE = re.compile(r"/pull/(\d+)")
_GITHUB_PR_RE = re.compile(r"github\.com/([^/]+/[^/]+)/pull/(\d+)")


class PrRef(NamedTuple):
    """解析后的 PR 引用"""

    repo: str
    number: int


def is_valid_pr_url(url: str) -> bool:
    """PR 编号必须是正整数（过滤 /pull/0、/pull/00 等占位符）"""
    match = _PR_NUMBER_RE.search(url)
    if not match:
        return False
    return int(match.group(1)) > 0


def parse_pr_url(url: str) -> PrRef | None:
    """解析 GitHub PR URL 为 (owner/repo, number)，无效返回 None"""
    match = _GITHUB_PR_RE.search(url)
    if not match:
        return None
    number = int(match.group(2))
    if number <= 0:
        return None
    return PrRef(repo=match.group(1), number=number)


def _looks_like_pr_link(value: Any) -> bool:
    return isinstance(value, str) and "github.com" in value and "/pull/" in value


def extract_pr_url(metadata: dict[str, Any]) -> str | None:
    """提取任务关联的 PR URL

    Args:
        metadata: 任务 metadata

    Returns:
        第一个有效的候选 URL，没有则返回 None
    """
    review_handoff = metadata.get("review_handoff")
    if not isinstance(review_handoff, dict):
        review_handoff = {}
    if review_handoff.get("doc_only") or review_handoff.get("config_only"):
        return None

    candidates: list[str] = []

    pr_url = metadata.get("pr_url")
    if pr_url and isinstance(pr_url, str):
        candidates.append(pr_url)

    qa_bundle = metadata.get("qa_bundle")
    if isinstance(qa_bundle, dict):
        pr_link = qa_bundle.get("pr_link")
        if pr_link and isinstance(pr_link, str):
            candidates.append(pr_link)

    handoff_url = review_handoff.get("pr_url")
    if handoff_url and isinstance(handoff_url, str):
        candidates.append(handoff_url)

    artifacts = metadata.get("artifacts")
    if isinstance(artifacts, list):
        artifact_link = next((a for a in artifacts if _looks_like_pr_link(a)), None)
        if artifact_link:
            candidates.append(artifact_link)

    for url in candidates:
        if is_valid_pr_url(url):
            return url
    return None
