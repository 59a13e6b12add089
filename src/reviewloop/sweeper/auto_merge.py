"""NullAutoMerge -- Auto-Merge 协作方的空实现

未接入真实合并服务时使用：不尝试任何合并，所有候选计为 skipped。
"""

import structlog

from reviewloop.core.models import Task

from .models import AutoMergeReport

log = structlog.get_logger()


class NullAutoMerge:
    """不执行合并的 Auto-Merge 实现"""

    async def process(self, tasks: list[Task]) -> AutoMergeReport:
        log.debug("auto_merge_noop", candidate_count=len(tasks))
        return AutoMergeReport(skipped=len(tasks))
