"""GitHubPrStateChecker -- 外部 PR 实时状态查询

通过 GitHub REST API 查询 PR 状态，结果按 URL 缓存（默认 5 分钟，失败结果同样缓存，
避免对不可达服务反复请求）。只被按需的 Drift Report 使用，周期扫描从不调用。
此方法不抛出异常：所有失败都返回 state=unknown 并附带 error。
"""

import time
from collections.abc import Callable

import httpx
import structlog

from .exceptions import PrStateCheckError
from .models import LivePrState, PrState
from .pr_refs import parse_pr_url

log = structlog.get_logger()


class GitHubPrStateChecker:
    """GitHub PR 状态查询客户端（带 TTL 缓存）"""

    def __init__(
        self,
        api_base_url: str = "https://api.github.com",
        token: str = "",
        timeout_s: float = 10,
        cache_ttl_s: float = 5 * 60,
        transport: httpx.AsyncBaseTransport | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Args:
            api_base_url: GitHub API 基础 URL
            token: 访问令牌，空字符串表示匿名访问
            timeout_s: 单次请求超时（秒）
            cache_ttl_s: 每个 URL 的缓存时长（秒）
            transport: 自定义 httpx transport（测试注入 MockTransport）
            monotonic: 单调时钟（测试注入）
        """
        self._api_base_url = api_base_url.rstrip("/")
        self._token = token
        self._timeout_s = timeout_s
        self._cache_ttl_s = cache_ttl_s
        self._transport = transport
        self._monotonic = monotonic
        self._cache: dict[str, tuple[LivePrState, float]] = {}

    async def check_live_state(self, pr_url: str) -> LivePrState:
        """查询 PR 实时状态

        Returns:
            LivePrState；URL 无效、网络失败、非预期响应时 state=unknown
        """
        now = self._monotonic()
        cached = self._cache.get(pr_url)
        if cached is not None and now - cached[1] < self._cache_ttl_s:
            return cached[0]

        try:
            result = LivePrState(state=await self._fetch_state(pr_url))
        except PrStateCheckError as e:
            log.debug("pr_state_check_failed", pr_url=pr_url, reason=e.reason)
            result = LivePrState(state=PrState.UNKNOWN, error=e.reason)

        self._cache[pr_url] = (result, now)
        return result

    def clear_cache(self) -> None:
        self._cache.clear()

    async def _fetch_state(self, pr_url: str) -> PrState:
        ref = parse_pr_url(pr_url)
        if ref is None:
            raise PrStateCheckError(pr_url, "Invalid PR URL format")

        url = f"{self._api_base_url}/repos/{ref.repo}/pulls/{ref.number}"
        headers = {"Accept": "application/vnd.github+json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=self._timeout_s,
            ) as http_client:
                resp = await http_client.get(url, headers=headers)
        except httpx.HTTPError as e:
            raise PrStateCheckError(pr_url, f"{type(e).__name__}: {e}") from e

        if resp.status_code != 200:
            raise PrStateCheckError(pr_url, f"HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as e:
            raise PrStateCheckError(pr_url, "Invalid JSON response") from e

        if data.get("merged") or data.get("merged_at"):
            return PrState.MERGED
        state = str(data.get("state", "")).lower()
        if state == "open":
            return PrState.OPEN
        if state == "closed":
            return PrState.CLOSED
        return PrState.UNKNOWN
