from __future__ import annotations
from urllib.parse import quote, urlencode

from harvester.config import CrawlerConfig


class GitHubEndpoints:
    """
    Builds the REST URLs the crawl walks, with the organization, page size
    and the since/until window baked in.

    Only the first page of a listing is built here; later pages come from
    the Link header of the previous response.
    """

    def __init__(self, config: CrawlerConfig) -> None:
        self._api      = config.api_url.rstrip("/")
        self._org      = quote(config.org, safe="")
        self._per_page = config.per_page

        window = {"per_page": self._per_page}
        if config.since:
            window["since"] = config.since
        if config.until:
            window["until"] = config.until
        self._commit_query = urlencode(window)

    def _repo(self, repo: str) -> str:
        return f"{self._api}/repos/{self._org}/{quote(repo, safe='')}"

    def repos(self) -> str:
        return f"{self._api}/orgs/{self._org}/repos?per_page={self._per_page}"

    def commits(self, repo: str) -> str:
        return f"{self._repo(repo)}/commits?{self._commit_query}"

    def pulls(self, repo: str) -> str:
        return f"{self._repo(repo)}/pulls?state=all&per_page={self._per_page}"

    def commit(self, repo: str, sha: str) -> str:
        return f"{self._repo(repo)}/commits/{quote(sha, safe='')}"

    def pull(self, repo: str, number: int) -> str:
        return f"{self._repo(repo)}/pulls/{number}"
