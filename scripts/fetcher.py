"""GitHub, GitLab and Azure DevOps API interactions for repos and commits."""

import base64
import logging
import os
import time
from datetime import datetime
from concurrent.futures import ThreadPoolExecutor, as_completed
from urllib.parse import quote

import requests

from identity import Platform, parse_platform

log = logging.getLogger(__name__)

DEFAULT_DOMAINS = {
    Platform.GITHUB: "https://api.github.com",
    Platform.GITLAB: "https://gitlab.com/api/v4",
    Platform.AZURE_DEVOPS: "https://dev.azure.com",
}

DEFAULT_TOKEN_ENV = {
    Platform.GITHUB: "GITHUB_TOKEN",
    Platform.GITLAB: "GITLAB_TOKEN",
    Platform.AZURE_DEVOPS: "AZURE_DEVOPS_TOKEN",
}

AZURE_API_VERSION = "7.0"
PAGE_SIZE = 100

# Defaults (can be overridden via config)
DEFAULT_TIMEOUT = 30
DEFAULT_MAX_RETRIES = 3
DEFAULT_RATE_LIMIT_DELAY = 0.1
MAX_RATE_LIMIT_WAIT = 300


def platform_config(platform: Platform, config: dict = None) -> dict:
    cfg = config or {}
    return cfg.get("platforms", {}).get(platform.value) or {}


def api_settings(config: dict = None) -> tuple:
    api_cfg = (config or {}).get("api", {})
    return (
        api_cfg.get("request_timeout", DEFAULT_TIMEOUT),
        api_cfg.get("max_retries", DEFAULT_MAX_RETRIES),
        api_cfg.get("rate_limit_delay", DEFAULT_RATE_LIMIT_DELAY),
    )


def get_domain(platform: Platform, config: dict = None) -> str:
    domain = platform_config(platform, config).get("domain") or DEFAULT_DOMAINS[platform]
    domain = domain.rstrip("/")
    if platform is Platform.GITLAB and not domain.endswith("/api/v4"):
        domain += "/api/v4"
    return domain


def get_headers(platform: Platform, config: dict = None) -> dict:
    env_name = platform_config(platform, config).get("token_env") or DEFAULT_TOKEN_ENV[platform]
    token = os.environ.get(env_name)
    if not token:
        raise ValueError(f"{env_name} environment variable required for {platform.label}")

    if platform is Platform.GITHUB:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
    if platform is Platform.GITLAB:
        return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
    # Azure DevOps personal access tokens use basic auth with an empty user
    auth = base64.b64encode(f":{token}".encode()).decode()
    return {"Authorization": f"Basic {auth}", "Content-Type": "application/json"}


def handle_rate_limit(response, max_retries=DEFAULT_MAX_RETRIES):
    """Check rate limit headers and wait if necessary. Returns True if should retry."""
    retry_after = response.headers.get("Retry-After")
    if retry_after is not None:
        try:
            wait_seconds = int(retry_after)
        except ValueError:
            wait_seconds = 0
        if 0 < wait_seconds < MAX_RATE_LIMIT_WAIT:
            log.warning(f"Rate limit hit, waiting {wait_seconds}s (Retry-After)")
            time.sleep(wait_seconds)
            return True

    remaining = response.headers.get("X-RateLimit-Remaining")
    reset_time = response.headers.get("X-RateLimit-Reset")

    if remaining is not None and int(remaining) == 0:
        if reset_time:
            wait_seconds = int(reset_time) - int(time.time()) + 1
            if wait_seconds > 0 and wait_seconds < MAX_RATE_LIMIT_WAIT:
                log.warning(f"Rate limit hit, waiting {wait_seconds}s")
                time.sleep(wait_seconds)
                return True
        log.error("Rate limit exceeded, no reset time available")
    return False


def request_with_retry(method, url, max_retries=DEFAULT_MAX_RETRIES, timeout=DEFAULT_TIMEOUT, **kwargs):
    """Make HTTP request with exponential backoff retry."""
    last_error = None
    for attempt in range(max_retries):
        try:
            if method == "get":
                resp = requests.get(url, timeout=timeout, **kwargs)
            else:
                resp = requests.post(url, timeout=timeout, **kwargs)

            if resp.status_code in (403, 429) and handle_rate_limit(resp, max_retries):
                continue
            if resp.status_code == 401:
                raise PermissionError(f"Token rejected (401) for {url}; check the token and its scopes")

            return resp
        except requests.exceptions.Timeout as e:
            last_error = e
            log.warning(f"Request timeout (attempt {attempt + 1}/{max_retries}): {url}")
        except requests.exceptions.RequestException as e:
            last_error = e
            log.warning(f"Request error (attempt {attempt + 1}/{max_retries}): {e}")

        # Exponential backoff: 1s, 2s, 4s
        if attempt < max_retries - 1:
            delay = 2 ** attempt
            log.debug(f"Retrying in {delay}s...")
            time.sleep(delay)

    raise last_error or requests.exceptions.RequestException(f"Failed after {max_retries} retries")


def _get_pages(url: str, params: dict, headers: dict, config: dict = None, stop_on=(404,)) -> list:
    """Follow page-numbered pagination until a short page comes back."""
    timeout, max_retries, rate_delay = api_settings(config)
    items = []
    page = 1
    while True:
        params["page"] = page
        resp = request_with_retry(
            "get", url, max_retries=max_retries, timeout=timeout,
            headers=headers, params=params
        )
        if resp.status_code in stop_on:
            log.debug(f"{url} returned {resp.status_code}, treating as empty")
            return items
        resp.raise_for_status()
        batch = resp.json()

        if not batch:
            break
        items.extend(batch)

        if len(batch) < params.get("per_page", PAGE_SIZE):
            break
        page += 1
        time.sleep(rate_delay)

    return items


def fetch_github_repos(config: dict = None) -> list[dict]:
    """Fetch repos visible to the authenticated GitHub user."""
    platform_cfg = platform_config(Platform.GITHUB, config)
    headers = get_headers(Platform.GITHUB, config)
    url = f"{get_domain(Platform.GITHUB, config)}/user/repos"
    params = {
        "per_page": PAGE_SIZE,
        "sort": "updated",
        "direction": "desc",
        "affiliation": "owner,collaborator,organization_member",
    }

    repos = []
    for item in _get_pages(url, params, headers, config, stop_on=()):
        if item.get("archived"):
            log.debug(f"Skipping archived repository: {item['full_name']}")
            continue
        if platform_cfg.get("skip_forks") and item.get("fork"):
            log.debug(f"Skipping forked repository: {item['full_name']}")
            continue
        if platform_cfg.get("skip_private") and item.get("private"):
            log.debug(f"Skipping private repository: {item['full_name']}")
            continue
        owner = item["owner"]["login"]
        repos.append({
            "org": owner,
            "name": item["name"],
            "path": f"{owner}/{item['name']}",
            "platform": Platform.GITHUB.value,
        })
    return repos


def fetch_gitlab_repos(config: dict = None) -> list[dict]:
    """Fetch projects the token's user is a member of."""
    headers = get_headers(Platform.GITLAB, config)
    url = f"{get_domain(Platform.GITLAB, config)}/projects"
    params = {"membership": "true", "archived": "false", "per_page": PAGE_SIZE}

    repos = []
    for item in _get_pages(url, params, headers, config, stop_on=()):
        if item.get("archived"):
            continue
        path = item["path_with_namespace"]
        org, _, name = path.rpartition("/")
        repos.append({
            "org": org,
            "name": name,
            "path": path,
            "platform": Platform.GITLAB.value,
        })
    return repos


def fetch_azure_devops_repos(config: dict = None) -> list[dict]:
    """Fetch git repositories for each configured Azure DevOps organization."""
    platform_cfg = platform_config(Platform.AZURE_DEVOPS, config)
    headers = get_headers(Platform.AZURE_DEVOPS, config)
    timeout, max_retries, rate_delay = api_settings(config)
    domain = get_domain(Platform.AZURE_DEVOPS, config)

    orgs = platform_cfg.get("orgs") or []
    if isinstance(orgs, str):
        orgs = [o.strip() for o in orgs.split(",") if o.strip()]
    if not orgs:
        log.warning("No Azure DevOps organizations configured")

    repos = []
    for org in orgs:
        log.debug(f"Fetching repositories for organization: {org}")
        resp = request_with_retry(
            "get", f"{domain}/{org}/_apis/git/repositories",
            max_retries=max_retries, timeout=timeout,
            headers=headers, params={"api-version": AZURE_API_VERSION},
        )
        if resp.status_code == 404:
            log.error(f"Azure DevOps organization not found: {org}")
            continue
        resp.raise_for_status()
        for item in resp.json().get("value", []):
            if item.get("isDisabled"):
                continue
            project = item.get("project", {}).get("name", "")
            repos.append({
                "org": org,
                "name": item["name"],
                "path": f"{project}/{item['name']}",
                "platform": Platform.AZURE_DEVOPS.value,
            })
        time.sleep(rate_delay)
    return repos


REPO_FETCHERS = {
    Platform.GITHUB: fetch_github_repos,
    Platform.GITLAB: fetch_gitlab_repos,
    Platform.AZURE_DEVOPS: fetch_azure_devops_repos,
}


def fetch_repos(platform, config: dict = None) -> list[dict]:
    tag = parse_platform(platform)
    if tag is None:
        raise ValueError(f"Unsupported platform: {platform}")
    return REPO_FETCHERS[tag](config)


def _iso(since: datetime) -> str:
    return since.strftime("%Y-%m-%dT%H:%M:%SZ")


def fetch_github_commits(repo: dict, since: datetime, config: dict = None) -> list[dict]:
    """Fetch commits on the default branch since the window start."""
    headers = get_headers(Platform.GITHUB, config)
    url = f"{get_domain(Platform.GITHUB, config)}/repos/{repo['path']}/commits"
    params = {"since": _iso(since), "per_page": PAGE_SIZE}

    # 409 is returned for empty repositories
    items = _get_pages(url, params, headers, config, stop_on=(404, 409))
    return [
        {
            "sha": item.get("sha"),
            "commit": {
                "author": (item.get("commit") or {}).get("author"),
                "message": (item.get("commit") or {}).get("message", ""),
            },
        }
        for item in items
    ]


def fetch_gitlab_commits(repo: dict, since: datetime, config: dict = None) -> list[dict]:
    headers = get_headers(Platform.GITLAB, config)
    project = quote(repo["path"], safe="")
    url = f"{get_domain(Platform.GITLAB, config)}/projects/{project}/repository/commits"
    params = {"since": _iso(since), "per_page": PAGE_SIZE}

    items = _get_pages(url, params, headers, config)
    return [
        {
            "id": item.get("id"),
            "author_name": item.get("author_name"),
            "author_email": item.get("author_email"),
            "authored_date": item.get("authored_date"),
            "title": item.get("title", ""),
        }
        for item in items
    ]


def fetch_azure_devops_commits(repo: dict, since: datetime, config: dict = None) -> list[dict]:
    """Fetch commits using $top/$skip paging (Azure has no page numbers)."""
    headers = get_headers(Platform.AZURE_DEVOPS, config)
    timeout, max_retries, rate_delay = api_settings(config)
    project, _, name = repo["path"].partition("/")
    url = (
        f"{get_domain(Platform.AZURE_DEVOPS, config)}/{repo['org']}/{quote(project)}"
        f"/_apis/git/repositories/{quote(name)}/commits"
    )

    commits = []
    skip = 0
    while True:
        params = {
            "searchCriteria.fromDate": _iso(since),
            "searchCriteria.$top": PAGE_SIZE,
            "searchCriteria.$skip": skip,
            "api-version": AZURE_API_VERSION,
        }
        resp = request_with_retry(
            "get", url, max_retries=max_retries, timeout=timeout,
            headers=headers, params=params
        )
        if resp.status_code == 404:
            log.error(f"Repository {repo['path']} not found in {repo['org']}")
            return []
        resp.raise_for_status()
        batch = resp.json().get("value", [])

        for item in batch:
            commits.append({
                "commitId": item.get("commitId"),
                "author": item.get("author"),
                "comment": item.get("comment", ""),
            })

        if len(batch) < PAGE_SIZE:
            break
        skip += PAGE_SIZE
        time.sleep(rate_delay)

    return commits


COMMIT_FETCHERS = {
    Platform.GITHUB: fetch_github_commits,
    Platform.GITLAB: fetch_gitlab_commits,
    Platform.AZURE_DEVOPS: fetch_azure_devops_commits,
}


def fetch_commits(platform, repo: dict, since: datetime, config: dict = None) -> list[dict]:
    tag = parse_platform(platform)
    if tag is None:
        raise ValueError(f"Unsupported platform: {platform}")
    return COMMIT_FETCHERS[tag](repo, since, config)


def fetch_all_commits(platform, repos: list[dict], since: datetime, config: dict = None) -> dict[str, list]:
    """Fetch commits for all repos in parallel, keyed by repo path."""
    cfg = config or {}
    api_cfg = cfg.get("api", {})
    max_workers = api_cfg.get("max_workers", 3)

    results = {}
    failed_repos = []

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {
            executor.submit(fetch_commits, platform, r, since, config): r["path"]
            for r in repos
        }

        for future in as_completed(futures):
            repo_path = futures[future]
            try:
                results[repo_path] = future.result()
                log.info(f"Fetched {len(results[repo_path])} commits: {repo_path}")
            except Exception as e:
                log.error(f"Error fetching {repo_path}: {e}")
                failed_repos.append(repo_path)

    if failed_repos:
        log.warning(f"Failed to fetch {len(failed_repos)} repos: {', '.join(failed_repos)}")

    return results
