"""Tests for platform API fetchers."""

import base64
import sys
from datetime import datetime, timezone
from unittest.mock import Mock, patch, MagicMock

import pytest
import requests

sys.path.insert(0, "scripts")

from fetcher import (
    fetch_all_commits,
    fetch_azure_devops_commits,
    fetch_azure_devops_repos,
    fetch_github_commits,
    fetch_github_repos,
    fetch_gitlab_commits,
    fetch_gitlab_repos,
    get_domain,
    get_headers,
    handle_rate_limit,
    request_with_retry,
)
from identity import Platform

SINCE = datetime(2025, 1, 1, tzinfo=timezone.utc)


def ok_response(payload):
    resp = Mock()
    resp.status_code = 200
    resp.json.return_value = payload
    return resp


class TestRateLimitHandling:
    """Test rate limit detection and handling."""

    def test_rate_limit_not_hit(self):
        """When remaining > 0, should return False."""
        resp = Mock()
        resp.headers = {"X-RateLimit-Remaining": "100", "X-RateLimit-Reset": "1234567890"}
        assert handle_rate_limit(resp) is False

    def test_rate_limit_hit_waits(self):
        """When remaining = 0, should wait and return True."""
        import time
        resp = Mock()
        reset_time = int(time.time()) + 2
        resp.headers = {"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": str(reset_time)}

        with patch("fetcher.time.sleep") as mock_sleep:
            result = handle_rate_limit(resp)
            assert result is True
            mock_sleep.assert_called_once()

    def test_retry_after_header(self):
        """GitLab and Azure DevOps send Retry-After."""
        resp = Mock()
        resp.headers = {"Retry-After": "5"}

        with patch("fetcher.time.sleep") as mock_sleep:
            assert handle_rate_limit(resp) is True
            mock_sleep.assert_called_once_with(5)

    def test_rate_limit_no_headers(self):
        """When no rate limit headers, should return False."""
        resp = Mock()
        resp.headers = {}
        assert handle_rate_limit(resp) is False


class TestRequestWithRetry:
    """Test retry logic with exponential backoff."""

    @patch("fetcher.requests.get")
    def test_success_first_try(self, mock_get):
        """Successful request on first try."""
        mock_resp = Mock()
        mock_resp.status_code = 200
        mock_get.return_value = mock_resp

        resp = request_with_retry("get", "http://test.com", max_retries=3, timeout=10)
        assert resp.status_code == 200
        assert mock_get.call_count == 1

    @patch("fetcher.time.sleep")
    @patch("fetcher.requests.get")
    def test_retry_on_timeout(self, mock_get, mock_sleep):
        """Should retry on timeout with exponential backoff."""
        mock_get.side_effect = [
            requests.exceptions.Timeout(),
            requests.exceptions.Timeout(),
            Mock(status_code=200),
        ]

        resp = request_with_retry("get", "http://test.com", max_retries=3, timeout=10)
        assert resp.status_code == 200
        assert mock_get.call_count == 3
        # Backoff delays: 1s, 2s
        assert mock_sleep.call_count == 2

    @patch("fetcher.time.sleep")
    @patch("fetcher.requests.get")
    def test_max_retries_exceeded(self, mock_get, mock_sleep):
        """Should raise after max retries."""
        mock_get.side_effect = requests.exceptions.Timeout()

        with pytest.raises(requests.exceptions.Timeout):
            request_with_retry("get", "http://test.com", max_retries=3, timeout=10)

        assert mock_get.call_count == 3

    @patch("fetcher.requests.get")
    def test_unauthorized_not_retried(self, mock_get):
        """A rejected token fails immediately."""
        mock_get.return_value = Mock(status_code=401, headers={})

        with pytest.raises(PermissionError):
            request_with_retry("get", "http://test.com", max_retries=3, timeout=10)
        assert mock_get.call_count == 1


class TestHeaders:
    """Test per-platform auth headers and domains."""

    def test_missing_token_raises(self, monkeypatch):
        monkeypatch.delenv("GITLAB_TOKEN", raising=False)
        with pytest.raises(ValueError, match="GITLAB_TOKEN"):
            get_headers(Platform.GITLAB)

    def test_custom_token_env(self, monkeypatch):
        monkeypatch.setenv("MY_GH", "abc")
        config = {"platforms": {"github": {"token_env": "MY_GH"}}}
        assert get_headers(Platform.GITHUB, config)["Authorization"] == "Bearer abc"

    def test_azure_basic_auth(self, monkeypatch):
        monkeypatch.setenv("AZURE_DEVOPS_TOKEN", "pat")
        auth = get_headers(Platform.AZURE_DEVOPS)["Authorization"]
        assert auth == "Basic " + base64.b64encode(b":pat").decode()

    def test_gitlab_domain_gets_api_suffix(self):
        config = {"platforms": {"gitlab": {"domain": "https://git.example.com/"}}}
        assert get_domain(Platform.GITLAB, config) == "https://git.example.com/api/v4"
        assert get_domain(Platform.GITLAB) == "https://gitlab.com/api/v4"


class TestFetchCommits:
    """Test commit fetching with pagination."""

    @patch("fetcher.time.sleep")
    @patch("fetcher.get_headers")
    @patch("fetcher.request_with_retry")
    def test_gitlab_follows_pages(self, mock_request, mock_headers, mock_sleep):
        mock_headers.return_value = {"Authorization": "Bearer test"}
        full_page = [{"id": str(i), "author_name": "A", "author_email": "a@x.com"} for i in range(100)]
        mock_request.side_effect = [ok_response(full_page), ok_response(full_page[:5])]

        commits = fetch_gitlab_commits({"path": "group/sub/project"}, SINCE)
        assert len(commits) == 105
        assert commits[0]["author_email"] == "a@x.com"
        url = mock_request.call_args[0][1]
        assert "group%2Fsub%2Fproject" in url

    @patch("fetcher.get_headers")
    @patch("fetcher.request_with_retry")
    def test_github_empty_repo(self, mock_request, mock_headers):
        """GitHub answers 409 for empty repositories."""
        mock_headers.return_value = {}
        mock_request.return_value = Mock(status_code=409)

        assert fetch_github_commits({"path": "org/empty"}, SINCE) == []

    @patch("fetcher.get_headers")
    @patch("fetcher.request_with_retry")
    def test_github_keeps_author_shape(self, mock_request, mock_headers):
        mock_headers.return_value = {}
        mock_request.return_value = ok_response([
            {
                "sha": "abc",
                "author": {"login": "alice"},
                "commit": {"author": {"name": "Alice", "email": "a@x.com", "date": "2025-01-02"}, "message": "m"},
            },
        ])

        commits = fetch_github_commits({"path": "org/repo"}, SINCE)
        assert commits == [
            {"sha": "abc", "commit": {"author": {"name": "Alice", "email": "a@x.com", "date": "2025-01-02"}, "message": "m"}}
        ]
        params = mock_request.call_args.kwargs["params"]
        assert params["since"] == "2025-01-01T00:00:00Z"

    @patch("fetcher.time.sleep")
    @patch("fetcher.get_headers")
    @patch("fetcher.request_with_retry")
    def test_azure_devops_skip_paging(self, mock_request, mock_headers, mock_sleep):
        mock_headers.return_value = {}
        page = {"value": [{"commitId": str(i), "author": {"name": "A", "email": "a@x.com"}} for i in range(100)]}
        mock_request.side_effect = [ok_response(page), ok_response({"value": []})]

        commits = fetch_azure_devops_commits({"org": "acme", "path": "Proj/repo"}, SINCE)
        assert len(commits) == 100
        skips = [c.kwargs["params"]["searchCriteria.$skip"] for c in mock_request.call_args_list]
        assert skips == [0, 100]
        assert "/acme/Proj/_apis/git/repositories/repo/commits" in mock_request.call_args[0][1]


class TestFetchRepos:
    """Test repository listing filters."""

    @patch("fetcher.get_headers")
    @patch("fetcher.request_with_retry")
    def test_github_skips_archived_and_forks(self, mock_request, mock_headers):
        mock_headers.return_value = {}
        mock_request.return_value = ok_response([
            {"name": "live", "full_name": "org/live", "owner": {"login": "org"}},
            {"name": "old", "full_name": "org/old", "owner": {"login": "org"}, "archived": True},
            {"name": "fork", "full_name": "org/fork", "owner": {"login": "org"}, "fork": True},
        ])
        config = {"platforms": {"github": {"skip_forks": True}}}

        repos = fetch_github_repos(config)
        assert repos == [{"org": "org", "name": "live", "path": "org/live", "platform": "github"}]

    @patch("fetcher.get_headers")
    @patch("fetcher.request_with_retry")
    def test_gitlab_skips_archived_and_splits_namespace(self, mock_request, mock_headers):
        mock_headers.return_value = {}
        mock_request.return_value = ok_response([
            {"path_with_namespace": "group/sub/project"},
            {"path_with_namespace": "group/old", "archived": True},
        ])

        repos = fetch_gitlab_repos()
        assert repos == [
            {"org": "group/sub", "name": "project", "path": "group/sub/project", "platform": "gitlab"}
        ]

    @patch("fetcher.time.sleep")
    @patch("fetcher.get_headers")
    @patch("fetcher.request_with_retry")
    def test_azure_devops_orgs_from_comma_string(self, mock_request, mock_headers, mock_sleep):
        """Missing orgs are skipped and disabled repos dropped."""
        mock_headers.return_value = {}
        missing = Mock(status_code=404)
        found = ok_response({"value": [
            {"name": "api", "project": {"name": "Proj"}},
            {"name": "dead", "project": {"name": "Proj"}, "isDisabled": True},
        ]})
        mock_request.side_effect = [missing, found]
        config = {"platforms": {"azuredevops": {"orgs": "gone, acme"}}}

        repos = fetch_azure_devops_repos(config)
        assert repos == [{"org": "acme", "name": "api", "path": "Proj/api", "platform": "azuredevops"}]
        urls = [c[0][1] for c in mock_request.call_args_list]
        assert urls == [
            "https://dev.azure.com/gone/_apis/git/repositories",
            "https://dev.azure.com/acme/_apis/git/repositories",
        ]

    @patch("fetcher.time.sleep")
    @patch("fetcher.get_headers")
    @patch("fetcher.request_with_retry")
    def test_azure_devops_orgs_from_list(self, mock_request, mock_headers, mock_sleep):
        mock_headers.return_value = {}
        mock_request.side_effect = [
            ok_response({"value": [{"name": "a", "project": {"name": "P1"}}]}),
            ok_response({"value": [{"name": "b", "project": {"name": "P2"}}]}),
        ]
        config = {"platforms": {"azuredevops": {"orgs": ["one", "two"]}}}

        repos = fetch_azure_devops_repos(config)
        assert [(r["org"], r["path"]) for r in repos] == [("one", "P1/a"), ("two", "P2/b")]

    @patch("fetcher.get_headers")
    @patch("fetcher.request_with_retry")
    def test_azure_devops_no_orgs(self, mock_request, mock_headers):
        mock_headers.return_value = {}
        assert fetch_azure_devops_repos({"platforms": {"azuredevops": {}}}) == []
        mock_request.assert_not_called()


class TestFetchAllCommits:
    """Test parallel fetching."""

    @patch("fetcher.fetch_commits")
    def test_partial_failure_continues(self, mock_fetch):
        """Should continue and log warning on partial failures."""
        mock_fetch.side_effect = [
            [{"author_name": "a"}],
            Exception("API Error"),
            [],
        ]

        repos = [{"path": "g/repo1"}, {"path": "g/repo2"}, {"path": "g/repo3"}]
        config = {"api": {"max_workers": 1}}

        results = fetch_all_commits(Platform.GITLAB, repos, SINCE, config)

        # Should have 2 successful results
        assert len(results) == 2
        assert "g/repo2" not in results

    @patch("fetcher.fetch_commits")
    def test_respects_max_workers(self, mock_fetch):
        """Should use max_workers from config."""
        mock_fetch.return_value = []

        repos = [{"path": f"g/repo{i}"} for i in range(10)]
        config = {"api": {"max_workers": 2}}

        with patch("fetcher.ThreadPoolExecutor") as mock_executor, \
                patch("fetcher.as_completed", side_effect=lambda fs: list(fs)):
            mock_executor.return_value.__enter__ = Mock(return_value=MagicMock())
            mock_executor.return_value.__exit__ = Mock(return_value=False)

            fetch_all_commits(Platform.GITLAB, repos, SINCE, config)

            mock_executor.assert_called_once_with(max_workers=2)
