"""Azure DevOps Git REST adapter."""

import base64
import json
import logging
from typing import Any, Dict, List
from urllib.parse import quote, urlparse

import requests

from depsync.adapters.base import HostPlatformError, PullRequestHost
from depsync.jobs.pull_requests import normalize_branch_name, normalize_file_path
from depsync.models import FileChange, PullRequestProperties

LOG = logging.getLogger("depsync.adapters.azure")

API_VERSION = "7.1"
API_VERSION_PREVIEW = "7.1-preview.1"
# Reviewer vote meaning "approved"
VOTE_APPROVED = 10
EMPTY_OBJECT_ID = "0" * 40


class AzureDevOpsAdapter(PullRequestHost):
    """Azure DevOps implementation of PullRequestHost for one repository."""

    def __init__(
        self,
        organization_url: str,
        project: str,
        repository: str,
        token: str | None = None,
    ) -> None:
        self.organization_url = organization_url.rstrip("/")
        self.project = project
        self.repository = repository
        self._user_id: str | None = None
        self._session = requests.Session()
        self._session.headers.update({"Accept": "application/json"})
        if token:
            basic = base64.b64encode(f":{token}".encode("utf-8")).decode("ascii")
            self._session.headers["Authorization"] = f"Basic {basic}"

    @property
    def hostname(self) -> str:
        return urlparse(self.organization_url).hostname or ""

    @property
    def api_endpoint(self) -> str:
        parts = urlparse(self.organization_url)
        return f"{parts.scheme}://{parts.netloc}/"

    @property
    def repository_slug(self) -> str:
        """Slug the updater clones, e.g. contoso/prj1/_git/repo1."""
        organization = urlparse(self.organization_url).path.strip("/")
        return f"{organization}/{self.project}/_git/{self.repository}"

    def _repo_path(self, suffix: str = "") -> str:
        return (
            f"/{quote(self.project, safe='')}/_apis/git/repositories/"
            f"{quote(self.repository, safe='')}{suffix}"
        )

    def _request(
        self,
        method: str,
        path: str,
        params: Dict[str, Any] | None = None,
        api_version: str = API_VERSION,
        **kwargs: Any,
    ) -> requests.Response:
        url = f"{self.organization_url}{path}"
        query = {"api-version": api_version, **(params or {})}
        try:
            resp = self._session.request(method, url, params=query, timeout=30, **kwargs)
        except requests.RequestException as e:
            raise HostPlatformError(f"Azure DevOps API request failed: {e}") from e
        if resp.status_code >= 400:
            msg = resp.text
            try:
                data = resp.json()
                if "message" in data:
                    msg = data["message"]
            except ValueError:
                pass
            raise HostPlatformError(f"Azure DevOps API error {resp.status_code}: {msg}")
        return resp

    def get_user_id(self) -> str:
        """Id of the identity behind the token (cached)."""
        if self._user_id is None:
            resp = self._request("GET", "/_apis/connectionData", api_version=API_VERSION_PREVIEW)
            user_id = (resp.json().get("authenticatedUser") or {}).get("id")
            if not user_id:
                raise HostPlatformError("Failed to get authenticated user ID")
            self._user_id = user_id
        return self._user_id

    def get_default_branch(self) -> str | None:
        resp = self._request("GET", self._repo_path())
        return normalize_branch_name(resp.json().get("defaultBranch"))

    def get_branch_names(self) -> List[str] | None:
        resp = self._request("GET", self._repo_path("/refs"), params={"filter": "heads/"})
        refs = resp.json().get("value")
        if refs is None:
            return None
        return [normalize_branch_name(r["name"]) for r in refs if r.get("name")]

    def get_active_pull_request_properties(self, creator_id: str) -> List[PullRequestProperties]:
        """Active PRs of creator_id with their string properties; [] on failure."""
        try:
            resp = self._request(
                "GET",
                self._repo_path("/pullrequests"),
                params={"searchCriteria.creatorId": creator_id, "searchCriteria.status": "active"},
            )
            result = []
            for pr in resp.json().get("value") or []:
                pr_id = pr["pullRequestId"]
                props = self._request("GET", self._repo_path(f"/pullrequests/{pr_id}/properties"))
                values = props.json().get("value") or {}
                result.append(
                    PullRequestProperties(
                        id=pr_id,
                        properties={
                            name: val["$value"]
                            for name, val in values.items()
                            if isinstance(val, dict) and val.get("$value")
                        },
                    )
                )
            return result
        except HostPlatformError as e:
            LOG.error("Failed to list active pull request properties: %s", e)
            return []

    def _commit_changes(self, changes: List[FileChange]) -> List[Dict[str, Any]]:
        result = []
        for change in changes:
            if change.change_type == "none":
                continue
            entry: Dict[str, Any] = {
                "changeType": change.change_type,
                "item": {"path": normalize_file_path(change.path)},
            }
            if change.change_type != "delete":
                content = change.content or ""
                if change.encoding != "base64":
                    content = base64.b64encode(content.encode("utf-8")).decode("ascii")
                entry["newContent"] = {"content": content, "contentType": "base64encoded"}
            result.append(entry)
        return result

    def _push(
        self,
        ref_name: str,
        old_object_id: str,
        comment: str,
        author_name: str,
        author_email: str,
        changes: List[FileChange],
    ) -> List[str]:
        LOG.info(" - Pushing %s file change(s) to branch '%s'...", len(changes), ref_name)
        resp = self._request(
            "POST",
            self._repo_path("/pushes"),
            json={
                "refUpdates": [{"name": ref_name, "oldObjectId": old_object_id}],
                "commits": [
                    {
                        "comment": comment,
                        "author": {"name": author_name, "email": author_email},
                        "changes": self._commit_changes(changes),
                    }
                ],
            },
        )
        commits = [c.get("commitId") for c in resp.json().get("commits") or []]
        if not commits:
            raise HostPlatformError("Failed to push changes to source branch, no commits were created")
        LOG.info(" - Pushed commit: %s.", ", ".join(str(c) for c in commits))
        return commits

    def create_pull_request(
        self,
        source_branch: str,
        source_commit: str,
        target_branch: str,
        author_name: str,
        author_email: str,
        title: str,
        description: str,
        commit_message: str,
        changes: List[FileChange],
        properties: Dict[str, str] | None = None,
        labels: List[str] | None = None,
    ) -> int | None:
        LOG.info("Creating pull request '%s'...", title)
        try:
            self._push(
                f"refs/heads/{source_branch}",
                source_commit,
                commit_message,
                author_name,
                author_email,
                changes,
            )
            LOG.info(" - Creating pull request to merge '%s' into '%s'...", source_branch, target_branch)
            resp = self._request(
                "POST",
                self._repo_path("/pullrequests"),
                json={
                    "sourceRefName": f"refs/heads/{source_branch}",
                    "targetRefName": f"refs/heads/{target_branch}",
                    "title": title,
                    "description": description,
                    "labels": [{"name": label} for label in labels or []],
                },
            )
            pr_id = resp.json().get("pullRequestId")
            if not pr_id:
                raise HostPlatformError("Failed to create pull request, no pull request id was returned")
            LOG.info(" - Created pull request: #%s.", pr_id)

            if properties:
                LOG.info(" - Adding dependency metadata to pull request properties...")
                self._request(
                    "PATCH",
                    self._repo_path(f"/pullrequests/{pr_id}/properties"),
                    data=_json_patch(properties),
                    headers={"Content-Type": "application/json-patch+json"},
                )
            LOG.info(" - Pull request was created successfully.")
            return pr_id
        except HostPlatformError as e:
            LOG.error("Failed to create pull request: %s", e)
            return None

    def update_pull_request(
        self,
        pull_request_id: int,
        commit: str,
        author_name: str,
        author_email: str,
        changes: List[FileChange],
    ) -> bool:
        """Rebase the source branch onto commit and push the new changes.

        Skipped (still a success) when someone else committed to the branch
        or when it is not behind its target.
        """
        LOG.info("Updating pull request #%s...", pull_request_id)
        try:
            pr = self._request("GET", self._repo_path(f"/pullrequests/{pull_request_id}")).json()
            commits = self._request("GET", self._repo_path(f"/pullrequests/{pull_request_id}/commits")).json()
            if any((c.get("author") or {}).get("email") != author_email for c in commits.get("value") or []):
                LOG.info(" - Skipping update as pull request has been modified by another user.")
                return True

            source_ref = pr["sourceRefName"]
            source_branch = normalize_branch_name(source_ref)
            target_branch = normalize_branch_name(pr.get("targetRefName"))
            stats = self._request(
                "GET", self._repo_path("/stats/branches"), params={"name": source_branch}
            ).json()
            behind = stats.get("behindCount")
            if behind is None:
                raise HostPlatformError(f"Failed to get branch stats for '{source_ref}'")
            if behind == 0:
                LOG.info(" - Skipping update as source branch is not behind target branch.")
                return True

            LOG.info(
                " - Rebasing '%s' into '%s' (%s commit(s) behind)...", target_branch, source_branch, behind
            )
            rebase = self._request(
                "POST",
                self._repo_path("/refs"),
                json=[
                    {
                        "name": source_ref,
                        "oldObjectId": (pr.get("lastMergeSourceCommit") or {}).get("commitId"),
                        "newObjectId": commit,
                    }
                ],
            ).json()
            if not (rebase.get("value") or [{}])[0].get("success"):
                raise HostPlatformError("Failed to rebase the target branch into the source branch")

            if pr.get("mergeStatus") == "conflicts":
                message = "Resolve merge conflicts"
            else:
                message = f"Rebase '{source_branch}' onto '{target_branch}'"
            self._push(source_ref, commit, message, author_name, author_email, changes)
            LOG.info(" - Pull request was updated successfully.")
            return True
        except HostPlatformError as e:
            LOG.error("Failed to update pull request: %s", e)
            return False

    def approve_pull_request(self, pull_request_id: int) -> bool:
        LOG.info("Approving pull request #%s...", pull_request_id)
        try:
            user_id = self.get_user_id()
            resp = self._request(
                "PUT",
                self._repo_path(f"/pullrequests/{pull_request_id}/reviewers/{user_id}"),
                # Approval of a previous iteration does not carry over
                json={"vote": VOTE_APPROVED, "isReapprove": True},
            )
            if resp.json().get("vote") != VOTE_APPROVED:
                raise HostPlatformError("Failed to approve pull request, vote was not recorded")
            LOG.info(" - Pull request was approved successfully.")
            return True
        except HostPlatformError as e:
            LOG.error("Failed to approve pull request: %s", e)
            return False

    def abandon_pull_request(
        self,
        pull_request_id: int,
        comment: str | None = None,
        delete_source_branch: bool = False,
    ) -> bool:
        LOG.info("Abandoning pull request #%s...", pull_request_id)
        try:
            user_id = self.get_user_id()
            if comment:
                LOG.info(" - Adding abandonment reason comment to pull request...")
                thread = self._request(
                    "POST",
                    self._repo_path(f"/pullrequests/{pull_request_id}/threads"),
                    json={
                        "status": "closed",
                        "comments": [{"author": {"id": user_id}, "content": comment, "commentType": "system"}],
                    },
                ).json()
                if not thread.get("id"):
                    raise HostPlatformError("Failed to add comment to pull request, thread was not created")

            pr = self._request(
                "PATCH",
                self._repo_path(f"/pullrequests/{pull_request_id}"),
                json={"status": "abandoned", "closedBy": {"id": user_id}},
            ).json()
            if pr.get("status") != "abandoned":
                raise HostPlatformError("Failed to abandon pull request, status was not updated")

            if delete_source_branch:
                LOG.info(" - Deleting source branch...")
                deleted = self._request(
                    "POST",
                    self._repo_path("/refs"),
                    json=[
                        {
                            "name": pr.get("sourceRefName"),
                            "oldObjectId": (pr.get("lastMergeSourceCommit") or {}).get("commitId"),
                            "newObjectId": EMPTY_OBJECT_ID,
                            "isLocked": False,
                        }
                    ],
                ).json()
                if not (deleted.get("value") or [{}])[0].get("success"):
                    raise HostPlatformError("Failed to delete the source branch")
            LOG.info(" - Pull request was abandoned successfully.")
            return True
        except HostPlatformError as e:
            LOG.error("Failed to abandon pull request: %s", e)
            return False


def _json_patch(properties: Dict[str, str]) -> str:
    return json.dumps([{"op": "add", "path": f"/{name}", "value": value} for name, value in properties.items()])
