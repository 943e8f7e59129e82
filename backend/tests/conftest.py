from __future__ import annotations

import json
from typing import Any, Dict, List

import httpx
import pytest

from golf_core import Config, GistClient, GolfDataManager, LocalCache
from golf_core.gist import GIST_DESCRIPTION, GIST_FILENAME, empty_document

TOKEN = "test-token"


class FakeGitHub:
    """In-memory stand-in for the Gist endpoints, used through httpx.MockTransport."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.gists: Dict[str, Dict[str, Any]] = {}
        self.fail_patch = False
        self.fail_all = False
        self._next_id = 1

    def add_gist(self, content: str, description: str = GIST_DESCRIPTION, public: bool = False) -> str:
        gist_id = f"gist{self._next_id}"
        self._next_id += 1
        self.gists[gist_id] = {
            "id": gist_id,
            "description": description,
            "public": public,
            "files": {GIST_FILENAME: {"filename": GIST_FILENAME, "content": content}},
        }
        return gist_id

    def document(self, gist_id: str) -> Dict[str, Any]:
        return json.loads(self.gists[gist_id]["files"][GIST_FILENAME]["content"])

    def count(self, method: str) -> int:
        return sum(1 for request in self.requests if request.method == method)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if self.fail_all:
            return httpx.Response(503, json={"message": "Service Unavailable"})
        if request.headers.get("Authorization") != f"token {TOKEN}":
            return httpx.Response(401, json={"message": "Bad credentials"})

        if path == "/user" and request.method == "GET":
            return httpx.Response(200, json={"login": "golf-admin"})

        if path == "/gists" and request.method == "GET":
            listing = [
                {"id": gist["id"], "description": gist["description"], "public": gist["public"]}
                for gist in self.gists.values()
            ]
            per_page = int(request.url.params.get("per_page", 30))
            page = int(request.url.params.get("page", 1))
            start = (page - 1) * per_page
            return httpx.Response(200, json=listing[start : start + per_page])

        if path == "/gists" and request.method == "POST":
            body = json.loads(request.content)
            gist_id = self.add_gist(
                body["files"][GIST_FILENAME]["content"],
                description=body["description"],
                public=body["public"],
            )
            return httpx.Response(201, json=self.gists[gist_id])

        gist_id = path.rsplit("/", 1)[-1]
        gist = self.gists.get(gist_id)
        if gist is None:
            return httpx.Response(404, json={"message": "Not Found"})

        if request.method == "GET":
            return httpx.Response(200, json=gist)

        if request.method == "PATCH":
            if self.fail_patch:
                return httpx.Response(500, json={"message": "Server Error"})
            body = json.loads(request.content)
            gist["files"].update(body["files"])
            return httpx.Response(200, json=gist)

        return httpx.Response(405, json={"message": "Method Not Allowed"})


@pytest.fixture
def github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def gist_client(github: FakeGitHub) -> GistClient:
    return GistClient(token=TOKEN, transport=httpx.MockTransport(github))


@pytest.fixture
def local_manager(tmp_path) -> GolfDataManager:
    return GolfDataManager(config=Config(data_dir=tmp_path), cache=LocalCache(tmp_path))


@pytest.fixture
def remote_manager(tmp_path, gist_client: GistClient) -> GolfDataManager:
    return GolfDataManager(config=Config(data_dir=tmp_path), cache=LocalCache(tmp_path), remote=gist_client)


def seeded_document() -> Dict[str, Any]:
    document = empty_document()
    document["participants"].append(
        {"id": "p1", "name": "Hanako", "email": "h@example.com", "createdAt": "2025-01-01T00:00:00Z"}
    )
    document["competitions"].append(
        {"id": "c1", "title": "New Year Cup", "date": "2025-01-12", "createdAt": "2025-01-01T00:00:00Z"}
    )
    document["attendance"].append({"participantId": "p1", "competitionId": "c1", "status": "present", "fee": 5000})
    return document
