"""Tests for project API endpoints."""

from pathlib import Path

from fastapi.testclient import TestClient


def add(client: TestClient, path: Path, **extra) -> dict:
    """Register a project through the API."""
    response = client.post("/api/v1/projects", json={"path": str(path), **extra})
    assert response.status_code == 201
    return response.json()


class TestAddProject:
    """Tests for POST /projects."""

    def test_add(self, client: TestClient, project_dir: Path) -> None:
        """Test registering a directory."""
        data = add(client, project_dir)

        assert data["id"].startswith("demo-")
        assert data["name"] == "demo"
        assert data["indexed"] is False
        assert data["added_at"]

    def test_add_and_index(self, client: TestClient, project_dir: Path) -> None:
        """Test registering and indexing in one request."""
        data = add(client, project_dir, name="Demo", index=True)

        assert data["name"] == "Demo"
        assert data["indexed"] is True
        assert data["file_count"] == 3

    def test_add_duplicate(self, client: TestClient, project_dir: Path) -> None:
        """Test duplicates are a conflict."""
        add(client, project_dir)

        response = client.post("/api/v1/projects", json={"path": str(project_dir)})

        assert response.status_code == 409
        assert response.json()["error"] == "ProjectExistsError"

    def test_add_missing_directory(self, client: TestClient, tmp_path: Path) -> None:
        """Test a path that is not a directory is a bad request."""
        response = client.post("/api/v1/projects", json={"path": str(tmp_path / "nope")})

        assert response.status_code == 400
        assert response.json()["error"] == "InvalidPathError"

    def test_add_empty_path(self, client: TestClient) -> None:
        """Test request validation."""
        response = client.post("/api/v1/projects", json={"path": ""})
        assert response.status_code == 422


class TestReadProjects:
    """Tests for project listing and lookup."""

    def test_list_empty(self, client: TestClient) -> None:
        """Test listing with nothing registered."""
        assert client.get("/api/v1/projects").json() == {"total": 0, "projects": []}

    def test_list(self, client: TestClient, project_dir: Path) -> None:
        """Test listing registered projects."""
        project = add(client, project_dir)

        data = client.get("/api/v1/projects").json()

        assert data["total"] == 1
        assert data["projects"][0]["id"] == project["id"]

    def test_get(self, client: TestClient, project_dir: Path) -> None:
        """Test fetching one project."""
        project = add(client, project_dir)

        response = client.get(f"/api/v1/projects/{project['id']}")

        assert response.status_code == 200
        assert response.json()["path"] == project["path"]

    def test_get_unknown(self, client: TestClient) -> None:
        """Test unknown projects are not found."""
        response = client.get("/api/v1/projects/unknown-12345678")

        assert response.status_code == 404
        assert response.json()["details"] == {"project": "unknown-12345678"}


class TestIndexProject:
    """Tests for POST /projects/{id}/index."""

    def test_index(self, client: TestClient, project_dir: Path) -> None:
        """Test indexing reports counters and statistics."""
        project = add(client, project_dir)

        response = client.post(f"/api/v1/projects/{project['id']}/index")

        assert response.status_code == 200
        data = response.json()
        assert data["project"]["indexed"] is True
        assert data["summary"]["indexed"] == 3
        assert data["stats"]["file_count"] == 3

    def test_incremental_then_full(self, client: TestClient, project_dir: Path) -> None:
        """Test a second run skips unchanged files unless full is set."""
        project = add(client, project_dir, index=True)

        incremental = client.post(f"/api/v1/projects/{project['id']}/index").json()
        full = client.post(f"/api/v1/projects/{project['id']}/index", params={"full": True}).json()

        assert incremental["summary"]["unchanged"] == 3
        assert full["summary"]["indexed"] == 3

    def test_index_unknown(self, client: TestClient) -> None:
        """Test indexing an unknown project."""
        assert client.post("/api/v1/projects/nope/index").status_code == 404

    def test_stats(self, client: TestClient, project_dir: Path) -> None:
        """Test project statistics."""
        project = add(client, project_dir, index=True)

        data = client.get(f"/api/v1/projects/{project['id']}/stats").json()

        assert data["indexed"] is True
        assert data["stats"]["file_count"] == 3
        assert [(e["extension"], e["count"]) for e in data["stats"]["by_extension"]] == [(".py", 2), (".md", 1)]


class TestRemoveProject:
    """Tests for DELETE /projects/{id}."""

    def test_remove(self, client: TestClient, project_dir: Path) -> None:
        """Test unregistering a project."""
        project = add(client, project_dir, index=True)

        response = client.delete(f"/api/v1/projects/{project['id']}")

        assert response.status_code == 200
        assert response.json()["id"] == project["id"]
        assert client.get(f"/api/v1/projects/{project['id']}").status_code == 404

    def test_remove_unknown(self, client: TestClient) -> None:
        """Test removing an unknown project."""
        assert client.delete("/api/v1/projects/nope").status_code == 404
