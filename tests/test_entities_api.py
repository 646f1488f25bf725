"""
Tests for deck and global entity endpoints.
"""
from fastapi.testclient import TestClient


def _upload(client: TestClient, url: str, name: str, image: bytes):
    return client.post(url, data={"name": name}, files={"file": (f"{name}.png", image, "image/png")})


class TestDeckEntities:
    """Tests for deck-local entities."""

    def test_add_and_list(self, client: TestClient, deck, image_factory):
        response = _upload(client, f"/api/v1/decks/{deck.id}/entities", "Dr-Smith", image_factory(32, 32))
        assert response.status_code == 201
        assert response.json()["entities"]["Dr-Smith"]["images"] == ["Dr-Smith.png"]

        listed = client.get(f"/api/v1/decks/{deck.id}/entities").json()
        assert listed == [{
            "name": "Dr-Smith",
            "display_name": "Dr Smith",
            "images": ["Dr-Smith.png"],
            "scope": "deck",
        }]

    def test_duplicate_rejected(self, client: TestClient, store, deck, image_factory):
        store.add_entity(deck.id, "Bob", image_factory(32, 32), "png")
        response = _upload(client, f"/api/v1/decks/{deck.id}/entities", "Bob", image_factory(32, 32))
        assert response.status_code == 409

    def test_invalid_name_rejected(self, client: TestClient, deck, image_factory):
        response = _upload(client, f"/api/v1/decks/{deck.id}/entities", "-bad-", image_factory(32, 32))
        assert response.status_code == 400

    def test_deck_entity_shadows_global(self, client: TestClient, store, deck, image_factory):
        store.add_global_entity("Bob", image_factory(32, 32), "png")
        store.add_global_entity("Alice", image_factory(32, 32), "png")
        store.add_entity(deck.id, "Bob", image_factory(32, 32), "png")

        listed = client.get(f"/api/v1/decks/{deck.id}/entities").json()

        assert [(e["name"], e["scope"]) for e in listed] == [("Alice", "global"), ("Bob", "deck")]

    def test_serve_image_with_global_fallback(self, client: TestClient, store, deck, image_factory):
        store.add_global_entity("Alice", image_factory(32, 32), "png")
        response = client.get(f"/api/v1/decks/{deck.id}/entities/Alice/Alice.png")
        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"

    def test_suggest(self, client: TestClient, store, deck, image_factory):
        for name in ("Robert", "Bob", "Bobby"):
            store.add_entity(deck.id, name, image_factory(32, 32), "png")

        response = client.get(f"/api/v1/decks/{deck.id}/entities/suggest", params={"q": "bob"})

        assert [s["name"] for s in response.json()] == ["Bob", "Bobby", "Robert"]

    def test_remove(self, client: TestClient, store, deck, image_factory):
        store.add_entity(deck.id, "Bob", image_factory(32, 32), "png")
        response = client.delete(f"/api/v1/decks/{deck.id}/entities/Bob")
        assert response.status_code == 200
        assert response.json()["entities"] == {}
        assert not store.get_entity_image_path(deck.id, "Bob.png").exists()

    def test_remove_missing(self, client: TestClient, deck):
        assert client.delete(f"/api/v1/decks/{deck.id}/entities/Nobody").status_code == 404


class TestGlobalEntities:
    """Tests for global entities."""

    def test_add_list_remove(self, client: TestClient, image_factory):
        response = _upload(client, "/api/v1/global-entities", "Mascot", image_factory(32, 32))
        assert response.status_code == 201
        assert [e["name"] for e in response.json()] == ["Mascot"]

        image = client.get("/api/v1/global-entities/Mascot/Mascot.png")
        assert image.status_code == 200

        removed = client.delete("/api/v1/global-entities/Mascot")
        assert removed.status_code == 200
        assert removed.json() == []
        assert client.get("/api/v1/global-entities").json() == []

    def test_list_empty_without_file(self, client: TestClient):
        assert client.get("/api/v1/global-entities").json() == []
