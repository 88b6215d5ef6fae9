import json
import os
import sys
import uuid

from fastapi.testclient import TestClient


def main() -> int:
    # Ensure repo root is importable
    repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    if repo_root not in sys.path:
        sys.path.insert(0, repo_root)

    try:
        import server  # type: ignore
    except ImportError as e:
        print(json.dumps({"ok": False, "stage": "import", "error": str(e)}))
        return 2

    # A fresh owner per run keeps repeated smoke runs from colliding on unique names.
    headers = {"X-User-Id": str(uuid.uuid4())}
    payload = {"ok": False, "owner": headers["X-User-Id"], "entities": [], "note": None, "graph": None}

    with TestClient(server.app) as client:
        # 1) Create two entities and a relationship between them
        for name in ("Plato", "Aristotle"):
            r = client.post("/api/entities/", json={"name": name, "type": "person"}, headers=headers)
            if r.status_code != 201:
                print(json.dumps({"ok": False, "stage": "create_entity", "status": r.status_code, "body": r.text}))
                return 1
            payload["entities"].append(r.json()["id"])
        plato_id, aristotle_id = payload["entities"]
        r = client.post("/api/relationships/", json={
            "source_entity_id": aristotle_id, "target_entity_id": plato_id, "type": "is_student_of",
        }, headers=headers)
        if r.status_code != 201:
            print(json.dumps({"ok": False, "stage": "create_relationship", "status": r.status_code, "body": r.text}))
            return 1

        # 2) Create a note linked to Aristotle only
        r = client.post("/api/notes/", json={
            "title": "Smoke note",
            "content": "Aristotle studied at the Academy.",
            "entity_links": [{"entity_id": aristotle_id}],
        }, headers=headers)
        if r.status_code != 201:
            print(json.dumps({"ok": False, "stage": "create_note", "status": r.status_code, "body": r.text}))
            return 1
        note_id = r.json()["id"]
        payload["note"] = note_id

        # 3) Whole graph
        r = client.get("/api/graph/", headers=headers)
        graph = r.json() if r.status_code == 200 else {}
        payload["graph"] = {"nodes": len(graph.get("nodes", [])), "edges": len(graph.get("edges", []))}

        # 4) Deleting the note removes Aristotle (now an orphan); Plato was never linked and stays
        r = client.delete(f"/api/notes/{note_id}", headers=headers)
        removed = r.json().get("removed_entity_ids", []) if r.status_code == 200 else []
        plato_status = client.get(f"/api/entities/{plato_id}", headers=headers).status_code
        payload["removed"] = removed
        payload["ok"] = removed == [aristotle_id] and plato_status == 200

    print(json.dumps(payload, ensure_ascii=False))
    return 0 if payload["ok"] else 1


if __name__ == "__main__":
    raise SystemExit(main())
