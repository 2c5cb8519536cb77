ONE_ITEM_TOS = {
    "title": "Cells Quiz",
    "course": "Biology 101",
    "total_items": 1,
    "topics": [{"name": "Cells", "weight": 1}],
    "bloom_distribution": {"remember": 100},
}


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy", "service": "tos-builder-api"}


def test_login_and_me(client, users):
    assert client.get("/auth/me").status_code == 401

    resp = client.post("/auth/login", json={"email": "teacher@school.test", "password": "secret"})
    assert resp.status_code == 200
    token = resp.json()["access_token"]

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.json()["email"] == "teacher@school.test"

    bad = client.post("/auth/login", json={"email": "teacher@school.test", "password": "wrong"})
    assert bad.status_code == 401
    assert client.get("/auth/me", headers={"Authorization": "Bearer not-a-token"}).status_code == 401


def test_only_admin_manages_users(client, headers):
    new_user = {"email": "new@school.test", "password": "secret", "full_name": "New", "role": "teacher"}
    assert client.post("/auth/users", json=new_user, headers=headers["teacher"]).status_code == 403
    assert client.post("/auth/users", json=new_user, headers=headers["admin"]).status_code == 201
    assert client.post("/auth/users", json=new_user, headers=headers["admin"]).status_code == 409


def test_create_question_normalises_and_classifies(client, headers):
    resp = client.post("/questions", headers=headers["teacher"], json={
        "question_text": "Define the cell membrane.",
        "question_type": "Multiple Choice",
        "topic": "Cells",
        "options": ["Outer layer", "Nucleus", "Ribosome", "Wall"],
        "correctAnswer": 0,
    })
    assert resp.status_code == 201
    body = resp.json()
    assert body["question_type"] == "multiple_choice"
    assert body["choices"] == {"A": "Outer layer", "B": "Nucleus", "C": "Ribosome", "D": "Wall"}
    assert body["correct_answer"] == "A"
    assert body["bloom_level"] == "remember"
    assert body["status"] == "pending"


def test_bad_question_content_is_rejected(client, headers):
    resp = client.post("/questions", headers=headers["teacher"], json={
        "question_text": "Pick one.", "topic": "Cells",
        "choices": {"A": "x", "B": "y"}, "correct_answer": "E",
    })
    assert resp.status_code == 422


def test_teachers_cannot_approve(client, headers, make_question):
    q = make_question("Define osmosis.", status="pending")
    assert client.post(f"/questions/{q.id}/approve", headers=headers["teacher"]).status_code == 403
    approved = client.post(f"/questions/{q.id}/approve", headers=headers["validator"])
    assert approved.json()["status"] == "approved"


def test_teachers_cannot_create_approved_questions(client, headers):
    question = {
        "question_text": "Define osmosis.", "topic": "Cells", "status": "approved",
        "choices": ["Water movement", "Cell division"], "correct_answer": "A",
    }
    assert client.post("/questions", json=question, headers=headers["teacher"]).status_code == 403
    assert client.get("/questions", headers=headers["teacher"]).json() == []

    created = client.post("/questions", json=question, headers=headers["validator"])
    assert created.status_code == 201
    assert created.json()["status"] == "approved"


def test_reclassification_is_limited_to_authors_and_reviewers(client, headers, make_question):
    others = make_question("Define osmosis.")
    mine = client.post("/questions", headers=headers["teacher"], json={
        "question_text": "Define diffusion.", "topic": "Cells",
        "choices": ["Particle spread", "Cell division"], "correct_answer": "A",
    }).json()

    assert client.post(f"/questions/{others.id}/classify", headers=headers["teacher"]).status_code == 403
    assert client.post(f"/questions/{mine['id']}/classify", headers=headers["teacher"]).status_code == 200
    assert client.post(f"/questions/{others.id}/classify", headers=headers["validator"]).status_code == 200

    batch = {"question_ids": [others.id]}
    assert client.post("/classification/batch", json=batch, headers=headers["teacher"]).status_code == 403
    resp = client.post("/classification/batch", json=batch, headers=headers["validator"])
    assert resp.status_code == 200
    assert resp.json()["succeeded"] == 1


def test_not_found_uses_detail_body(client, headers):
    resp = client.get("/tos/999", headers=headers["teacher"])
    assert resp.status_code == 404
    assert resp.json() == {"detail": "TOS blueprint 999 not found"}


def test_tos_preview_and_invalid_split(client, headers):
    preview = client.post("/tos/preview", headers=headers["teacher"], json={
        "title": "Draft", "total_items": 10, "topics": [{"name": "Cells", "weight": 1}],
    })
    assert preview.status_code == 200
    assert preview.json()["summary"]["grand_total"] == 10

    bad = client.post("/tos", headers=headers["teacher"], json={
        **ONE_ITEM_TOS, "bloom_distribution": {"remember": 60, "understand": 30},
    })
    assert bad.status_code == 422
    assert "detail" in bad.json()


def test_generate_preview_and_export(client, headers, make_question):
    q = make_question("Define the cell membrane.")
    tos = client.post("/tos", headers=headers["teacher"], json=ONE_ITEM_TOS).json()

    resp = client.post("/tests/generate", headers=headers["teacher"], json={"tos_id": tos["id"]})
    assert resp.status_code == 201
    test = resp.json()
    assert [item["question_id"] for item in test["items"]] == [q.id]

    hidden = client.get(f"/tests/{test['id']}/preview", headers=headers["teacher"]).json()
    assert "answer_key" not in hidden
    shown = client.get(f"/tests/{test['id']}/preview?show_answer_key=true", headers=headers["teacher"]).json()
    assert shown["answer_key"][0]["answer"] == "A"
    assert "answer_key" not in client.get(f"/tests/{test['id']}/print", headers=headers["teacher"]).json()

    pdf = client.get(f"/tests/{test['id']}/export/pdf", headers=headers["teacher"])
    assert pdf.status_code == 200
    assert pdf.headers["content-type"] == "application/pdf"
    assert pdf.content.startswith(b"%PDF")

    assert client.get(f"/tests/{test['id']}", headers=headers["validator"]).status_code == 403
    assert client.get(f"/tos/{tos['id']}", headers=headers["teacher"]).json()["locked"] is True

    stats = client.get("/dashboard/stats", headers=headers["teacher"]).json()
    assert stats["total_tests"] == 1
    assert stats["recent_tests"][0]["id"] == test["id"]


def test_strict_generation_reports_shortfall(client, headers):
    tos = client.post("/tos", headers=headers["teacher"], json=ONE_ITEM_TOS).json()
    resp = client.post("/tests/generate", headers=headers["teacher"], json={
        "tos_id": tos["id"], "fill_policy": "strict", "author_missing": False,
    })
    assert resp.status_code == 409
    assert resp.json()["shortfall"] == [{"topic": "Cells", "bloom_level": "remember", "item_numbers": [1]}]
    assert client.get("/tests", headers=headers["teacher"]).json() == []


def test_validation_endpoints(client, headers, make_question):
    q = make_question("Define osmosis.")
    payload = {
        "validated_classification": {"bloom_level": "understand", "knowledge_dimension": "conceptual", "difficulty": "easy"},
        "validation_confidence": 0.95,
    }
    assert client.post(f"/validation/questions/{q.id}/submit", headers=headers["teacher"], json=payload).status_code == 403

    resp = client.post(f"/validation/questions/{q.id}/submit", headers=headers["validator"], json=payload)
    assert resp.status_code == 200
    assert resp.json()["stats"]["total_validations"] == 1

    history = client.get(f"/validation/questions/{q.id}/history", headers=headers["teacher"]).json()
    assert history[0]["validated_classification"]["bloom_level"] == "understand"
