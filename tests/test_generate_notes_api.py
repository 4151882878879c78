"""The /generate-notes endpoint."""

import httpx
import openai

TRAINING = {"specialty": "internal_medicine", "noteType": "progress_note"}


def generate(client, headers, **body):
    payload = {"transcript": "Patient reports mild cough.", "trainingConfig": TRAINING, **body}
    return client.post("/generate-notes", json=payload, headers=headers)


def test_generate_notes_returns_plain_text(api_client, headers, fake_openai):
    resp = generate(api_client, headers["medical_provider"])
    assert resp.status_code == 200
    assert resp.json() == {"notes": "CHIEF COMPLAINT:\nCough\n\nASSESSMENT AND PLAN:\n• Rest"}
    user_message = fake_openai.completions.calls[0]["messages"][1]["content"]
    assert "No patient selected" in user_message


def test_patient_context_includes_recent_visits(api_client, headers, patient, fake_openai):
    for i in range(4):
        api_client.post(
            "/visits",
            json={"patientId": patient["id"], "notes": f"Visit note {i}", "date": f"2024-0{i + 1}-01"},
            headers=headers["doctor"],
        )
    resp = generate(api_client, headers["doctor"], patientId=patient["id"])
    assert resp.status_code == 200
    user_message = fake_openai.completions.calls[0]["messages"][1]["content"]
    assert "Name: Ada Lovelace" in user_message
    assert "Medical History: Hypertension" in user_message
    assert "Recent Visits:" in user_message
    assert user_message.count("Visit note") == 3


def test_baseline_notes_become_style_examples(api_client, headers, fake_openai):
    training = {
        **TRAINING,
        "baselineNotes": [
            {"id": "1", "content": "Example style", "specialty": "internal_medicine", "noteType": "progress_note"},
            {"id": "2", "content": "Cardiology style", "specialty": "cardiology", "noteType": "consultation"},
        ],
    }
    resp = generate(api_client, headers["doctor"], trainingConfig=training)
    assert resp.status_code == 200
    system_message = fake_openai.completions.calls[0]["messages"][0]["content"]
    assert "Example 1:\nExample style" in system_message
    assert "Cardiology style" not in system_message


def test_generate_notes_forbidden_for_nurse(api_client, headers, fake_openai):
    assert generate(api_client, headers["nurse"]).status_code == 403
    assert fake_openai.completions.calls == []


def test_generate_notes_requires_transcript(api_client, headers, fake_openai):
    resp = generate(api_client, headers["doctor"], transcript="   ")
    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "No transcript available"
    assert fake_openai.completions.calls == []


def test_invalid_training_pair(api_client, headers, fake_openai):
    resp = generate(api_client, headers["doctor"], trainingConfig={"specialty": "surgery", "noteType": "progress_note"})
    assert resp.status_code == 400
    assert fake_openai.completions.calls == []


def test_unknown_patient(api_client, headers):
    assert generate(api_client, headers["doctor"], patientId="missing").status_code == 404


def test_timeout_maps_to_504(api_client, headers, fake_openai):
    fake_openai.completions.error = openai.APITimeoutError(
        request=httpx.Request("POST", "https://medscribe-test.openai.azure.com")
    )
    resp = generate(api_client, headers["doctor"])
    assert resp.status_code == 504
    body = resp.json()
    assert body["success"] is False
    assert body["error"]["code"] == "timeout"


def test_unconfigured_completion_service(api_client, headers, fake_openai, monkeypatch):
    from medscribe import main

    monkeypatch.setattr(main.note_generator.client, "api_key", None)
    resp = generate(api_client, headers["doctor"])
    assert resp.status_code == 500
    assert resp.json()["error"]["message"] == "OpenAI configuration missing"
    assert fake_openai.completions.calls == []


def test_requires_authentication(api_client):
    assert api_client.post("/generate-notes", json={"transcript": "x"}).status_code == 401
