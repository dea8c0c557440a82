from __future__ import annotations

import io

import pytest

from safedocs.models import UserRole


def _tagged_document(client, account, title, **metadata):
    document = client.post(
        "/documents/upload",
        headers=account.headers,
        data={"title": title},
        files={"file": ("record.txt", io.BytesIO(b"clinical"), "text/plain")},
    ).json()
    response = client.put(f"/healthcare/documents/{document['id']}", headers=account.headers, json=metadata)
    assert response.status_code == 200, response.text
    return response.json()["document"]


def _share_with_role(client, account, document, role):
    response = client.post(
        f"/shares/documents/{document['id']}",
        headers=account.headers,
        json={"permission_type": "role", "target_id": role, "access_level": "viewer"},
    )
    assert response.status_code == 201, response.text


@pytest.mark.integration
def test_metadata_is_saved_and_merged(client, make_user, org):
    clinician = make_user(UserRole.MANAGER, org_id=org["id"])
    document = _tagged_document(
        client,
        clinician,
        "CBC panel",
        hc_record_type="lab_result",
        hc_patient_id="RW-2041",
        hc_privacy_level="sensitive",
    )
    assert document["metadata"]["hc_record_type"] == "lab_result"

    response = client.put(
        f"/healthcare/documents/{document['id']}", headers=clinician.headers, json={"hc_consent_obtained": True}
    )
    assert response.json()["message"] == "Healthcare metadata saved"
    merged = response.json()["document"]["metadata"]
    assert merged["hc_patient_id"] == "RW-2041"
    assert merged["hc_consent_obtained"] is True


@pytest.mark.integration
def test_invalid_values_are_rejected(client, make_user):
    clinician = make_user(UserRole.MANAGER)
    document = client.post(
        "/documents/upload",
        headers=clinician.headers,
        data={"title": "X-ray"},
        files={"file": ("xray.txt", io.BytesIO(b"image"), "text/plain")},
    ).json()

    response = client.put(
        f"/healthcare/documents/{document['id']}", headers=clinician.headers, json={"hc_record_type": "horoscope"}
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid record type"

    response = client.put(
        f"/healthcare/documents/{document['id']}", headers=clinician.headers, json={"hc_privacy_level": "secret"}
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid privacy level"


@pytest.mark.integration
def test_protected_privacy_levels_are_hidden_from_regular_users(client, make_user, org):
    clinician = make_user(UserRole.MANAGER, org_id=org["id"])
    staff = make_user(UserRole.USER, org_id=org["id"])
    card = _tagged_document(client, clinician, "Vaccination card", hc_record_type="immunization", hc_patient_id="RW-1")
    notes = _tagged_document(
        client,
        clinician,
        "Counselling notes",
        hc_record_type="clinical_note",
        hc_patient_id="RW-2",
        hc_privacy_level="mental_health",
    )
    for document in (card, notes):
        _share_with_role(client, clinician, document, "user")

    staff_view = client.get("/healthcare/documents", headers=staff.headers).json()
    assert [item["title"] for item in staff_view["items"]] == ["Vaccination card"]

    clinician_view = client.get("/healthcare/documents", headers=clinician.headers).json()
    assert clinician_view["total"] == 2

    filtered = client.get(
        "/healthcare/documents", headers=clinician.headers, params={"privacy_level": "mental_health"}
    ).json()
    assert [item["title"] for item in filtered["items"]] == ["Counselling notes"]
    by_patient = client.get("/healthcare/documents", headers=clinician.headers, params={"patient_id": "rw-1"}).json()
    assert [item["title"] for item in by_patient["items"]] == ["Vaccination card"]


@pytest.mark.integration
def test_stats_and_clearing(client, make_user):
    clinician = make_user(UserRole.MANAGER)
    first = _tagged_document(
        client, clinician, "Consent", hc_record_type="consent_form", hc_patient_id="RW-9", hc_consent_obtained=True
    )
    _tagged_document(client, clinician, "Prescription", hc_record_type="prescription", hc_privacy_level="restricted")

    stats = client.get("/healthcare/stats", headers=clinician.headers).json()
    assert stats["total"] == 2
    assert stats["by_type"] == {"consent_form": 1, "prescription": 1}
    assert stats["by_privacy"] == {"general": 1, "restricted": 1}
    assert stats["no_consent"] == 1

    staff = make_user()
    assert client.get("/healthcare/stats", headers=staff.headers).status_code == 403
    assert client.delete(f"/healthcare/documents/{first['id']}", headers=staff.headers).status_code == 403

    cleared = client.delete(f"/healthcare/documents/{first['id']}", headers=clinician.headers)
    assert cleared.json() == {"message": "Healthcare metadata cleared"}
    assert client.get("/healthcare/stats", headers=clinician.headers).json()["total"] == 1


@pytest.mark.integration
def test_listing_only_returns_documents_the_caller_can_open(client, make_user, org):
    clinician = make_user(UserRole.MANAGER, org_id=org["id"])
    colleague = make_user(UserRole.USER, org_id=org["id"])
    outsider = make_user(UserRole.USER)
    chart = _tagged_document(
        client, clinician, "Private chart", hc_record_type="patient_record", hc_patient_name="Jane Doe"
    )

    assert client.get(f"/documents/{chart['id']}", headers=outsider.headers).status_code == 403
    assert client.get("/healthcare/documents", headers=outsider.headers).json() == {"items": [], "total": 0}
    assert client.get("/healthcare/documents", headers=colleague.headers).json()["total"] == 0

    own = _tagged_document(client, outsider, "My referral", hc_record_type="referral", hc_patient_id="RW-77")
    listing = client.get("/healthcare/documents", headers=outsider.headers).json()
    assert [item["id"] for item in listing["items"]] == [own["id"]]
