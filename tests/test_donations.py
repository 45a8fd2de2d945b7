import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from db import engine
from models import Donation, DonationImage
from routers import donations as donations_router
from conftest import WINTER_COATS


def test_create_donation_starts_pending(client, create_user):
    donor = create_user("donor", name="Asha")
    body = {**WINTER_COATS, "images": ["/uploads/a.png", "/uploads/b.png"]}

    response = client.post("/donations", json=body, headers=donor.headers)

    assert response.status_code == 201
    donation_id = response.json()["donationId"]

    response = client.get(f"/donations/{donation_id}")
    assert response.status_code == 200
    donation = response.json()
    assert donation["status"] == "pending"
    assert donation["donor_id"] == donor.id
    assert donation["donor_name"] == "Asha"
    assert donation["images"] == ["/uploads/a.png", "/uploads/b.png"]
    assert donation["claim_status"] is None


def test_create_donation_lists_missing_fields(client, create_user):
    donor = create_user("donor")

    response = client.post("/donations", json={"name": "Chair", "location": ""},
                           headers=donor.headers)

    assert response.status_code == 400
    assert response.json()["detail"] == (
        "Missing required fields: category, conditions, description, delivery_option, location"
    )


def test_create_donation_rejects_unknown_condition(client, create_user):
    donor = create_user("donor")

    response = client.post("/donations", json={**WINTER_COATS, "conditions": "broken"},
                           headers=donor.headers)

    assert response.status_code == 400


def test_create_donation_allows_at_most_five_images(client, create_user):
    donor = create_user("donor")
    images = [f"/uploads/{i}.png" for i in range(6)]

    response = client.post("/donations", json={**WINTER_COATS, "images": images},
                           headers=donor.headers)

    assert response.status_code == 400
    with Session(engine) as session:
        assert session.exec(select(Donation)).all() == []


def test_only_donors_create_donations(client, create_user):
    ngo = create_user("ngo")

    assert client.post("/donations", json=WINTER_COATS).status_code == 401
    response = client.post("/donations", json=WINTER_COATS, headers=ngo.headers)
    assert response.status_code == 403


def test_failed_image_insert_removes_donation(client, create_user, monkeypatch):
    donor = create_user("donor")

    def broken_store(session, donation_id, image_urls):
        raise OperationalError("INSERT INTO donationimage", {}, Exception("disk full"))

    monkeypatch.setattr(donations_router, "_store_images", broken_store)

    response = client.post("/donations", json={**WINTER_COATS, "images": ["/uploads/a.png"]},
                           headers=donor.headers)

    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to save donation images"
    with Session(engine) as session:
        assert session.exec(select(Donation)).all() == []


def test_list_is_newest_first(client, create_user, create_donation):
    donor = create_user("donor")
    ids = [create_donation(donor, name=f"Item {i}") for i in range(3)]

    response = client.get("/donations")

    assert response.status_code == 200
    listed = response.json()
    assert [d["id"] for d in listed] == list(reversed(ids))
    timestamps = [d["created_at"] for d in listed]
    assert timestamps == sorted(timestamps, reverse=True)


def test_list_filters(client, create_user, create_donation):
    first_donor = create_user("donor")
    second_donor = create_user("donor")
    ngo = create_user("ngo")
    coats = create_donation(first_donor)
    books = create_donation(first_donor, name="Books", category="books", conditions="fair")
    toys = create_donation(second_donor, name="Toys", category="toys", conditions="fair")
    client.post("/donations/claim", json={"donationId": toys}, headers=ngo.headers)

    def ids(**params):
        response = client.get("/donations", params=params)
        assert response.status_code == 200
        return {d["id"] for d in response.json()}

    assert ids() == {coats, books, toys}
    assert ids(category="books") == {books}
    assert ids(conditions="fair") == {books, toys}
    assert ids(status="pending") == {coats, books}
    assert ids(donorId=first_donor.id) == {coats, books}
    assert ids(ngoId=ngo.id) == {toys}
    assert ids(conditions="fair", donorId=second_donor.id) == {toys}


def test_get_unknown_donation(client):
    response = client.get("/donations/12345")
    assert response.status_code == 404
    assert response.json()["detail"] == "Donation not found"


def test_donor_cancels_own_pending_donation(client, create_user, create_donation):
    donor = create_user("donor")
    donation_id = create_donation(donor)

    response = client.put(f"/donations/{donation_id}", json={"status": "cancelled"},
                          headers=donor.headers)

    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"


def test_status_update_requires_ownership(client, create_user, create_donation):
    owner = create_user("donor")
    other = create_user("donor")
    donation_id = create_donation(owner)

    response = client.put(f"/donations/{donation_id}", json={"status": "cancelled"},
                          headers=other.headers)

    assert response.status_code == 403
    assert client.get(f"/donations/{donation_id}").json()["status"] == "pending"


def test_status_update_follows_lifecycle(client, create_user, create_donation):
    donor = create_user("donor")
    ngo = create_user("ngo")
    donation_id = create_donation(donor)

    def move(status):
        return client.put(f"/donations/{donation_id}", json={"status": status},
                          headers=donor.headers)

    # Only the claim workflow may leave "pending" towards delivery
    assert move("processing").status_code == 400
    assert move("claimed").status_code == 400

    client.post("/donations/claim", json={"donationId": donation_id}, headers=ngo.headers)
    assert move("cancelled").status_code == 400

    for status in ("processing", "shipping", "delivered"):
        response = move(status)
        assert response.status_code == 200, response.text
        assert response.json()["status"] == status
        assert response.json()["claim_status"] == status

    for status in ("pending", "claimed", "shipping", "cancelled"):
        response = move(status)
        assert response.status_code == 400
        assert response.json()["detail"] == f"Cannot change donation status from delivered to {status}"
    assert client.get(f"/donations/{donation_id}").json()["status"] == "delivered"


def test_cancelled_donation_is_terminal(client, create_user, create_donation):
    donor = create_user("donor")
    donation_id = create_donation(donor)
    client.put(f"/donations/{donation_id}", json={"status": "cancelled"}, headers=donor.headers)

    response = client.put(f"/donations/{donation_id}", json={"status": "pending"},
                          headers=donor.headers)

    assert response.status_code == 400


def test_unknown_status_is_rejected(client, create_user, create_donation):
    donor = create_user("donor")
    donation_id = create_donation(donor)

    response = client.put(f"/donations/{donation_id}", json={"status": "lost"},
                          headers=donor.headers)

    assert response.status_code == 400


def test_admin_removes_pending_donation(client, create_user, create_donation):
    donor = create_user("donor")
    admin = create_user("admin")
    donation_id = create_donation(donor)

    # Donors cancel, they do not remove
    response = client.put(f"/donations/{donation_id}", json={"status": "removed"},
                          headers=donor.headers)
    assert response.status_code == 403

    response = client.put(f"/donations/{donation_id}", json={"status": "removed"},
                          headers=admin.headers)
    assert response.status_code == 200
    assert response.json()["status"] == "removed"


def test_admin_cannot_remove_claimed_donation(client, create_user, create_donation):
    donor = create_user("donor")
    admin = create_user("admin")
    ngo = create_user("ngo")
    donation_id = create_donation(donor)
    client.post("/donations/claim", json={"donationId": donation_id}, headers=ngo.headers)

    response = client.put(f"/donations/{donation_id}", json={"status": "removed"},
                          headers=admin.headers)

    assert response.status_code == 400


def test_delete_removes_images(client, create_user, create_donation):
    donor = create_user("donor")
    donation_id = create_donation(donor, images=["/uploads/a.png", "/uploads/b.png"])
    kept_id = create_donation(donor, images=["/uploads/c.png"])

    response = client.delete(f"/donations/{donation_id}", headers=donor.headers)

    assert response.status_code == 204
    assert client.get(f"/donations/{donation_id}").status_code == 404
    with Session(engine) as session:
        images = session.exec(select(DonationImage)).all()
        assert [image.donation_id for image in images] == [kept_id]


def test_delete_requires_ownership(client, create_user, create_donation):
    owner = create_user("donor")
    other = create_user("donor")
    donation_id = create_donation(owner)

    assert client.delete(f"/donations/{donation_id}").status_code == 401
    assert client.delete(f"/donations/{donation_id}", headers=other.headers).status_code == 403
    assert client.delete("/donations/999", headers=owner.headers).status_code == 404
    assert client.get(f"/donations/{donation_id}").status_code == 200


def test_claimed_donation_cannot_be_deleted(client, create_user, create_donation):
    donor = create_user("donor")
    ngo = create_user("ngo")
    donation_id = create_donation(donor)
    client.post("/donations/claim", json={"donationId": donation_id}, headers=ngo.headers)

    response = client.delete(f"/donations/{donation_id}", headers=donor.headers)

    assert response.status_code == 400
    assert response.json()["detail"] == "Cannot delete a donation that has been claimed"


@pytest.mark.parametrize("status", ["inactive", "pending"])
def test_inactive_donor_cannot_create(client, create_user, status):
    donor = create_user("donor", status=status)

    response = client.post("/donations", json=WINTER_COATS, headers=donor.headers)

    assert response.status_code == 403
    assert response.json()["detail"] == "Account is not active"


def test_blank_choice_fields_count_as_missing(client, create_user):
    donor = create_user("donor")
    body = {**WINTER_COATS, "conditions": "", "delivery_option": "  ", "location": ""}

    response = client.post("/donations", json=body, headers=donor.headers)

    assert response.status_code == 400
    assert response.json()["detail"] == (
        "Missing required fields: conditions, delivery_option, location"
    )


def test_get_donation_reports_storage_failure(client, create_user, create_donation,
                                              monkeypatch):
    donation_id = create_donation(create_user("donor"))

    def broken_view(session, donation_id):
        raise OperationalError("SELECT donation", {}, Exception("database is locked"))

    monkeypatch.setattr(donations_router, "get_donation_view", broken_view)

    response = client.get(f"/donations/{donation_id}")

    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to fetch donation"


def test_failed_delete_commit_keeps_donation_and_images(client, create_user, create_donation,
                                                        monkeypatch):
    donor = create_user("donor")
    donation_id = create_donation(donor, images=["/uploads/a.png", "/uploads/b.png"])

    def failing_commit(self):
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    with monkeypatch.context() as patched:
        patched.setattr(Session, "commit", failing_commit)
        response = client.delete(f"/donations/{donation_id}", headers=donor.headers)

    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to delete donation"
    donation = client.get(f"/donations/{donation_id}").json()
    assert donation["status"] == "pending"
    assert donation["images"] == ["/uploads/a.png", "/uploads/b.png"]
