import pytest
from sqlmodel import select

from models import ContactMessage, MessageStatus, Profile, Role
from routers.ui import sse_message

DONATION = {
    "food_item": "Dal, Rice, Roti",
    "quantity": 50,
    "description": "Lunch buffet leftovers",
    "city": "Pune",
    "pickup_address": "Hotel Sunrise, FC Road",
    "food_source": "restaurant",
    "expiry_time": "2026-10-18T21:00:00",
}
FORM = {key: str(value) for key, value in DONATION.items()}


@pytest.fixture
def people(add_user, client_for):
    ids = {
        "donor": add_user(Role.donor, "Rajesh Kumar"),
        "ngo1": add_user(Role.ngo, "Hope Foundation"),
        "ngo2": add_user(Role.ngo, "Green Hands"),
        "vol": add_user(Role.volunteer, "Amit Singh"),
        "admin": add_user(Role.admin, "Admin"),
    }
    return {name: (user_id, client_for(user_id)) for name, user_id in ids.items()}


def post_donation(people, **overrides):
    _, donor = people["donor"]
    response = donor.post("/donations/", json={**DONATION, **overrides})
    assert response.status_code == 201, response.text
    return response.json()


def test_donation_flow_over_the_api(people):
    donor_id, donor = people["donor"]
    ngo1_id, ngo1 = people["ngo1"]
    _, ngo2 = people["ngo2"]
    vol_id, vol = people["vol"]

    d = post_donation(people)
    assert d["status"] == "pending"
    assert d["donor_id"] == donor_id
    assert d["quantity"] == 50 and d["city"] == "Pune"

    assert [x["id"] for x in donor.get("/donations/mine").json()] == [d["id"]]
    assert [x["id"] for x in ngo2.get("/donations/available").json()] == [d["id"]]
    assert vol.get("/donations/available").json() == []

    first = ngo1.post(f"/donations/{d['id']}/accept")
    second = ngo2.post(f"/donations/{d['id']}/accept")
    assert first.status_code == 200
    assert first.json()["ngo_id"] == ngo1_id
    assert second.status_code == 409
    assert "no longer available" in second.json()["detail"]
    assert ngo2.get("/donations/available").json() == []

    claimed = vol.post(f"/donations/{d['id']}/claim")
    assert claimed.status_code == 200
    assert claimed.json()["volunteer_id"] == vol_id
    assert claimed.json()["status"] == "picked_up"
    assert vol.get("/donations/available").json() == []
    assert [x["id"] for x in vol.get("/donations/mine").json()] == [d["id"]]

    delivered = vol.post(f"/donations/{d['id']}/deliver")
    assert delivered.status_code == 200
    assert delivered.json()["delivered_at"] is not None

    history = donor.get("/donations/mine").json()
    assert history[0]["status"] == "delivered"


def test_create_requires_valid_payload(people):
    _, donor = people["donor"]
    assert donor.post("/donations/", json={**DONATION, "quantity": 0}).status_code == 422
    assert donor.post("/donations/", json={**DONATION, "pickup_address": ""}).status_code == 422


def test_unknown_donation_is_404(people):
    _, ngo = people["ngo1"]
    _, admin = people["admin"]
    assert ngo.post("/donations/4242/accept").status_code == 404
    assert admin.delete("/donations/4242").status_code == 404


def test_donation_detail_visibility(people):
    d = post_donation(people)
    _, donor = people["donor"]
    _, ngo = people["ngo1"]
    _, admin = people["admin"]

    assert donor.get(f"/donations/{d['id']}").status_code == 200
    assert admin.get(f"/donations/{d['id']}").status_code == 200
    assert ngo.get(f"/donations/{d['id']}").status_code == 404


def test_admin_delete_and_stats(people):
    d = post_donation(people)
    _, admin = people["admin"]

    assert admin.get("/donations/stats").json()["pending"] == 1
    assert admin.delete(f"/donations/{d['id']}").status_code == 204
    assert admin.get("/donations/stats").json()["total"] == 0


def test_owner_can_toggle_active(people):
    _, vol = people["vol"]
    response = vol.post("/users/me/active", json={"is_active": False})
    assert response.status_code == 200
    assert response.json()["is_active"] is False


def test_ui_conflict_message_and_refetch(people):
    d = post_donation(people)
    _, ngo1 = people["ngo1"]
    _, ngo2 = people["ngo2"]

    # ngo2 rendered its dashboard while the donation was still up for grabs
    assert f"donation-{d['id']}" in ngo2.get("/receiver/dashboard").text

    won = ngo1.post(f"/ui/ngo/donations/{d['id']}/accept", headers={"HX-Request": "true"})
    assert won.status_code == 200
    assert "Donation accepted" in won.text

    lost = ngo2.post(f"/ui/ngo/donations/{d['id']}/accept", headers={"HX-Request": "true"})
    assert lost.status_code == 409
    assert "flash-conflict" in lost.text
    assert "no longer available" in lost.text
    # the refetched lists no longer offer it
    assert f"/ui/ngo/donations/{d['id']}/accept" not in lost.text


def test_ui_volunteer_flow(people):
    d = post_donation(people)
    _, ngo = people["ngo1"]
    _, vol = people["vol"]
    ngo.post(f"/donations/{d['id']}/accept")

    lists = vol.get("/ui/lists").text
    assert f"/ui/volunteer/donations/{d['id']}/claim" in lists

    claimed = vol.post(f"/ui/volunteer/donations/{d['id']}/claim")
    assert claimed.status_code == 200
    assert f"/ui/volunteer/donations/{d['id']}/deliver" in claimed.text
    assert f"/ui/volunteer/donations/{d['id']}/claim" not in claimed.text

    delivered = vol.post(f"/ui/volunteer/donations/{d['id']}/deliver")
    assert "Marked as delivered" in delivered.text
    assert f"/ui/volunteer/donations/{d['id']}/deliver" not in delivered.text


def test_ui_offline_volunteer(people, session):
    d = post_donation(people)
    _, ngo = people["ngo1"]
    vol_id, vol = people["vol"]
    ngo.post(f"/donations/{d['id']}/accept")

    offline = vol.post("/ui/volunteer/active", data={"is_active": "false"})
    assert "You are offline" in offline.text
    assert f"/ui/volunteer/donations/{d['id']}/claim" not in offline.text
    profile = session.exec(select(Profile).where(Profile.user_id == vol_id)).one()
    session.refresh(profile)
    assert profile.is_active is False

    rejected = vol.post(f"/ui/volunteer/donations/{d['id']}/claim")
    assert rejected.status_code == 403
    assert "Go online" in rejected.text


def test_ui_donate_form(people):
    donor_id, donor = people["donor"]

    bad = donor.post("/ui/donor/donations", data={**FORM, "quantity": "lots"})
    assert bad.status_code == 400
    assert "Quantity must be a whole number" in bad.text

    missing = donor.post("/ui/donor/donations", data={**FORM, "pickup_address": ""})
    assert missing.status_code == 400
    assert "Pickup address is required." in missing.text

    ok = donor.post("/ui/donor/donations", data={**FORM, "expiry_time": "2026-10-18T21:00"})
    assert ok.status_code == 200
    assert "Donation posted" in ok.text
    assert "donations-refresh" in ok.headers["HX-Trigger"]

    history = donor.get("/donations/mine").json()
    assert len(history) == 1
    assert history[0]["food_source"] == "restaurant"


def test_contact_form_and_admin_resolve(people, client, session):
    assert client.post("/contact", data={"name": "A", "email": "bad", "subject": "s", "message": "m"}).status_code == 400

    sent = client.post(
        "/contact",
        data={
            "name": "Meera",
            "email": "meera@foodbridge.org",
            "subject": "Partnering",
            "message": "We run a community kitchen.",
        },
    )
    assert sent.status_code == 200
    assert "Message sent" in sent.text

    message = session.exec(select(ContactMessage)).one()
    assert message.status is MessageStatus.new

    _, admin = people["admin"]
    assert "Partnering" in admin.get("/admin").text
    resolved = admin.post(f"/admin/messages/{message.id}/resolve")
    assert resolved.status_code == 200
    session.refresh(message)
    assert message.status is MessageStatus.resolved


def test_admin_block_and_unblock(people):
    donor_id, donor = people["donor"]
    admin_id, admin = people["admin"]

    assert admin.post(f"/admin/users/{donor_id}/block").status_code == 200
    assert donor.get("/donor/dashboard").status_code == 303

    assert admin.post(f"/admin/users/{donor_id}/unblock").status_code == 200
    assert donor.get("/donor/dashboard").status_code == 200

    assert admin.post(f"/admin/users/{admin_id}/block").status_code == 400
    assert admin.post("/admin/users/9999/block").status_code == 404


def test_admin_user_search(people):
    _, admin = people["admin"]

    by_name = admin.get("/admin/users", params={"q": "hope"}).text
    assert "Hope Foundation" in by_name
    assert "Green Hands" not in by_name

    ngos = admin.get("/admin/users", params={"role": "ngo"}).text
    assert "Hope Foundation" in ngos and "Green Hands" in ngos
    assert "Amit Singh" not in ngos


def test_admin_delete_via_ui(people):
    d = post_donation(people)
    _, admin = people["admin"]
    response = admin.post(f"/admin/donations/{d['id']}/delete")
    assert response.status_code == 200
    assert "Donation removed." in response.text
    assert admin.post(f"/admin/donations/{d['id']}/delete").status_code == 404


def test_sse_message_format():
    assert sse_message("lists", "<p>a</p>\n<p>b</p>") == "event: lists\ndata: <p>a</p>\ndata: <p>b</p>\n\n"
    assert sse_message("lists", "") == "event: lists\ndata: \n\n"


def test_only_volunteers_switch_their_own_status(people):
    _, donor = people["donor"]

    response = donor.post("/users/me/active", json={"is_active": False})
    assert response.status_code == 303
    assert response.headers["location"] == "/"
    assert donor.get("/donor/dashboard").status_code == 200


def test_blocked_volunteer_cannot_go_back_online(people, session):
    vol_id, vol = people["vol"]
    _, admin = people["admin"]

    assert admin.post(f"/admin/users/{vol_id}/block").status_code == 200
    assert "blocked" in admin.get("/admin/users", params={"q": "amit"}).text

    assert vol.post("/users/me/active", json={"is_active": True}).status_code == 303
    htmx = vol.post("/ui/volunteer/active", data={"is_active": "true"}, headers={"HX-Request": "true"})
    assert htmx.status_code == 204
    assert htmx.headers["HX-Redirect"] == "/"
    assert vol.get("/volunteer/dashboard").status_code == 303

    profile = session.exec(select(Profile).where(Profile.user_id == vol_id)).one()
    session.refresh(profile)
    assert profile.blocked is True
    assert profile.is_active is False

    assert admin.post(f"/admin/users/{vol_id}/unblock").status_code == 200
    assert vol.get("/volunteer/dashboard").status_code == 200
    session.refresh(profile)
    assert profile.blocked is False
    assert profile.is_active is True
