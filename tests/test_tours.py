import io
from datetime import datetime

import pytest
from PIL import Image

import config
from errors import AppError
from routers.tours import parse_latlng, radius_in_radians

NEW_TOUR = {
    "name": "The Snow Adventurer",
    "duration": 4,
    "max_group_size": 10,
    "difficulty": "difficult",
    "price": 997,
    "summary": "Exciting adventure in the snow with snowboarding and skiing",
    "image_cover": "tour-3-cover.jpg",
}


def jpeg_bytes():
    buf = io.BytesIO()
    Image.new("RGB", (60, 40), (20, 120, 60)).save(buf, format="JPEG")
    return buf.getvalue()


def test_list_tours(client, make_tour):
    make_tour()
    make_tour()
    res = client.get("/api/v1/tours")
    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "success"
    assert body["results"] == 2
    assert len(body["data"]["data"]) == 2
    assert all("__v" not in t for t in body["data"]["data"])


def test_list_sort_limit_filter(client, make_tour):
    for price in (300, 900, 500, 1500):
        make_tour(price=price)
    res = client.get("/api/v1/tours", params={"sort": "-price", "limit": "2", "price[lt]": "1000"})
    assert [t["price"] for t in res.json()["data"]["data"]] == [900, 500]

    res = client.get("/api/v1/tours", params={"sort": "-price", "limit": "2", "page": "2", "price[lt]": "1000"})
    assert [t["price"] for t in res.json()["data"]["data"]] == [300]


def test_list_field_selection(client, make_tour):
    make_tour()
    tour = client.get("/api/v1/tours", params={"fields": "name,price"}).json()["data"]["data"][0]
    assert set(tour) == {"id", "name", "price"}


def test_page_past_the_end(client, make_tour):
    make_tour()
    res = client.get("/api/v1/tours", params={"page": "2", "limit": "1"})
    assert res.status_code == 404
    assert res.json()["message"] == "This page does not exist!"


def test_invalid_filter_operator(client):
    res = client.get("/api/v1/tours", params={"price[regex]": "1"})
    assert res.status_code == 400


def test_secret_tour_hidden_from_api(client, make_tour):
    make_tour()
    secret = make_tour(secret_tour=True)
    assert client.get("/api/v1/tours").json()["results"] == 1
    res = client.get(f"/api/v1/tours/{secret['id']}")
    assert res.status_code == 404
    assert res.json()["message"] == "No tour found with that ID"


def test_top_five_cheap(client, make_tour):
    for i, price in enumerate((100, 200, 300, 400, 500, 600, 700)):
        make_tour(price=price, ratings_average=5 if i == 6 else 4.5)
    res = client.get("/api/v1/tours/top-5-cheap", params={"limit": "50"})
    tours = res.json()["data"]["data"]
    assert len(tours) == 5
    assert tours[0]["price"] == 700
    assert [t["price"] for t in tours[1:]] == [100, 200, 300, 400]
    assert set(tours[0]) <= {"id", "name", "price", "ratings_average", "summary", "difficulty"}


def test_get_tour_with_reviews(client, make_tour):
    tour = make_tour()
    res = client.get(f"/api/v1/tours/{tour['id']}")
    assert res.status_code == 200
    data = res.json()["data"]["data"]
    assert data["id"] == tour["id"]
    assert data["reviews"] == []


def test_get_tour_invalid_id(client):
    res = client.get("/api/v1/tours/123")
    assert res.status_code == 400
    assert res.json()["message"] == "Invalid id: 123."


def test_create_tour_requires_staff(client, make_user, auth):
    assert client.post("/api/v1/tours", json=NEW_TOUR).status_code == 401
    res = client.post("/api/v1/tours", json=NEW_TOUR, headers=auth(make_user()))
    assert res.status_code == 403
    assert res.json()["message"] == "You do not have permission to perform this action"


@pytest.mark.parametrize("role", ["admin", "lead-guide"])
def test_create_tour(client, make_user, auth, role):
    res = client.post("/api/v1/tours", json=NEW_TOUR, headers=auth(make_user(role=role)))
    assert res.status_code == 201
    tour = res.json()["data"]["data"]
    assert tour["slug"] == "the-snow-adventurer"
    assert tour["ratings_average"] == 4.5
    assert tour["ratings_quantity"] == 0


def test_create_tour_validation(client, make_user, auth):
    admin = auth(make_user(role="admin"))
    res = client.post("/api/v1/tours", json={**NEW_TOUR, "price_discount": 2000}, headers=admin)
    assert res.status_code == 400
    assert "should be below regular price" in res.json()["message"]

    res = client.post("/api/v1/tours", json={**NEW_TOUR, "difficulty": "extreme"}, headers=admin)
    assert res.status_code == 400
    assert res.json()["message"].startswith("Invalid input data.")


def test_create_tour_duplicate_name(client, make_user, auth):
    admin = auth(make_user(role="admin"))
    client.post("/api/v1/tours", json=NEW_TOUR, headers=admin)
    res = client.post("/api/v1/tours", json=NEW_TOUR, headers=admin)
    assert res.status_code == 400
    assert res.json()["message"].startswith("Duplicate field value")


def test_update_and_delete_tour(client, make_user, make_tour, auth):
    admin = auth(make_user(role="admin"))
    tour = make_tour(price=500)

    res = client.patch(f"/api/v1/tours/{tour['id']}", json={"price": 650}, headers=admin)
    assert res.status_code == 200
    assert res.json()["data"]["data"]["price"] == 650

    res = client.delete(f"/api/v1/tours/{tour['id']}", headers=admin)
    assert res.status_code == 204
    assert res.content == b""
    assert client.get(f"/api/v1/tours/{tour['id']}").status_code == 404
    assert client.delete(f"/api/v1/tours/{tour['id']}", headers=admin).status_code == 404


def test_guide_cannot_update_tour(client, make_user, make_tour, auth):
    tour = make_tour()
    res = client.patch(f"/api/v1/tours/{tour['id']}", json={"price": 1}, headers=auth(make_user(role="guide")))
    assert res.status_code == 403


def test_tour_stats(client, make_tour):
    make_tour(difficulty="easy", price=400, ratings_average=4.8)
    make_tour(difficulty="easy", price=600, ratings_average=4.6)
    make_tour(difficulty="medium", price=1000, ratings_average=4.9)
    make_tour(difficulty="medium", price=50, ratings_average=3.0)
    stats = client.get("/api/v1/tours/tour-stats").json()["data"]["stats"]
    assert [s["_id"] for s in stats] == ["EASY", "MEDIUM"]
    easy = stats[0]
    assert easy["num_tours"] == 2
    assert easy["avg_price"] == 500
    assert (easy["min_price"], easy["max_price"]) == (400, 600)


def test_monthly_plan(client, make_user, make_tour, auth):
    make_tour(start_dates=[datetime(2021, 3, 1), datetime(2021, 7, 1)])
    make_tour(start_dates=[datetime(2021, 3, 15), datetime(2022, 3, 1)])
    guide = auth(make_user(role="guide"))

    res = client.get("/api/v1/tours/monthly-plan/2021", headers=guide)
    assert res.status_code == 200
    plan = res.json()["data"]["plan"]
    assert plan[0]["month"] == 3
    assert plan[0]["num_tour_starts"] == 2
    assert len(plan[0]["tours"]) == 2
    assert plan[1]["month"] == 7

    assert client.get("/api/v1/tours/monthly-plan/2021", headers=auth(make_user())).status_code == 403


def test_upload_tour_images(client, make_user, make_tour, auth, monkeypatch, tmp_path):
    monkeypatch.setattr(config, "STATIC_DIR", tmp_path)
    tour = make_tour()
    files = [
        ("image_cover", ("cover.jpg", jpeg_bytes(), "image/jpeg")),
        ("images", ("one.jpg", jpeg_bytes(), "image/jpeg")),
        ("images", ("two.jpg", jpeg_bytes(), "image/jpeg")),
    ]
    res = client.patch(f"/api/v1/tours/{tour['id']}/images", files=files, headers=auth(make_user(role="admin")))
    assert res.status_code == 200
    data = res.json()["data"]["data"]
    assert data["image_cover"].endswith("-cover.jpeg")
    assert len(data["images"]) == 2
    saved = tmp_path / "img" / "tours" / data["image_cover"]
    with Image.open(saved) as img:
        assert img.size == (2000, 1333)


def test_upload_tour_images_needs_cover_and_gallery(client, make_user, make_tour, auth, monkeypatch, tmp_path):
    monkeypatch.setattr(config, "STATIC_DIR", tmp_path)
    tour = make_tour()
    files = [("image_cover", ("cover.jpg", jpeg_bytes(), "image/jpeg"))]
    res = client.patch(f"/api/v1/tours/{tour['id']}/images", files=files, headers=auth(make_user(role="admin")))
    assert res.status_code == 400
    assert not (tmp_path / "img" / "tours").exists()


def test_upload_rejects_non_images(client, make_user, make_tour, auth, monkeypatch, tmp_path):
    monkeypatch.setattr(config, "STATIC_DIR", tmp_path)
    tour = make_tour()
    files = [
        ("image_cover", ("cover.txt", b"hello", "text/plain")),
        ("images", ("one.jpg", jpeg_bytes(), "image/jpeg")),
    ]
    res = client.patch(f"/api/v1/tours/{tour['id']}/images", files=files, headers=auth(make_user(role="admin")))
    assert res.status_code == 400
    assert res.json()["message"] == "Not an image! Please upload only images."


def test_parse_latlng():
    assert parse_latlng("34.11,-118.11") == (34.11, -118.11)
    for bad in ("34.11", "a,b", "1,2,3"):
        with pytest.raises(AppError):
            parse_latlng(bad)


def test_radius_in_radians():
    assert radius_in_radians(3963.2, "mi") == 1
    assert radius_in_radians(6378.1, "km") == 1
