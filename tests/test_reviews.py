def review_payload(**fields):
    return {"review": "An amazing experience", "rating": 5, **fields}


def test_reviews_require_login(client):
    assert client.get("/api/v1/reviews").status_code == 401


def test_create_review_on_nested_route(client, make_user, make_tour, auth):
    user = make_user()
    tour = make_tour()
    res = client.post(f"/api/v1/tours/{tour['id']}/reviews", json=review_payload(), headers=auth(user))
    assert res.status_code == 201
    review = res.json()["data"]["data"]
    assert review["tour_id"] == tour["id"]
    assert review["user_id"] == user["id"]


def test_only_users_write_reviews(client, make_user, make_tour, auth):
    tour = make_tour()
    res = client.post(
        "/api/v1/reviews", json=review_payload(tour_id=tour["id"]), headers=auth(make_user(role="admin"))
    )
    assert res.status_code == 403


def test_one_review_per_user_and_tour(client, make_user, make_tour, auth):
    headers = auth(make_user())
    tour = make_tour()
    client.post(f"/api/v1/tours/{tour['id']}/reviews", json=review_payload(), headers=headers)
    res = client.post(f"/api/v1/tours/{tour['id']}/reviews", json=review_payload(rating=1), headers=headers)
    assert res.status_code == 400
    assert res.json()["message"].startswith("Duplicate field value")


def test_review_rating_bounds(client, make_user, make_tour, auth):
    tour = make_tour()
    res = client.post(f"/api/v1/tours/{tour['id']}/reviews", json=review_payload(rating=6), headers=auth(make_user()))
    assert res.status_code == 400


def test_review_for_missing_tour(client, make_user, auth):
    res = client.post(
        "/api/v1/tours/64b7f0c2a1b2c3d4e5f60718/reviews", json=review_payload(), headers=auth(make_user())
    )
    assert res.status_code == 404
    assert res.json()["message"] == "No tour found with that ID"


def test_nested_listing_is_scoped_to_tour(client, make_user, make_tour, auth):
    user = make_user()
    headers = auth(user)
    first, second = make_tour(), make_tour()
    client.post(f"/api/v1/tours/{first['id']}/reviews", json=review_payload(), headers=headers)
    client.post(f"/api/v1/tours/{second['id']}/reviews", json=review_payload(rating=3), headers=headers)

    nested = client.get(f"/api/v1/tours/{first['id']}/reviews", headers=headers).json()
    assert nested["results"] == 1
    assert nested["data"]["data"][0]["tour_id"] == first["id"]
    assert nested["data"]["data"][0]["user"]["name"] == user["name"]

    assert client.get("/api/v1/reviews", headers=headers).json()["results"] == 2


def test_ratings_follow_review_lifecycle(client, make_user, make_tour, auth):
    tour = make_tour()
    author = make_user()
    admin = auth(make_user(role="admin"))

    def ratings():
        data = client.get(f"/api/v1/tours/{tour['id']}").json()["data"]["data"]
        return data["ratings_quantity"], data["ratings_average"]

    assert ratings() == (0, 4.5)

    res = client.post(f"/api/v1/tours/{tour['id']}/reviews", json=review_payload(rating=5), headers=auth(author))
    review_id = res.json()["data"]["data"]["id"]
    assert ratings() == (1, 5)

    client.post(f"/api/v1/tours/{tour['id']}/reviews", json=review_payload(rating=4), headers=auth(make_user()))
    client.post(f"/api/v1/tours/{tour['id']}/reviews", json=review_payload(rating=4), headers=auth(make_user()))
    assert ratings() == (3, 4.3)

    res = client.patch(f"/api/v1/reviews/{review_id}", json={"rating": 2}, headers=admin)
    assert res.status_code == 200
    assert ratings() == (3, 3.3)

    assert client.delete(f"/api/v1/reviews/{review_id}", headers=admin).status_code == 204
    assert ratings() == (2, 4)


def test_guides_cannot_edit_reviews(client, make_user, make_tour, auth):
    tour = make_tour()
    res = client.post(f"/api/v1/tours/{tour['id']}/reviews", json=review_payload(), headers=auth(make_user()))
    review_id = res.json()["data"]["data"]["id"]
    guide = auth(make_user(role="guide"))
    assert client.patch(f"/api/v1/reviews/{review_id}", json={"rating": 1}, headers=guide).status_code == 403
    assert client.delete(f"/api/v1/reviews/{review_id}", headers=guide).status_code == 403
    assert client.get(f"/api/v1/reviews/{review_id}", headers=guide).status_code == 200


def test_users_only_edit_their_own_reviews(client, make_user, make_tour, auth):
    tour = make_tour()
    author, other = make_user(), make_user()
    res = client.post(f"/api/v1/tours/{tour['id']}/reviews", json=review_payload(), headers=auth(author))
    review_id = res.json()["data"]["data"]["id"]

    assert client.patch(f"/api/v1/reviews/{review_id}", json={"rating": 1}, headers=auth(other)).status_code == 403
    assert client.delete(f"/api/v1/reviews/{review_id}", headers=auth(other)).status_code == 403

    res = client.patch(f"/api/v1/reviews/{review_id}", json={"rating": 3}, headers=auth(author))
    assert res.status_code == 200
    assert res.json()["data"]["data"]["rating"] == 3
    assert client.delete(f"/api/v1/reviews/{review_id}", headers=auth(author)).status_code == 204


def test_editing_missing_review(client, make_user, auth):
    res = client.patch("/api/v1/reviews/64b7f0c2a1b2c3d4e5f60718", json={"rating": 3}, headers=auth(make_user()))
    assert res.status_code == 404
    assert res.json()["message"] == "No review found with that ID"
