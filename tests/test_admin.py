def wedding_ring(**extra):
    data = {
        "title": "Milgrain Band",
        "SKU": "WR-100",
        "basePrice": 800,
        "subcategory": "Women's Wedding Rings",
        "metalOptions": [
            {"karat": "14K", "color": "Rose Gold", "price": 800, "isDefault": True},
            {"karat": "18K", "color": "Platinum", "price": 1400, "finish_type": "Matte"},
        ],
    }
    data.update(extra)
    return data


def test_admin_creates_item_visible_in_storefront(admin_client, admin):
    res = admin_client.post("/api/admin/products/wedding", json=wedding_ring())
    assert res.status_code == 201
    data = res.json()["data"]
    assert data["createdBy"] == str(admin["_id"])
    assert data["isActive"] is True

    listing = admin_client.get("/api/products/wedding/metal-rose-gold").json()
    assert [p["SKU"] for p in listing["products"]] == ["WR-100"]


def test_invalid_metal_option_rejected(admin_client):
    ring = wedding_ring()
    ring["metalOptions"][0]["karat"] = "24K"
    res = admin_client.post("/api/admin/products/wedding", json=ring)
    assert res.status_code == 400
    assert res.json()["errors"][0]["field"].startswith("metalOptions")


def test_update_merges_and_revalidates(admin_client):
    item_id = admin_client.post("/api/admin/products/wedding", json=wedding_ring()).json()["data"]["id"]
    res = admin_client.put(f"/api/admin/products/wedding/{item_id}", json={"basePrice": 900, "isActive": False})
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["basePrice"] == 900
    assert data["title"] == "Milgrain Band"

    bad = admin_client.put(f"/api/admin/products/wedding/{item_id}", json={"basePrice": -1})
    assert bad.status_code == 400


def test_get_list_delete(admin_client):
    item_id = admin_client.post("/api/admin/products/wedding", json=wedding_ring()).json()["data"]["id"]
    assert admin_client.get("/api/admin/products/wedding").json()["pagination"]["total"] == 1
    assert admin_client.get(f"/api/admin/products/wedding/{item_id}").status_code == 200
    assert admin_client.delete(f"/api/admin/products/wedding/{item_id}").status_code == 200
    assert admin_client.get(f"/api/admin/products/wedding/{item_id}").status_code == 404


def test_unknown_category_is_404(admin_client):
    assert admin_client.get("/api/admin/products/watches").status_code == 404


def test_catalog_admin_requires_admin(user_client):
    assert user_client.post("/api/admin/products/wedding", json=wedding_ring()).status_code == 403
