"""
HTTP API tests — products, pricing calculator, quote editing and the
acceptance workflow end to end through FastAPI.
"""

import re


def _create_quote(client, headers, **body):
    response = client.post("/api/quotes/", json={"customer_name": "J Smith", **body}, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


def _quote_with_line(client, headers, product_id, area=40):
    quote = _create_quote(client, headers)
    section = client.post(
        f"/api/quotes/versions/{quote['id']}/sections",
        json={"section_name": "Ceiling"}, headers=headers,
    ).json()
    item = client.post(
        f"/api/quotes/sections/{section['id']}/items",
        json={"product_id": product_id, "area_sqm": area, "with_labour": True}, headers=headers,
    )
    assert item.status_code == 200, item.text
    return quote, section, item.json()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


# --- Products ---

def test_seed_products_is_repeatable(client):
    first = client.get("/api/products/seed").json()
    second = client.get("/api/products/seed").json()
    assert first["seeded"] > 0
    assert second["seeded"] == 0
    products = client.get("/api/products/").json()
    assert len(products) == first["seeded"]


def test_create_product_rejects_zero_bale_size(client):
    response = client.post("/api/products/", json={
        "sku": "BAD-1", "description": "Broken", "bale_size_sqm": 0,
        "pack_price": 10, "cost_price": 5,
    })
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_input"


def test_unknown_product_is_404(client):
    response = client.get("/api/products/999")
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


# --- Pricing calculator ---

def test_calculate_catalog_product(client, product):
    response = client.post("/api/pricing/calculate", json={
        "product_id": product.id, "area_sqm": 40, "waste_percent": 10, "pricing_tier": "Retail",
    })
    assert response.status_code == 200
    data = response.json()
    assert data["packs_required"] == 4
    assert data["line_cost"] == 480.0
    assert data["line_sell"] == 768.0
    assert data["margin_percent"] == 37.5
    assert data["markup_percent"] == 60.0


def test_calculate_inline_custom_tier(client):
    response = client.post("/api/pricing/calculate", json={
        "bale_size_sqm": 13.5, "pack_price": 120, "area_sqm": 40,
        "pricing_tier": "Custom", "custom_markup_percent": 30,
    })
    assert response.status_code == 200
    assert response.json()["line_sell"] == 624.0


def test_calculate_unknown_tier(client, product):
    response = client.post("/api/pricing/calculate", json={
        "product_id": product.id, "area_sqm": 40, "pricing_tier": "Wholesale",
    })
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_pricing_tier"


def test_calculate_needs_product_or_pack_data(client):
    response = client.post("/api/pricing/calculate", json={"area_sqm": 40})
    assert response.status_code == 400


def test_calculate_negative_area(client, product):
    response = client.post("/api/pricing/calculate", json={"product_id": product.id, "area_sqm": -5})
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_input"


# --- Quotes ---

def test_mutations_require_token(client):
    response = client.post("/api/quotes/", json={"customer_name": "J Smith"})
    assert response.status_code == 401


def test_invalid_token_rejected(client):
    response = client.post("/api/quotes/", json={}, headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401


def test_create_quote_starts_at_version_one(client, actor_headers):
    quote = _create_quote(client, actor_headers, pricing_tier="Trade")
    assert re.match(r"^Q-\d{4}-0001$", quote["quote_number"])
    assert quote["version"] == 1
    assert quote["status"] == "Draft"
    assert quote["is_current"] is True
    assert quote["pricing_tier"] == "Trade"
    assert quote["created_by"] == "estimator@example.com"


def test_line_with_labour_prices_quote(client, actor_headers, product):
    quote, section, item = _quote_with_line(client, actor_headers, product.id)
    assert item["packs_required"] == 4
    assert item["line_sell"] == 768.0

    data = client.get(f"/api/quotes/versions/{quote['id']}").json()
    [ceiling] = data["sections"]
    labour = ceiling["line_items"][1]
    assert labour["is_labour"] is True
    assert labour["parent_line_item_id"] == item["id"]
    assert labour["line_sell"] == 120.0
    assert ceiling["subtotal_sell"] == 888.0
    assert data["total_sell_ex_gst"] == 888.0
    assert data["gst_amount"] == 133.2
    assert data["total_inc_gst"] == 1021.2


def test_area_change_carries_to_labour(client, actor_headers, product):
    quote, _, item = _quote_with_line(client, actor_headers, product.id)
    response = client.patch(f"/api/quotes/items/{item['id']}", json={"area_sqm": 20}, headers=actor_headers)
    assert response.status_code == 200
    assert response.json()["packs_required"] == 2

    data = client.get(f"/api/quotes/versions/{quote['id']}").json()
    labour = data["sections"][0]["line_items"][1]
    assert labour["area_sqm"] == 20.0
    assert labour["line_sell"] == 60.0
    assert data["total_sell_ex_gst"] == 444.0


def test_removing_line_removes_its_labour(client, actor_headers, product):
    quote, _, item = _quote_with_line(client, actor_headers, product.id)
    response = client.delete(f"/api/quotes/items/{item['id']}", headers=actor_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["sections"][0]["line_items"] == []
    assert data["total_inc_gst"] == 0.0


def test_remove_section(client, actor_headers, product):
    quote, section, _ = _quote_with_line(client, actor_headers, product.id)
    response = client.delete(f"/api/quotes/sections/{section['id']}", headers=actor_headers)
    assert response.status_code == 200
    assert response.json()["sections"] == []


def test_change_tier_reprices(client, actor_headers, product):
    quote, _, _ = _quote_with_line(client, actor_headers, product.id)
    response = client.patch(
        f"/api/quotes/versions/{quote['id']}/terms",
        json={"pricing_tier": "VIP"}, headers=actor_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["pricing_tier"] == "VIP"
    assert data["sections"][0]["line_items"][0]["line_sell"] == 600.0
    assert data["updated_by"] == "estimator@example.com"


def test_custom_tier_without_percent_rejected(client, actor_headers, product):
    quote, _, _ = _quote_with_line(client, actor_headers, product.id)
    response = client.patch(
        f"/api/quotes/versions/{quote['id']}/terms",
        json={"pricing_tier": "Custom"}, headers=actor_headers,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_pricing_tier"
    assert client.get(f"/api/quotes/versions/{quote['id']}").json()["pricing_tier"] == "Retail"


def test_unknown_version_is_404(client):
    response = client.get("/api/quotes/versions/12345")
    assert response.status_code == 404


# --- Versions + workflow ---

def test_version_endpoints(client, actor_headers, product):
    quote, _, _ = _quote_with_line(client, actor_headers, product.id)
    number = quote["quote_number"]

    assert client.get(f"/api/quotes/{number}/next-version").json()["next_version"] == 2
    snapshot = client.post(f"/api/quotes/versions/{quote['id']}/snapshot", headers=actor_headers)
    assert snapshot.status_code == 200
    assert snapshot.json()["snapshot_id"] > 0

    v2 = client.post(f"/api/quotes/{number}/versions", json={"waste_percent": 0}, headers=actor_headers)
    assert v2.status_code == 200
    v2 = v2.json()
    assert v2["version"] == 2
    # 40 m² with no waste still needs 3 packs
    assert v2["sections"][0]["line_items"][0]["packs_required"] == 3

    versions = client.get(f"/api/quotes/{number}/versions").json()
    assert [(v["version"], v["is_current"]) for v in versions] == [(1, False), (2, True)]


def test_unknown_lineage_is_404(client):
    assert client.get("/api/quotes/Q-0000-0000/versions").status_code == 404


def test_accept_then_accept_newer_version(client, actor_headers, product):
    quote, _, _ = _quote_with_line(client, actor_headers, product.id)
    number = quote["quote_number"]

    sent = client.post(f"/api/quotes/versions/{quote['id']}/send", headers=actor_headers).json()
    assert sent["status"] == "Sent"
    accepted = client.post(f"/api/quotes/versions/{quote['id']}/accept", headers=actor_headers)
    assert accepted.status_code == 200
    assert accepted.json()["success"] is True

    # accepted versions are locked; changes go into a new version
    locked = client.patch(
        f"/api/quotes/versions/{quote['id']}/terms", json={"notes": "extra"}, headers=actor_headers,
    )
    assert locked.status_code == 409
    assert locked.json()["current_status"] == "Accepted"

    v2 = client.post(f"/api/quotes/{number}/versions", json={"notes": "extra"}, headers=actor_headers).json()
    result = client.post(f"/api/quotes/versions/{v2['id']}/accept", headers=actor_headers).json()
    assert result["superseded_versions"] == [1]

    versions = client.get(f"/api/quotes/{number}/versions").json()
    assert [(v["status"], v["is_current"]) for v in versions] == [
        ("Superseded", False),
        ("Accepted", True),
    ]
    assert versions[0]["accepted_date"] is not None


def test_accept_rejected_version_conflict(client, actor_headers, product):
    quote, _, _ = _quote_with_line(client, actor_headers, product.id)
    client.post(f"/api/quotes/versions/{quote['id']}/send", headers=actor_headers)
    client.post(f"/api/quotes/versions/{quote['id']}/reject", headers=actor_headers)

    response = client.post(f"/api/quotes/versions/{quote['id']}/accept", headers=actor_headers)
    assert response.status_code == 409
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "invalid_state"
    assert body["current_status"] == "Rejected"


def test_expire_sent_quote(client, actor_headers, product):
    quote, _, _ = _quote_with_line(client, actor_headers, product.id)
    client.post(f"/api/quotes/versions/{quote['id']}/send", headers=actor_headers)
    response = client.post(f"/api/quotes/versions/{quote['id']}/expire", headers=actor_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "Expired"


def test_pricing_tiers(client):
    tiers = client.get("/api/pricing/tiers").json()
    assert tiers == {"Retail": 60, "Trade": 40, "VIP": 25}
