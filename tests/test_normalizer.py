"""Tests for WooCommerce payload normalization."""

from datetime import datetime

import pytest

from woo_ledger.services.normalizer import (
    build_line_key,
    normalize_coupon,
    normalize_line_item,
    normalize_order,
    normalize_product,
)


class TestNormalizeOrder:

    def test_order_fields(self, make_woo_order):
        normalized = normalize_order(make_woo_order())
        order = normalized.order

        assert order["order_number"] == "Order #1001"
        assert order["woo_order_id"] == 101
        assert order["order_date"] == datetime(2024, 3, 15, 14, 30)
        assert order["customer_name"] == "Ada Lovelace"
        assert order["customer_email"] == "ada@example.com"
        assert order["order_status"] == "processing"
        assert order["payment_method"] == "Credit Card"
        assert order["shipping_charged"] == 10.0
        assert order["free_shipping"] is False
        assert order["order_subtotal"] == 100.0

    def test_shipping_tax_is_charged(self, make_woo_order):
        order = normalize_order(make_woo_order(shipping_total="8.00", shipping_tax="0.64")).order
        assert order["shipping_charged"] == pytest.approx(8.64)

    def test_no_shipping_means_free_shipping(self, make_woo_order):
        order = normalize_order(make_woo_order(shipping_total="0", shipping_tax="0")).order
        assert order["free_shipping"] is True

    def test_coupon_code_taken_from_first_coupon_line(self, make_woo_order):
        payload = make_woo_order(
            coupon_lines=[{"code": "SAVE10", "discount": "10.00"}, {"code": "OTHER"}],
            discount_total="10.00",
        )
        order = normalize_order(payload).order
        assert order["coupon_code"] == "SAVE10"
        assert order["coupon_discount"] == 10.0

    def test_invalid_lines_are_dropped_and_counted(self, make_woo_order):
        payload = make_woo_order(line_items=[
            {"id": 1, "product_id": 501, "quantity": 1, "price": 10},
            {"id": 2, "product_id": 0, "quantity": 1, "price": 10},
            {"id": 3, "product_id": 502, "quantity": 0, "price": 10},
        ])
        normalized = normalize_order(payload)
        assert [line["woo_line_item_id"] for line in normalized.lines] == [1]
        assert normalized.dropped_lines == 2

    def test_missing_date_falls_back_to_now(self, make_woo_order):
        payload = make_woo_order()
        del payload["date_created_gmt"]
        order = normalize_order(payload).order
        assert isinstance(order["order_date"], datetime)


class TestNormalizeLineItem:

    def test_price_falls_back_to_subtotal(self):
        line = normalize_line_item("Order #1", {"id": 5, "product_id": 7, "quantity": 4, "subtotal": "20.00"})
        assert line["customer_paid_per_unit"] == 5.0
        assert line["qty_ordered"] == 4

    def test_missing_quantity_defaults_to_one(self):
        line = normalize_line_item("Order #1", {"product_id": 7, "price": "3.00"})
        assert line["qty_ordered"] == 1
        assert line["woo_line_item_id"] is None


class TestLineKey:

    def test_source_id_wins(self):
        assert build_line_key(9001, 5, 1.0, 2.0) == "woo:9001"

    def test_flat_file_key_uses_money(self):
        assert build_line_key(None, 5, 1.0, 2.5) == "p:5:1.0000:2.5000"


class TestNormalizeProduct:

    def test_product_fields(self):
        product = normalize_product({
            "id": 77,
            "name": "Peptide",
            "sku": "PEP-1",
            "regular_price": "49.99",
            "sale_price": "",
            "manage_stock": True,
            "stock_quantity": 12,
            "stock_status": "instock",
            "weight": "0.5",
            "attributes": [{"name": "Strength", "options": ["5mg", "10mg"]}],
            "images": [{"id": 3, "src": "https://example.com/a.png", "alt": "", "name": "a"}],
        })
        assert product["product_id"] == 77
        assert product["woo_product_id"] == 77
        assert product["retail_price"] == 49.99
        assert product["current_stock"] == 12
        assert product["stock_status"] == "In Stock"
        assert product["variant_strength"] == "5mg, 10mg"
        assert product["our_cost"] is None
        assert product["weight"] == 0.5
        assert product["images"][0]["src"] == "https://example.com/a.png"

    def test_sale_price_preferred(self):
        product = normalize_product({"id": 1, "regular_price": "20", "sale_price": "15"})
        assert product["retail_price"] == 15.0

    def test_unmanaged_stock_is_unknown(self):
        product = normalize_product({"id": 1, "manage_stock": False, "stock_quantity": 5, "stock_status": "outofstock"})
        assert product["current_stock"] is None
        assert product["stock_status"] == "OUT OF STOCK"


class TestNormalizeCoupon:

    def test_coupon_fields(self):
        coupon = normalize_coupon({"id": 4, "code": "SAVE10", "discount_type": "percent", "amount": "10.00", "usage_count": 3})
        assert coupon["coupon_code"] == "SAVE10"
        assert coupon["discount_type"] == "percent"
        assert coupon["discount_amount"] == 10.0
        assert coupon["usage_count"] == 3
