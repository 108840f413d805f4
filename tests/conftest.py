"""Test configuration and fixtures."""

from __future__ import annotations

from typing import Any

import pytest

from phaseflow.config import EngineSettings
from phaseflow.program import ProgramDefinition, build_program


@pytest.fixture
def settings() -> EngineSettings:
    """Provide settings that do not read a local .env file."""
    return EngineSettings(_env_file=None)


@pytest.fixture
def toggle_raw() -> dict[str, Any]:
    """Two-phase program: idle --START--> active (terminal)."""
    return {
        "id": "toggle",
        "version": "1.0.0",
        "phases": {
            "idle": {"on": {"START": "active"}},
            "active": {"type": "final"},
        },
    }


@pytest.fixture
def shop_raw() -> dict[str, Any]:
    """A small shopping journey with models, guards and a service call."""
    return {
        "id": "shop",
        "version": "1.3.0",
        "initial": "idle",
        "models": {
            "Product": {
                "id": {"type": "string", "required": True},
                "name": {"type": "string", "required": True},
                "price": {"type": "number", "required": True, "min": 0},
            },
        },
        "data": {
            "query": {"type": "string", "default": ""},
            "products": {"type": "array", "items": {"$ref": "#/models/Product"}},
            "cart": {"type": "array", "items": {"$ref": "#/models/Product"}},
            "total": {"type": "number"},
            "userId": {"type": "string"},
        },
        "phases": {
            "idle": {"on": {"START": "browsing"}},
            "browsing": {
                "on": {
                    "SEARCH": {"target": "searching"},
                    "VIEW_CART": "viewingCart",
                    "QUIT": "done",
                }
            },
            "searching": {
                "invoke": {
                    "src": "searchProducts",
                    "input": lambda data, event: {"query": event.get("query", "")},
                    "onDone": {"target": "viewingProducts", "actions": "storeProducts"},
                    "onError": "browsing",
                },
                "tags": ["busy"],
            },
            "viewingProducts": {
                "on": {
                    "ADD_TO_CART": {
                        "target": "viewingProducts",
                        "cond": "hasProduct",
                        "actions": ["addToCart", "computeTotal"],
                    },
                    "VIEW_CART": "viewingCart",
                    "BACK": "browsing",
                }
            },
            "viewingCart": {
                "on": {"CHECKOUT": {"target": "done", "cond": "cartNotEmpty"}, "BACK": "browsing"}
            },
            "done": {"type": "final"},
        },
        "actions": {
            "START": {"label": "Start shopping"},
            "SEARCH": {"label": "Search", "params": {"query": {"type": "string"}}},
            "ADD_TO_CART": {"label": "Add to cart"},
        },
        "operations": {
            "searchProducts": {
                "type": "service",
                "input": {"query": {"type": "string"}},
                "output": {"products": {"type": "array", "items": {"$ref": "#/models/Product"}}},
            },
            "storeProducts": {"type": "action"},
            "addToCart": {"type": "action"},
            "computeTotal": {"type": "action"},
            "hasProduct": {"type": "guard"},
            "cartNotEmpty": {"type": "guard"},
        },
    }


@pytest.fixture
def shop_program(shop_raw: dict[str, Any]) -> ProgramDefinition:
    return build_program(shop_raw)


@pytest.fixture
def shop_plugs() -> dict[str, Any]:
    catalog = [
        {"id": "1", "name": "Laptop", "price": 1000},
        {"id": "2", "name": "Mouse", "price": 25},
    ]

    async def search_products(_data: Any, service_input: Any) -> dict[str, Any]:
        query = service_input["query"].lower()
        return {"products": [p for p in catalog if query in p["name"].lower()]}

    def add_to_cart(data: Any, event: Any) -> dict[str, Any]:
        product = next(p for p in data["products"] if p["id"] == event["productId"])
        return {"cart": [*data["cart"], product]}

    return {
        "searchProducts": search_products,
        "storeProducts": lambda data, event: {"products": event["data"]["products"]},
        "addToCart": add_to_cart,
        "computeTotal": lambda data, event: {"total": sum(p["price"] for p in data["cart"])},
        "hasProduct": lambda data, event: any(
            p["id"] == event.get("productId") for p in data["products"]
        ),
        "cartNotEmpty": lambda data, event: bool(data["cart"]),
    }
