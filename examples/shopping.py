#!/usr/bin/env python3
"""Programmatic session example.

This demonstrates driving a program directly from Python:

* build a program definition from a plain dict
* register plugs for its services, actions and guards
* dispatch events and print the resulting state

The product catalog is in-memory; pass `--query` to filter it.
"""

from __future__ import annotations

import argparse
import asyncio
from typing import Any, Sequence

from phaseflow import EngineSettings, PlugSpec, Session, build_program
from phaseflow.runtime.helpers import assign, mock

PROGRAM: dict[str, Any] = {
    "id": "shop",
    "version": "1.0.0",
    "models": {
        "Product": {
            "id": {"type": "string", "required": True},
            "name": {"type": "string", "required": True},
            "price": {"type": "number", "required": True, "min": 0},
        },
    },
    "data": {
        "products": {"type": "array", "items": {"$ref": "#/models/Product"}},
        "cart": {"type": "array", "items": {"$ref": "#/models/Product"}},
        "total": {"type": "number"},
    },
    "phases": {
        "browsing": {"on": {"SEARCH": "searching"}},
        "searching": {
            "invoke": {
                "src": "searchProducts",
                "onDone": {"target": "viewingProducts", "actions": "storeProducts"},
                "onError": "browsing",
            },
        },
        "viewingProducts": {
            "on": {
                "ADD_TO_CART": {"target": "viewingProducts", "actions": ["addToCart", "computeTotal"]},
                "CHECKOUT": {"target": "paid", "cond": "cartNotEmpty"},
            },
        },
        "paid": {"type": "final"},
    },
    "actions": {
        "SEARCH": {"label": "Search products", "params": {"query": {"type": "string"}}},
        "ADD_TO_CART": {"label": "Add to cart"},
    },
    "operations": {
        "searchProducts": {"type": "service"},
        "storeProducts": {"type": "action"},
        "addToCart": {"type": "action"},
        "computeTotal": {"type": "action"},
        "cartNotEmpty": {"type": "guard"},
    },
}

CATALOG = [
    {"id": "1", "name": "Laptop", "price": 1000},
    {"id": "2", "name": "Mouse", "price": 25},
    {"id": "3", "name": "Monitor", "price": 300},
]


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the shopping program (programmatic example).")
    parser.add_argument("--query", default="mo", help="Product name filter")
    return parser.parse_args(argv)


async def _search(_data: Any, event: Any) -> list[dict[str, Any]]:
    query = str(event.get("query", "")).lower()
    return [p for p in await mock(CATALOG, delay=0.1)(None, None) if query in p["name"].lower()]


async def run(query: str) -> int:
    settings = EngineSettings()
    settings.setup_logging()

    program = build_program(PROGRAM)
    session = Session.start(
        program,
        settings=settings,
        plugs={
            "searchProducts": PlugSpec(_search, description="In-memory catalog", timeout=2.0),
            "storeProducts": assign(lambda data, event: {"products": event["data"]}),
            "addToCart": assign(lambda data, event: {"cart": [*data["cart"], data["products"][0]]}),
            "computeTotal": assign(lambda data, event: {"total": sum(p["price"] for p in data["cart"])}),
            "cartNotEmpty": lambda data, event: bool(data["cart"]),
        },
    )
    session.on("change", lambda change: print(f"-> {change['phase']}"))

    await session.do("SEARCH", {"query": query})
    if not session.where().data["products"]:
        print(f"No products match {query!r}")
        return 1

    print(f"Available: {session.can()}")
    await session.do("ADD_TO_CART")
    await session.do("CHECKOUT")

    view = session.where()
    print(f"Finished in '{view.phase}' with total {view.data['total']}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    return asyncio.run(run(args.query))


if __name__ == "__main__":
    raise SystemExit(main())
