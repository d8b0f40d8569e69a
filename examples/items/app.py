"""Items — ranked routes and forwarding guards.

``/items/new`` is a literal route and always wins over ``/items/<id>``.
Numeric ids go to ``show_item``; anything else is answered with 422 by
the positive-integer guard.

``/catalog/<name>`` resolves a known item name through the ``by_name``
guard. An unknown identifier is a 404 from that guard; anything that is
not an identifier (``/catalog/summer-sale``) is forwarded, and the
lower-ranked ``/catalog/<rest..>`` page answers it instead.

Run:
    cd examples/items && python app.py
"""

from perch import App, Failure, Forward, GuardContext, Param, Query, Success, guard

app = App()

_ITEMS = {1: "apple", 2: "banana", 42: "the answer"}


@app.get("/items/new")
def new_item_form() -> str:
    return "new item form"


@app.get("/items/<id>", guards=[Param("id", "positive_int")])
def show_item(id: int) -> dict:
    return {"id": id, "name": _ITEMS.get(id)}


@guard(name="item")
def by_name(ctx: GuardContext):
    name = ctx.path_params["name"]
    for item_id, item_name in _ITEMS.items():
        if item_name == name:
            return Success(item_id)
    if name.isidentifier():
        return Failure(404, f"No item named {name!r}")
    return Forward("not an item name")


@app.get("/catalog/<name>", guards=[by_name])
def catalog_entry(item: int) -> dict:
    return {"id": item, "name": _ITEMS[item]}


@app.get("/catalog/<rest..>")
def catalog_fallback(request) -> str:
    return f"catalog page for {request.path_params['rest'] or 'index'}"


@app.get("/search", guards=[Query("q"), Query("limit", "int", default=10)])
def search(q: str, limit: int) -> list:
    hits = [name for name in _ITEMS.values() if q in name]
    return hits[:limit]


if __name__ == "__main__":
    app.run()
