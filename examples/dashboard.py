"""Fan out independent queries from a synchronous handler and join on them.

Run with ``python -m examples.dashboard``. The in-memory backend adds
artificial latency to each call so the overlap is visible in the timing.
"""

from __future__ import annotations

import time

from asyncdb import ConnectionRegistry, FacadeConfig, QueryDispatcher, gather

CONFIG = FacadeConfig.from_mapping(
    {
        "connections": {
            "default": {
                "schema_identifier": "demo",
                "dsn": "memory://",
                "backend_options": {"latency": 0.25},
                "async_options": {"workers": 4},
            }
        }
    }
)


def dashboard(dispatcher: QueryDispatcher, query: str) -> dict[str, object]:
    users_f = dispatcher.search("User", {"name": {"-like": f"%{query}%"}})
    posts_f = dispatcher.search("Post", {"uid": 1})
    total_f = dispatcher.count("User")
    users, posts, total = gather(users_f, posts_f, total_f)
    return {"users": users, "posts": posts, "total": total}


def main() -> None:
    with ConnectionRegistry(CONFIG) as registry:
        dispatcher = QueryDispatcher(registry)
        gather(
            *(dispatcher.create("User", {"name": name}) for name in ("Alice", "Bob", "Charlie")),
            dispatcher.create("Post", {"uid": 1, "title": "Hello"}),
        )
        started = time.perf_counter()
        page = dashboard(dispatcher, "li")
        elapsed = time.perf_counter() - started
        print(f"{page['total']} users, {len(page['users'])} matching, {len(page['posts'])} posts")
        print(f"three queries took {elapsed:.2f}s")


if __name__ == "__main__":
    main()
