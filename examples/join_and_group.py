#!/usr/bin/env python3
"""
Joins and grouping against the in-memory server.
Builds a small shop database, then joins orders to users and totals them.
"""

import asyncio

import aql
from aql import JoinType


USERS = [
    {"id": 1, "name": "Ada"},
    {"id": 2, "name": "Grace"},
    {"id": 3, "name": "Linus"},
]

ORDERS = [
    {"id": 10, "user_id": 1, "amount": 30},
    {"id": 11, "user_id": 1, "amount": 12},
    {"id": 12, "user_id": 2, "amount": 50},
]


async def main():
    conn = aql.MemoryConnection()
    shop = aql.Database("shop")

    await aql.create_database("shop").run(conn)
    await shop.table_create("users").run(conn)
    await shop.table_create("orders").run(conn)
    await shop.table("users").insert(USERS).run(conn)
    await shop.table("orders").insert(ORDERS).run(conn)

    users = shop.table("users", schema={"id": int, "name": str})
    orders = shop.table("orders", schema={"id": int, "user_id": int, "amount": float})

    print("=" * 70)
    print("1. LEFT JOIN users -> orders")
    print("=" * 70)
    rows = await users.join(
        orders,
        JoinType.Left,
        lambda u, o: {"name": u["name"], "amount": o["amount"].default(0)},
        lambda u, o: u["id"] == o["user_id"],
    ).run(conn)
    for row in rows:
        print(f"   {row['name']:<8} {row['amount']}")

    print("\n" + "=" * 70)
    print("2. Totals per user")
    print("=" * 70)
    totals = await orders.group(
        "user_id", lambda rows, uid: {"user_id": uid, "total": rows.sum("amount")}
    ).order_by("total", "desc").run(conn)
    for row in totals:
        print(f"   user {row['user_id']}: {row['total']}")

    print("\n" + "=" * 70)
    print("3. Iterating in batches")
    print("=" * 70)
    async with orders.order_by("amount").iterator(conn, batch_size=2) as cursor:
        async for order in cursor:
            print(f"   order {order['id']}: {order['amount']}")


if __name__ == "__main__":
    asyncio.run(main())
