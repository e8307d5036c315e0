#!/usr/bin/env python3
"""
Changefeed example: watch a filtered table while another task writes to it.
"""

import asyncio

import aql


async def writer(conn, users):
    for i, age in enumerate([12, 34, 56], start=1):
        await users.insert({"id": i, "age": age}).run(conn)
        await asyncio.sleep(0.01)
    await users.get(2).update({"age": 15}).run(conn)


async def main():
    aql.setup_logger(level="INFO")
    conn = aql.MemoryConnection()
    db = aql.Database("app")
    await aql.create_database("app").run(conn)
    await db.table_create("users").run(conn)
    users = db.table("users")

    adults = users.filter(lambda u: u["age"] >= 18).changes(changefeed_queue_size=10)
    async with adults.iterator(conn) as cursor:
        await cursor.open()
        task = asyncio.ensure_future(writer(conn, users))
        for _ in range(3):
            change = await cursor.next()
            print(f"old={change.old_val} new={change.new_val}")
        await task


if __name__ == "__main__":
    asyncio.run(main())
