import asyncio

# ingested objects waiting to be pushed to /stream/neos listeners
event_queue: asyncio.Queue = asyncio.Queue()
