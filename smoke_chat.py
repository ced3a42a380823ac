import asyncio
import json
import sys

import websockets


async def smoke(url="ws://localhost:5000/ws/chat"):
    # Two sessions of one conversation against a running server
    async with websockets.connect(url) as buyer, websockets.connect(url) as seller:
        print(f"Buyer: {await buyer.recv()}")
        print(f"Seller: {await seller.recv()}")

        await seller.send(json.dumps({"type": "register-user", "userId": "seller1"}))
        # The error reply to an unknown event confirms registration was handled
        await seller.send(json.dumps({"type": "ping"}))
        print(f"Seller: {await seller.recv()}")
        await buyer.send(json.dumps({"type": "register-user", "userId": "buyer1"}))
        await buyer.send(json.dumps({"type": "join-chat", "userId": "buyer1", "otherUserId": "seller1"}))

        await buyer.send(json.dumps({
            "type": "send-message",
            "roomId": "buyer1-seller1",
            "message": "Hello from Python!",
            "senderId": "buyer1",
            "senderName": "Smoke Test",
        }))

        print(f"Echo: {await buyer.recv()}")
        print(f"Notification: {await seller.recv()}")


if __name__ == "__main__":
    asyncio.run(smoke(*sys.argv[1:]))
