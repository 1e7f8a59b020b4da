#!/usr/bin/env python3
"""
Demo Chat Client

Connects to a running chatbus instance, joins a room, sends a message and
prints every envelope the room receives.

This client:
1. Registers as a user
2. Joins a channel
3. Sends typing / send_message / stop_typing
4. Optionally asks the AI assistant (--ai)
5. Prints everything delivered to the channel until interrupted

Requires the demo extra: pip install -e ".[demo]"

Usage:
    python scripts/demo_chat_client.py --user u1 --channel r1 --text hi
    python scripts/demo_chat_client.py --url ws://localhost:8001/ws --ai "What is a bus?"

Run two instances on different ports sharing CHATBUS_REDIS_URL and one
client against each to watch cross-instance fan-out.
"""

import argparse
import asyncio
import json

import websockets

BUS_URL = "ws://localhost:8000/ws"


def create_frame(event_type: str, payload=None) -> str:
    """Create a client frame."""
    return json.dumps({"type": event_type, "payload": payload})


def describe(envelope: dict) -> str:
    event_type = envelope.get("type")
    payload = envelope.get("payload")

    if event_type in ("receive_message", "receive_ai_message", "message_edited"):
        sender = (payload.get("sender") or {}).get("fullName") or payload["sender"]["id"]
        return f"[{event_type}] {sender}: {payload.get('text')}"
    if event_type in ("typing", "stop_typing"):
        return f"[{event_type}] {payload}"
    if event_type == "error_message":
        return f"[error] {payload.get('message')} ({payload.get('code', 'room')})"
    return f"[{event_type}] {json.dumps(payload)}"


async def main(args: argparse.Namespace):
    print("=" * 70)
    print("CHAT CLIENT STARTING")
    print("=" * 70)
    print(f"User: {args.user}")
    print(f"Channel: {args.channel}")
    print(f"Bus URL: {args.url}")
    print("=" * 70)

    async with websockets.connect(args.url) as ws:
        await ws.send(create_frame("register", {"userId": args.user}))
        await ws.send(create_frame("join_room", {"channelId": args.channel}))

        if args.text:
            await ws.send(create_frame("typing", {"channelId": args.channel, "userId": args.user}))
            await ws.send(create_frame("send_message", {
                "channelId": args.channel,
                "senderId": args.user,
                "text": args.text,
            }))
            await ws.send(create_frame("stop_typing", {"channelId": args.channel, "userId": args.user}))

        if args.ai:
            await ws.send(create_frame("ai_message", {
                "channelId": args.channel,
                "senderId": args.user,
                "text": args.ai,
            }))

        print("\nListening (Ctrl+C to stop)...\n")
        async for raw in ws:
            print(describe(json.loads(raw)))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="chatbus demo client")
    parser.add_argument("--url", default=BUS_URL)
    parser.add_argument("--user", default="u1")
    parser.add_argument("--channel", default="r1")
    parser.add_argument("--text", default="hi")
    parser.add_argument("--ai", default=None, help="Ask the AI assistant")
    try:
        asyncio.run(main(parser.parse_args()))
    except KeyboardInterrupt:
        print("\nStopped")
