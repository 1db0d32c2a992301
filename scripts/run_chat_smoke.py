#!/usr/bin/env python3
import json
import os
import time
import urllib.request
import uuid

API_URL = os.getenv("API_URL", "http://localhost:8000")
OUT_DIR = os.getenv("OUT_DIR", "logs/smoke")
TEST_MODE_HEADER = os.getenv("CHAT_TEST_MODE_HEADER", "x-portfolio-test-mode")

# NOTE: Requires a running API. Set SMOKE_FIXTURES=1 to request fixture replay
# (the server must run with CHAT_TEST_FIXTURES=true outside production).
# This is a smoke test for end-to-end framing, not response quality.

QUESTIONS = [
    # Greeting: planner should issue zero queries
    "hi",
    # Projects corpus
    "Which projects used streaming APIs?",
    # Resume corpus
    "Where did you work most recently and what did you do there?",
]


def post_chat(url: str, payload: dict, headers: dict) -> str:
    data = json.dumps(payload).encode("utf-8")
    req = urllib.request.Request(
        url,
        data=data,
        headers={"Content-Type": "application/json", "Accept": "text/event-stream", **headers},
        method="POST",
    )
    with urllib.request.urlopen(req, timeout=90) as resp:
        return resp.read().decode("utf-8")


def frame_types(body: str) -> list[str]:
    types = []
    for line in body.splitlines():
        if line.startswith("data:"):
            types.append(json.loads(line[5:].strip()).get("type"))
    return types


def main() -> int:
    os.makedirs(OUT_DIR, exist_ok=True)
    headers = {TEST_MODE_HEADER: "e2e"} if os.getenv("SMOKE_FIXTURES") else {}
    failures = 0

    for idx, question in enumerate(QUESTIONS, start=1):
        print(f"\n==> {question}")
        payload = {
            "conversationId": f"smoke-{uuid.uuid4().hex[:8]}",
            "responseAnchorId": uuid.uuid4().hex,
            "messages": [{"role": "user", "content": question}],
            "reasoningEnabled": True,
        }
        body = post_chat(f"{API_URL}/chat", payload, headers)
        out_path = os.path.join(OUT_DIR, f"{idx:02d}.sse")
        with open(out_path, "w", encoding="utf-8") as f:
            f.write(body)
        types = frame_types(body)
        print(" ".join(types))
        if not types or types[-1] != "done" or types.count("done") != 1:
            print("!! stream did not end with exactly one done frame")
            failures += 1
        time.sleep(0.2)

    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
