from __future__ import annotations

"""Send one signed rewarded-ad callback to a locally running service.

Starts a throwaway key directory on 127.0.0.1:8972 with a freshly generated
P-256 key. Run the service with
``SSV_KEYS_URL=http://127.0.0.1:8972/verifier-keys.json`` so it trusts that key.
"""

import base64
import json
import os
import threading
import time
from http.server import BaseHTTPRequestHandler, HTTPServer
from urllib.parse import urlencode

import requests
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

from ssv_rewards.ssv.verifier import canonical_message

KEY_ID = 1
_private_key = ec.generate_private_key(ec.SECP256R1())


class Handler(BaseHTTPRequestHandler):
    def do_GET(self):  # noqa: N802
        der = _private_key.public_key().public_bytes(
            serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
        )
        body = json.dumps({"keys": [{"keyId": KEY_ID, "pem": "", "base64": base64.b64encode(der).decode()}]})
        data = body.encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def log_message(self, *args, **kwargs):  # noqa: D401, ANN001, ARG002
        return


def signed_query(params: list[tuple[str, str]]) -> str:
    der_sig = _private_key.sign(canonical_message(params).encode("utf-8"), ec.ECDSA(hashes.SHA256()))
    sig = base64.urlsafe_b64encode(der_sig).decode().rstrip("=")
    return urlencode(params + [("signature", sig), ("key_id", str(KEY_ID))])


def run_demo() -> dict[str, object]:
    server = HTTPServer(("127.0.0.1", 8972), Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()

    base_url = os.getenv("SSV_SERVICE_URL", "http://127.0.0.1:8000")
    params = [
        ("ad_network", "5450213213286189855"),
        ("ad_unit", "1234567890"),
        ("reward_amount", os.getenv("SSV_TEST_AMOUNT", "5")),
        ("reward_item", os.getenv("SSV_TEST_ITEM", "GoldBars")),
        ("timestamp", str(int(time.time() * 1000))),
        ("transaction_id", f"test-{int(time.time() * 1000)}"),
        ("user_id", os.getenv("SSV_TEST_PLAYER_ID", "")),
    ]
    try:
        resp = requests.get(f"{base_url}/api/admob/ssv-callback?{signed_query(params)}", timeout=10)
        return {"status_code": resp.status_code, "body": resp.json()}
    finally:
        server.shutdown()
        thread.join()


if __name__ == "__main__":
    report = run_demo()
    print(json.dumps(report, ensure_ascii=False, indent=2))
